# agroscan/normalizer.py
"""
Turn the vision model's free text reply into an AnalysisResult.

The model is asked for bare JSON but regularly wraps it in prose or
markdown fences. We take the span from the first "{" to the last "}" and
parse that. Anything unparseable degrades to a placeholder result instead of
an error, so the upload still reaches a displayable terminal state.

Field names from the prompt schema (weedCoverage, items, box_2d, ...) and
from our own serialized output (weedCoveragePercent, detectedItems,
boundingBox, ...) are both accepted, which keeps the normalizer idempotent
over its own output.
"""

import json
import math
from typing import Any, Dict, List, Optional, Sequence

from .geometry import coverage_percent, is_number
from .models import AnalysisResult, DetectedItem

FALLBACK_RECOMMENDATION = "Unable to analyze image details"

TOTAL_AREA_KEYS = ("totalAreaPercent", "totalArea")
WEED_KEYS = ("weedCoveragePercent", "weedCoverage")
CROP_KEYS = ("healthyCropCoveragePercent", "healthyCropCoverage")
ITEMS_KEYS = ("detectedItems", "items")
BOX_KEYS = ("boundingBox", "box_2d")
CONFIDENCE_KEYS = ("confidencePercent", "confidence")


def extract_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Greedy first-"{"-to-last-"}" parse. None when there is no usable object."""
    if not text:
        return None

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        return None

    try:
        parsed = json.loads(text[start:end + 1])
    except ValueError:
        return None

    return parsed if isinstance(parsed, dict) else None


def fallback_analysis() -> AnalysisResult:
    return AnalysisResult(
        total_area_percent=100,
        weed_coverage_percent=0,
        healthy_crop_coverage_percent=100,
        detected_items=[],
        recommendations=[FALLBACK_RECOMMENDATION],
    )


def build_analysis(payload: Optional[Dict[str, Any]]) -> AnalysisResult:
    """
    Build a well-formed AnalysisResult from a parsed model payload.

    Coverage values the model states explicitly win over anything derived
    from the boxes. Only missing or non-numeric values are backfilled.
    """
    if payload is None:
        return fallback_analysis()

    items = [_to_item(raw) for raw in _first_list(payload, ITEMS_KEYS) if isinstance(raw, dict)]
    recommendations = [_to_text(r) for r in _first_list(payload, ("recommendations",)) if _is_text(r)]

    weed = _first_number(payload, WEED_KEYS)
    if weed is None:
        weed = coverage_percent(items, "weed")

    crop = _first_number(payload, CROP_KEYS)
    if crop is None:
        crop = coverage_percent(items, "crop")

    total = _first_number(payload, TOTAL_AREA_KEYS)
    if total is None:
        total = 100

    return AnalysisResult(
        total_area_percent=total,
        weed_coverage_percent=weed,
        healthy_crop_coverage_percent=crop,
        detected_items=items,
        recommendations=recommendations,
    )


def normalize_analysis(text: Optional[str]) -> AnalysisResult:
    return build_analysis(extract_json_object(text))


def _first_number(payload: Dict[str, Any], keys: Sequence[str]) -> Optional[float]:
    for key in keys:
        value = payload.get(key)
        if is_number(value):
            return value
    return None


def _first_list(payload: Dict[str, Any], keys: Sequence[str]) -> List[Any]:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, list):
            return value
    return []


def _is_text(value: Any) -> bool:
    return isinstance(value, str) or is_number(value)


def _to_text(value: Any) -> str:
    return value if isinstance(value, str) else str(value)


def _to_item(raw: Dict[str, Any]) -> DetectedItem:
    label = raw.get("label")
    if label is None:
        label = ""
    elif not isinstance(label, str):
        label = str(label)

    confidence = _first_number(raw, CONFIDENCE_KEYS)
    confidence = 0.0 if confidence is None else max(0.0, min(100.0, float(confidence)))

    box = None
    for key in BOX_KEYS:
        if key in raw:
            box = _sanitize_box(raw[key])
            break

    return DetectedItem(label=label, confidence_percent=confidence, bounding_box=box)


def _sanitize_box(box: Any) -> Any:
    # NaN/Infinity would not survive a JSON round trip; they carry no area anyway
    if isinstance(box, float) and not math.isfinite(box):
        return None
    if isinstance(box, list):
        return [_sanitize_box(v) for v in box]
    if isinstance(box, dict):
        return {k: _sanitize_box(v) for k, v in box.items()}
    return box
