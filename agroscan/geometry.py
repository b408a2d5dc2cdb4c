# agroscan/geometry.py
"""
Bounding box geometry for normalized [yMin, xMin, yMax, xMax] boxes.

Boxes are expressed on a 0-1000 grid relative to image height/width, so the
area of a box is independent of the photo's pixel resolution.
"""

import math
from typing import TYPE_CHECKING, Any, Iterable, Tuple

if TYPE_CHECKING:
    from agroscan.models import DetectedItem

GRID_SIZE = 1000


def is_number(value: Any) -> bool:
    """True for finite ints/floats. Booleans are not numbers here."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp_box(box) -> Tuple[float, float, float, float]:
    """Clamp the four coordinates of a numeric box into [0, GRID_SIZE]."""
    y_min, x_min, y_max, x_max = (_clamp(float(v), 0, GRID_SIZE) for v in box)
    return y_min, x_min, y_max, x_max


def box_area(box: Any) -> float:
    """
    Fraction of the image covered by a normalized box, in [0, 1].

    Anything that is not exactly four numeric values has zero area.
    """
    if not isinstance(box, (list, tuple)) or len(box) != 4:
        return 0.0
    if not all(is_number(v) for v in box):
        return 0.0

    y_min, x_min, y_max, x_max = clamp_box(box)
    width = max(0.0, x_max - x_min)
    height = max(0.0, y_max - y_min)
    return (width * height) / (GRID_SIZE * GRID_SIZE)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def coverage_percent(items: Iterable["DetectedItem"], keyword: str) -> int:
    """
    Percentage of the image covered by items whose label contains keyword.

    Matching is a case-insensitive substring test, so "crop_weed_mix" counts
    towards both "crop" and "weed". Overlapping boxes are summed, hence the
    clamp.
    """
    needle = keyword.lower()
    total = 0.0
    for item in items:
        if needle in (item.label or "").lower():
            total += box_area(item.bounding_box)
    return round_half_up(_clamp(total * 100, 0, 100))
