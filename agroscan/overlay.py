# agroscan/overlay.py
import base64
import html
import io
from typing import Iterable, Tuple

from PIL import Image

from .geometry import GRID_SIZE, clamp_box, is_number
from .models import DetectedItem

LABEL_COLORS = (
    ("weed", "#EF4444"),
    ("crop", "#10B981"),
    ("soil", "#F59E0B"),
)
DEFAULT_COLOR = "#3B82F6"


def image_size(image_bytes: bytes) -> Tuple[int, int]:
    """(width, height) of an encoded image, without decoding the pixels."""
    with Image.open(io.BytesIO(image_bytes)) as img:
        return img.size


def bytes_to_data_uri(image_bytes: bytes, mime_type: str) -> str:
    b64 = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{mime_type};base64,{b64}"


def color_for_label(label: str) -> str:
    lowered = (label or "").lower()
    for keyword, color in LABEL_COLORS:
        if keyword in lowered:
            return color
    return DEFAULT_COLOR


def box_to_rect(box, width: int, height: int) -> Tuple[float, float, float, float]:
    """Scale a 0-1000 [yMin, xMin, yMax, xMax] box to a pixel (x, y, w, h) rect inside the image."""
    y_min, x_min, y_max, x_max = (v / GRID_SIZE for v in clamp_box(box))
    x = x_min * width
    y = y_min * height
    w = max(0.0, x_max - x_min) * width
    h = max(0.0, y_max - y_min) * height
    return x, y, w, h


def boxes_to_svg(
    items: Iterable[DetectedItem],
    width: int,
    height: int,
    image_data_uri: str = None,
) -> str:
    """
    Builds SVG containing:
    - Embedded field photo (optional)
    - One stroked rectangle per well-formed box, coloured by label, with a
      "label (confidence%)" caption.
    Malformed boxes are skipped here; they stay in the record for listing.
    """
    svg_parts = [
        f'<svg xmlns="http://www.w3.org/2000/svg" '
        f'xmlns:xlink="http://www.w3.org/1999/xlink" '
        f'width="{width}" height="{height}" viewBox="0 0 {width} {height}">'
    ]

    if image_data_uri:
        svg_parts.append(
            f'<image x="0" y="0" width="{width}" height="{height}" '
            f'xlink:href="{html.escape(image_data_uri, quote=True)}" />'
        )

    for index, item in enumerate(items):
        box = item.bounding_box
        if not isinstance(box, list) or len(box) != 4 or not all(is_number(v) for v in box):
            continue

        x, y, w, h = box_to_rect(box, width, height)
        color = color_for_label(item.label)
        caption = html.escape(f"{item.label or 'item'} ({round(item.confidence_percent)}%)")
        svg_parts.append(
            f'<g data-item="{index}">'
            f'<rect x="{x:.1f}" y="{y:.1f}" width="{w:.1f}" height="{h:.1f}" '
            f'fill="none" stroke="{color}" stroke-width="2" />'
            f'<text x="{x + 6:.1f}" y="{y + 18:.1f}" font-family="Arial" font-size="14" '
            f'font-weight="bold" fill="#ffffff" stroke="rgba(0,0,0,0.35)" stroke-width="3" '
            f'paint-order="stroke">{caption}</text>'
            f"</g>"
        )

    svg_parts.append("</svg>")
    return "".join(svg_parts)
