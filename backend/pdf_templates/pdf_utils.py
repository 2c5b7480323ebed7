"""
Low-level helpers for placing text on PDF pages.

Geometry here works in PDF points with the origin in the bottom-left corner,
the native PDF convention. Field rectangles arrive normalized with a top-left
origin and are converted by ``box_from_normalized``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable

import fitz  # PyMuPDF

from .models import DataValue, TextAlign

TEXT_FONT = "helv"
CHECK_FONT = "zadb"
CHECK_GLYPH = "4"  # ZapfDingbats a20, the check mark
TEXT_PADDING = 2.0
MIN_FONT_SIZE = 6.0
FONT_SIZE_STEP = 0.5

TEXT_COLOR = (0, 0, 0)
SIGNATURE_COLOR = (0, 0.5, 0)

Measure = Callable[[str, float], float]


def measure_text(text: str, font_size: float, fontname: str = TEXT_FONT) -> float:
    return fitz.get_text_length(text, fontname=fontname, fontsize=font_size)


@dataclass(frozen=True)
class Box:
    """A field rectangle in PDF points, bottom-left origin."""

    left: float
    bottom: float
    width: float
    height: float

    @property
    def top(self) -> float:
        return self.bottom + self.height

    def baseline(self, font_size: float) -> float:
        """Baseline that vertically centers text of ``font_size`` in the box."""
        return self.bottom + (self.height - font_size) / 2


def box_from_normalized(
    x: float, y: float, width: float, height: float, page_width: float, page_height: float
) -> Box:
    box_height = height * page_height
    top_from_top = y * page_height
    return Box(
        left=x * page_width,
        bottom=page_height - top_from_top - box_height,
        width=width * page_width,
        height=box_height,
    )


def fit_font_size(
    text: str,
    box_width: float,
    start_size: float,
    measure: Measure = measure_text,
    padding: float = TEXT_PADDING,
    floor: float = MIN_FONT_SIZE,
    step: float = FONT_SIZE_STEP,
) -> float:
    """
    Shrink the font size until ``text`` fits inside the padded box width.

    Stops at ``floor``; text that is still too wide at the floor is accepted
    as is and will overflow slightly.
    """
    max_width = box_width - 2 * padding
    size = start_size
    while measure(text, size) > max_width and size > floor:
        size = max(size - step, floor)
    return size


def aligned_x(box: Box, text_width: float, align: TextAlign, padding: float = TEXT_PADDING) -> float:
    inner_left = box.left + padding
    inner_right = box.left + box.width - padding
    if align is TextAlign.RIGHT:
        return max(inner_right - text_width, inner_left)
    if align is TextAlign.CENTER:
        return max(inner_left + (inner_right - inner_left - text_width) / 2, inner_left)
    return inner_left


def stringify(value: DataValue) -> str:
    """Render a data value for display; integral floats lose the trailing .0"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def is_truthy(value: DataValue) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "false", "0", "no", "off")
    return bool(value)
