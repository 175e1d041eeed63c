"""
Editor pixels -> PDF points.

The mapping editor measures positions from the top-left corner of the page as
rendered on screen (uiW x uiH pixels). PDF user space measures from the
bottom-left corner in points. For a page of pageW x pageH points:

    scaleX = pageW / uiW            scaleY = pageH / uiH
    xPt    = x * scaleX
    yPt    = pageH - y * scaleY - hPt

hPt is the height of whatever is drawn: the scaled box height for images and
the (unscaled) font size for text. Using the font size as the text height puts
the baseline roughly one line below the editor anchor; saved mappings were
authored against that approximation, so it must not be replaced with real
glyph metrics.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from field_mapping import ImageField, Mapping, TextField

PageSize = tuple[float, float]


@dataclass(frozen=True)
class Placement:
    """A field anchor resolved to PDF points on a concrete page."""

    page_index: int
    x: float
    y: float
    width: float | None = None
    height: float | None = None


def resolve_page_index(page: int | None, page_count: int) -> int:
    """Out-of-range or missing page indices fall back to the first page."""
    if page is None or page < 0 or page >= page_count:
        return 0
    return page


def scale_factors(page_w: float, page_h: float, ui_w: float | None, ui_h: float | None) -> tuple[float, float]:
    return page_w / (ui_w or page_w), page_h / (ui_h or page_h)


def flip_y(y: float, drawn_height: float, page_h: float, scale_y: float) -> float:
    return page_h - (y * scale_y) - drawn_height


def place_text(
    field: TextField | ImageField,
    mapping: Mapping,
    pages: Sequence[PageSize],
    font_size: float,
) -> Placement:
    page_index = resolve_page_index(field.page, len(pages))
    page_w, page_h = pages[page_index]
    scale_x, scale_y = scale_factors(page_w, page_h, mapping.ui_w, mapping.ui_h)
    return Placement(
        page_index=page_index,
        x=field.x * scale_x,
        y=flip_y(field.y, font_size, page_h, scale_y),
        height=font_size,
    )


def place_image(field: ImageField, mapping: Mapping, pages: Sequence[PageSize]) -> Placement:
    page_index = resolve_page_index(field.page, len(pages))
    page_w, page_h = pages[page_index]
    scale_x, scale_y = scale_factors(page_w, page_h, mapping.ui_w, mapping.ui_h)
    width = field.w * scale_x
    height = field.h * scale_y
    return Placement(
        page_index=page_index,
        x=field.x * scale_x,
        y=flip_y(field.y, height, page_h, scale_y),
        width=width,
        height=height,
    )
