"""
Print specification engine.

Pure geometry for the 8.5" x 8.5" square book: interior page size, spine
width and full cover sheet dimensions. Nothing here performs I/O; the same
inputs always give the same outputs.

Cover sheet layout (left to right):

    | bleed | back cover | spine | front cover | bleed |

The interior page carries bleed on all four sides; the cover sheet carries
the same 0.125" bleed around its outside edge (0.25" in total per axis).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Any, Union

from core.exceptions import ValidationError
from models.book_type import (
    BookType,
    MIN_PAGE_COUNT,
    MAX_PAGE_COUNT,
    get_book_type_profile,
    parse_book_type,
)


TRIM_WIDTH_IN = 8.5
TRIM_HEIGHT_IN = 8.5
BLEED_IN = 0.125
COVER_BLEED_TOTAL_IN = BLEED_IN * 2
DPI = 300
POINTS_PER_INCH = 72


def inches_to_points(inches: float) -> float:
    return inches * POINTS_PER_INCH


def inches_to_pixels(inches: float, dpi: int = DPI) -> int:
    return int(round(inches * dpi))


@dataclass(frozen=True)
class PageGeometrySpec:
    """Interior page geometry (bleed included on all sides)."""

    trim_width_in: float
    trim_height_in: float
    bleed_in: float
    width_in: float
    height_in: float
    width_px: int
    height_px: int
    dpi: int

    @property
    def width_pt(self) -> float:
        return inches_to_points(self.width_in)

    @property
    def height_pt(self) -> float:
        return inches_to_points(self.height_in)

    @property
    def bleed_pt(self) -> float:
        return inches_to_points(self.bleed_in)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trim_width_in": self.trim_width_in,
            "trim_height_in": self.trim_height_in,
            "bleed_in": self.bleed_in,
            "width_in": self.width_in,
            "height_in": self.height_in,
            "width_px": self.width_px,
            "height_px": self.height_px,
            "dpi": self.dpi,
        }


@dataclass(frozen=True)
class CoverGeometrySpec:
    """Full wraparound cover sheet for one page count and binding."""

    page_count: int
    book_type: BookType
    spine_width_in: float
    back_cover_width_in: float
    front_cover_width_in: float
    bleed_total_in: float
    width_in: float
    height_in: float
    width_px: int
    height_px: int
    dpi: int

    @property
    def back_cover_x_in(self) -> float:
        return self.bleed_total_in / 2

    @property
    def spine_x_in(self) -> float:
        return self.back_cover_x_in + self.back_cover_width_in

    @property
    def front_cover_x_in(self) -> float:
        return self.spine_x_in + self.spine_width_in

    @property
    def width_pt(self) -> float:
        return inches_to_points(self.width_in)

    @property
    def height_pt(self) -> float:
        return inches_to_points(self.height_in)

    @property
    def spine_width_pt(self) -> float:
        return inches_to_points(self.spine_width_in)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_count": self.page_count,
            "book_type": self.book_type.value,
            "spine_width_in": self.spine_width_in,
            "back_cover_width_in": self.back_cover_width_in,
            "front_cover_width_in": self.front_cover_width_in,
            "bleed_total_in": self.bleed_total_in,
            "width_in": self.width_in,
            "height_in": self.height_in,
            "width_px": self.width_px,
            "height_px": self.height_px,
            "dpi": self.dpi,
            "offsets_in": {
                "back_cover": self.back_cover_x_in,
                "spine": self.spine_x_in,
                "front_cover": self.front_cover_x_in,
            },
        }


def interior_spec() -> PageGeometrySpec:
    """Interior page geometry: 8.75" x 8.75" (2625 px at 300 DPI)."""
    width_in = TRIM_WIDTH_IN + BLEED_IN * 2
    height_in = TRIM_HEIGHT_IN + BLEED_IN * 2
    return PageGeometrySpec(
        trim_width_in=TRIM_WIDTH_IN,
        trim_height_in=TRIM_HEIGHT_IN,
        bleed_in=BLEED_IN,
        width_in=width_in,
        height_in=height_in,
        width_px=inches_to_pixels(width_in),
        height_px=inches_to_pixels(height_in),
        dpi=DPI,
    )


def validate_page_count(page_count: int) -> int:
    """
    Check a page count against the binding rules.

    Args:
        page_count: Interior page count

    Returns:
        The page count, unchanged

    Raises:
        ValidationError: If the count is odd, below 24 or above 800. The
            violated bound is reported in details["bound"].
    """
    if isinstance(page_count, bool) or not isinstance(page_count, int):
        raise ValidationError(
            f"Page count must be an integer, got {page_count!r}",
            field="page_count",
            details={"bound": "type", "value": page_count},
        )
    if page_count < MIN_PAGE_COUNT:
        raise ValidationError(
            f"Page count {page_count} is below the minimum of {MIN_PAGE_COUNT}",
            field="page_count",
            details={"bound": "minimum", "value": page_count, "minimum": MIN_PAGE_COUNT},
        )
    if page_count > MAX_PAGE_COUNT:
        raise ValidationError(
            f"Page count {page_count} exceeds the maximum of {MAX_PAGE_COUNT}",
            field="page_count",
            details={"bound": "maximum", "value": page_count, "maximum": MAX_PAGE_COUNT},
        )
    if page_count % 2 != 0:
        raise ValidationError(
            f"Page count {page_count} must be even",
            field="page_count",
            details={"bound": "parity", "value": page_count},
        )
    return page_count


def spine_width(page_count: int, book_type: Union[BookType, str]) -> float:
    """Spine width in inches: page_count x paper thickness per page."""
    validate_page_count(page_count)
    profile = get_book_type_profile(book_type)
    return page_count * profile.page_thickness_in


def cover_spec(page_count: int, book_type: Union[BookType, str]) -> CoverGeometrySpec:
    """
    Cover sheet geometry for a page count and binding.

    Example:
        cover_spec(32, "softcover").width_in  # 17.322
    """
    kind = parse_book_type(book_type)
    spine = spine_width(page_count, kind)
    width_in = TRIM_WIDTH_IN * 2 + spine + COVER_BLEED_TOTAL_IN
    height_in = TRIM_HEIGHT_IN + COVER_BLEED_TOTAL_IN
    return CoverGeometrySpec(
        page_count=page_count,
        book_type=kind,
        spine_width_in=spine,
        back_cover_width_in=TRIM_WIDTH_IN,
        front_cover_width_in=TRIM_WIDTH_IN,
        bleed_total_in=COVER_BLEED_TOTAL_IN,
        width_in=width_in,
        height_in=height_in,
        width_px=inches_to_pixels(width_in),
        height_px=inches_to_pixels(height_in),
        dpi=DPI,
    )
