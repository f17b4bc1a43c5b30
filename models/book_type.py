"""
Book type profiles and cover palette.

A BookTypeProfile is immutable reference data: one per supported binding,
looked up by book type and never mutated at runtime. Spine geometry is
derived from `page_thickness_in` (see modules.print_specs).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from core.exceptions import ValidationError


MIN_PAGE_COUNT = 24
MAX_PAGE_COUNT = 800

# Fixed interior page count used for pricing and rate discovery
FIXED_PAGE_COUNT = 32


class BookType(Enum):
    """Supported print bindings."""

    SOFTCOVER = "softcover"
    HARDCOVER = "hardcover"


@dataclass(frozen=True)
class BookTypeProfile:
    """Print partner product for one binding."""

    book_type: BookType
    product_code: str
    """Partner pod_package_id."""

    page_thickness_in: float
    """Paper thickness per interior page, in inches."""

    binding_type: str
    display_name: str
    description: str
    price_key: str = ""
    """Key used to look up the retail price."""

    def to_dict(self) -> Dict[str, object]:
        return {
            "book_type": self.book_type.value,
            "product_code": self.product_code,
            "page_thickness_in": self.page_thickness_in,
            "binding_type": self.binding_type,
            "display_name": self.display_name,
            "description": self.description,
            "price_key": self.price_key,
        }


BOOK_TYPES: Dict[BookType, BookTypeProfile] = {
    BookType.SOFTCOVER: BookTypeProfile(
        book_type=BookType.SOFTCOVER,
        product_code="0850X0850FCPRESS060UW444MXX",
        page_thickness_in=0.00225,  # 60# uncoated white
        binding_type="PERFECT_BOUND",
        display_name="Softcover Perfect Bound",
        description='8.5" x 8.5" Square, Perfect Bound, Matte Cover',
        price_key="softcover",
    ),
    BookType.HARDCOVER: BookTypeProfile(
        book_type=BookType.HARDCOVER,
        product_code="0850X0850FCPRECW060UW444MXX",
        page_thickness_in=0.00225,
        binding_type="CASEWRAP",
        display_name="Hardcover Casewrap",
        description='8.5" x 8.5" Square, Casewrap Hardcover, Premium Color',
        price_key="hardcover",
    ),
}


def parse_book_type(value: Union[BookType, str]) -> BookType:
    """Accept a BookType or its string value."""
    if isinstance(value, BookType):
        return value
    try:
        return BookType(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown book type: {value}", field="book_type")


def get_book_type_profile(book_type: Union[BookType, str]) -> BookTypeProfile:
    """
    Look up the profile for a binding.

    Raises:
        ValidationError: If the book type is not supported
    """
    return BOOK_TYPES[parse_book_type(book_type)]


def get_book_type_by_product_code(product_code: str) -> Optional[BookTypeProfile]:
    """Reverse lookup by partner product code."""
    for profile in BOOK_TYPES.values():
        if profile.product_code == product_code:
            return profile
    return None


# =============================================================================
# COVER COLORS
# =============================================================================

@dataclass(frozen=True)
class CoverColor:
    id: str
    name: str
    hex: str
    rgb: Tuple[float, float, float]


COVER_COLORS: Tuple[CoverColor, ...] = (
    CoverColor("soft-blue", "Soft Blue", "#E0F2FE", (0.878, 0.949, 0.996)),
    CoverColor("cream", "Cream", "#FEF9E7", (0.996, 0.976, 0.906)),
    CoverColor("sage", "Sage", "#D5E8D4", (0.835, 0.910, 0.831)),
    CoverColor("blush", "Blush", "#FCE4EC", (0.988, 0.894, 0.925)),
    CoverColor("lavender", "Lavender", "#E8DEF8", (0.910, 0.871, 0.973)),
    CoverColor("buttercup", "Buttercup", "#FFF9C4", (1.0, 0.976, 0.769)),
)

DEFAULT_COVER_COLOR = COVER_COLORS[0]


def get_cover_color(color_id: Optional[str]) -> CoverColor:
    """Unknown or empty ids fall back to the default colour."""
    for color in COVER_COLORS:
        if color.id == color_id:
            return color
    return DEFAULT_COVER_COLOR
