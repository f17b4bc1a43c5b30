"""
Data models for the storybook print service.

This module contains dataclasses for:
- Order: a book purchase and its fulfillment status
- BookTypeProfile / CoverColor: immutable print reference data
- BookContent: story content handed to the renderer
- ShippingOption, PricingQuote, PrintLineItem, FulfillmentJob: partner data
- ProcessResult: outcome of one fulfillment pipeline run

Reference data (profiles, colours) and partner results are frozen so they
can be shared between request threads and pipeline threads.
"""

from .book_type import (
    BookType,
    BookTypeProfile,
    CoverColor,
    BOOK_TYPES,
    COVER_COLORS,
    get_book_type_profile,
    get_book_type_by_product_code,
    get_cover_color,
)
from .order import Order, OrderStatus, OrderType, ShippingAddress
from .content import BookContent, StoryPage
from .fulfillment import (
    ShippingOption,
    PricingQuote,
    PrintLineItem,
    FulfillmentJob,
    FulfillmentLineItem,
    TrackingInfo,
)
from .process_result import ProcessResult, ProcessOutcome

__all__ = [
    # Reference data
    "BookType",
    "BookTypeProfile",
    "CoverColor",
    "BOOK_TYPES",
    "COVER_COLORS",
    "get_book_type_profile",
    "get_book_type_by_product_code",
    "get_cover_color",
    # Order models
    "Order",
    "OrderStatus",
    "OrderType",
    "ShippingAddress",
    # Content
    "BookContent",
    "StoryPage",
    # Partner models
    "ShippingOption",
    "PricingQuote",
    "PrintLineItem",
    "FulfillmentJob",
    "FulfillmentLineItem",
    "TrackingInfo",
    # Results
    "ProcessResult",
    "ProcessOutcome",
]
