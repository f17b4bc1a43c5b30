"""
Shipping and pricing routes.

Handles:
- POST /api/shipping-rates - Quote every shipping level for an address
- POST /api/pricing - Partner cost of one book type
- GET /api/book-types - Supported bindings and cover colours
"""

from flask import Blueprint, current_app, jsonify

from core.exceptions import ValidationError
from core.fulfillment_client import SHIPPING_LEVELS
from models.book_type import BOOK_TYPES, COVER_COLORS, get_book_type_profile
from .common import json_body, sanitize_address
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

shipping_bp = Blueprint("shipping", __name__, url_prefix="/api")

MAX_QUANTITY = 100


def _quantity(data) -> int:
    try:
        quantity = int(data.get("quantity") or 1)
    except (TypeError, ValueError):
        raise ValidationError("quantity must be an integer", field="quantity")
    if not 1 <= quantity <= MAX_QUANTITY:
        raise ValidationError(f"quantity must be between 1 and {MAX_QUANTITY}", field="quantity")
    return quantity


@shipping_bp.route("/shipping-rates", methods=["POST"])
def shipping_rates():
    data = json_body()
    profile = get_book_type_profile(data.get("book_type") or "softcover")
    address = sanitize_address(data.get("shipping_address"))

    client = current_app.config["FULFILLMENT_CLIENT"]
    options = client.get_shipping_rates(address, profile.product_code, _quantity(data))
    return jsonify({
        "book_type": profile.book_type.value,
        "product_code": profile.product_code,
        "environment": client.environment,
        "shipping_options": [option.to_dict() for option in options],
    }), 200


@shipping_bp.route("/pricing", methods=["POST"])
def pricing():
    data = json_body()
    profile = get_book_type_profile(data.get("book_type") or "softcover")
    level = str(data.get("shipping_level") or "MAIL").upper()
    if level not in SHIPPING_LEVELS:
        raise ValidationError(f"Unknown shipping level: {level}", field="shipping_level")

    client = current_app.config["FULFILLMENT_CLIENT"]
    quote = client.get_product_pricing(profile.product_code, _quantity(data), level)
    return jsonify(quote.to_dict()), 200


@shipping_bp.route("/book-types", methods=["GET"])
def book_types():
    return jsonify({
        "book_types": [profile.to_dict() for profile in BOOK_TYPES.values()],
        "cover_colors": [
            {"id": color.id, "name": color.name, "hex": color.hex} for color in COVER_COLORS
        ],
        "shipping_levels": list(SHIPPING_LEVELS),
    }), 200
