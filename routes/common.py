"""Request helpers shared by the JSON blueprints."""

import hmac
from functools import wraps
from typing import Any, Dict

import bleach
from flask import current_app, jsonify, request

from core.exceptions import ValidationError
from models.order import ShippingAddress
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

MAX_NAME_LENGTH = 200
MAX_FIELD_LENGTH = 255
MAX_DEDICATION_LENGTH = 500

OPERATOR_KEY_HEADER = "X-Operator-Key"


def _sanitize_text(text: str, max_length: int = None) -> str:
    """Sanitize user input text."""
    if not text:
        return ""
    text = str(text).strip()
    text = bleach.clean(text, tags=[], strip=True)
    if max_length and len(text) > max_length:
        text = text[:max_length]
    return text


def json_body() -> Dict[str, Any]:
    """Request body as a JSON object; anything else is a ValidationError."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", field="body")
    return data


def sanitize_address(data: Any) -> ShippingAddress:
    """Build a ShippingAddress from untrusted input."""
    if not isinstance(data, dict):
        raise ValidationError("shipping_address must be an object", field="shipping_address")
    address = ShippingAddress.from_dict(data)
    return ShippingAddress(
        name=_sanitize_text(address.name, MAX_NAME_LENGTH),
        street1=_sanitize_text(address.street1, MAX_FIELD_LENGTH),
        street2=_sanitize_text(address.street2, MAX_FIELD_LENGTH),
        city=_sanitize_text(address.city, MAX_FIELD_LENGTH),
        state_code=_sanitize_text(address.state_code, 10).upper(),
        postal_code=_sanitize_text(address.postal_code, 20),
        country_code=_sanitize_text(address.country_code, 2).upper() or "US",
        phone_number=_sanitize_text(address.phone_number, 30),
        email=_sanitize_text(address.email, MAX_FIELD_LENGTH),
    )


def operator_required(view):
    """
    Require the X-Operator-Key header when OPERATOR_API_KEY is set.

    Production refuses to start without the key (see create_app).
    """

    @wraps(view)
    def wrapper(*args, **kwargs):
        expected = current_app.config.get("OPERATOR_API_KEY")
        provided = request.headers.get(OPERATOR_KEY_HEADER, "")
        if expected and not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
            logger.warning(f"Operator endpoint {request.path} rejected: bad or missing key")
            return jsonify({"error": "Unauthorized", "message": "Operator key required"}), 401
        return view(*args, **kwargs)

    return wrapper
