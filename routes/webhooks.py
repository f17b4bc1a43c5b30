"""
Webhook routes.

Handles:
- /webhooks/payment - Payment provider events (Stripe-Signature header)
- /webhooks/print-partner - Print partner events (Lulu-HMAC-SHA256 header)

The raw request body is handed to the webhook service untouched; the
signature is computed over those exact bytes.
"""

from flask import Blueprint, current_app, jsonify, request

from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/webhooks")

PAYMENT_SIGNATURE_HEADER = "Stripe-Signature"
PARTNER_SIGNATURE_HEADER = "Lulu-HMAC-SHA256"


@webhooks_bp.route("/payment", methods=["POST"])
def payment_webhook():
    service = current_app.config["WEBHOOK_SERVICE"]
    result = service.handle_payment_event(
        request.get_data(cache=False),
        request.headers.get(PAYMENT_SIGNATURE_HEADER),
    )
    return jsonify(result.to_dict()), 200


@webhooks_bp.route("/print-partner", methods=["POST"])
def print_partner_webhook():
    service = current_app.config["WEBHOOK_SERVICE"]
    result = service.handle_partner_event(
        request.get_data(cache=False),
        request.headers.get(PARTNER_SIGNATURE_HEADER),
    )
    return jsonify(result.to_dict()), 200
