"""
Order routes (operator and checkout backend).

Handles:
- POST /orders - Create a pending order at checkout initiation
- GET /orders/<id> - Order status, tracking and last error
- POST /orders/<id>/process - Run (or retry with ?retry=1) the pipeline
- POST /orders/<id>/refresh-status - Poll the partner and reconcile
- POST /orders/<id>/cancel - Cancel before shipment

Mutating endpoints require X-Operator-Key when OPERATOR_API_KEY is set.
"""

from flask import Blueprint, current_app, jsonify, request

from core.exceptions import ValidationError
from core.fulfillment_client import SHIPPING_LEVELS
from models.order import OrderType
from .common import (
    MAX_DEDICATION_LENGTH,
    MAX_FIELD_LENGTH,
    _sanitize_text,
    json_body,
    operator_required,
    sanitize_address,
)
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

orders_bp = Blueprint("orders", __name__, url_prefix="/orders")

TRUE_VALUES = ("1", "true", "yes")


def _parse_order_type(value) -> OrderType:
    try:
        return OrderType(str(value or "").strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown order type: {value}", field="order_type")


@orders_bp.route("", methods=["POST"])
@operator_required
def create_order():
    data = json_body()
    order_type = _parse_order_type(data.get("order_type"))

    shipping_level = str(data.get("shipping_level") or "MAIL").upper()
    if shipping_level not in SHIPPING_LEVELS:
        raise ValidationError(f"Unknown shipping level: {shipping_level}", field="shipping_level")

    address = None
    if order_type.is_physical:
        address = sanitize_address(data.get("shipping_address"))

    try:
        amount_cents = int(data.get("amount_cents") or 0)
    except (TypeError, ValueError):
        raise ValidationError("amount_cents must be an integer", field="amount_cents")

    machine = current_app.config["STATE_MACHINE"]
    order = machine.create_order(
        order_type=order_type,
        creation_id=_sanitize_text(data.get("creation_id"), MAX_FIELD_LENGTH),
        user_id=_sanitize_text(data.get("user_id"), MAX_FIELD_LENGTH),
        shipping_address=address,
        shipping_level=shipping_level,
        contact_email=_sanitize_text(data.get("contact_email"), MAX_FIELD_LENGTH),
        dedication_text=_sanitize_text(data.get("dedication_text"), MAX_DEDICATION_LENGTH),
        cover_color_id=_sanitize_text(data.get("cover_color_id"), 50),
        amount_cents=amount_cents,
        payment_session_id=_sanitize_text(data.get("payment_session_id"), MAX_FIELD_LENGTH),
    )
    return jsonify(order.to_dict()), 201


@orders_bp.route("/<order_id>", methods=["GET"])
def get_order(order_id: str):
    machine = current_app.config["STATE_MACHINE"]
    runner = current_app.config["PIPELINE_RUNNER"]

    order = machine.get_order(order_id)
    body = order.to_dict()
    latest = runner.result_store.peek_result(order_id)
    body["pipeline"] = {
        "running": runner.is_running(order_id),
        "last_result": latest.to_dict() if latest else None,
    }
    return jsonify(body), 200


@orders_bp.route("/<order_id>/process", methods=["POST"])
@operator_required
def process_order(order_id: str):
    """
    Run the fulfillment pipeline for an order.

    By default the run is dispatched to a pipeline thread (202). With
    ?sync=1 it runs in the request and returns the ProcessResult.
    """
    retry = request.args.get("retry", "").lower() in TRUE_VALUES
    sync = request.args.get("sync", "").lower() in TRUE_VALUES

    # 404 before dispatching
    current_app.config["STATE_MACHINE"].get_order(order_id)

    if sync:
        service = current_app.config["FULFILLMENT_SERVICE"]
        result = service.process_order(order_id, retry=retry)
        return jsonify(result.to_dict()), 200

    runner = current_app.config["PIPELINE_RUNNER"]
    dispatched = runner.dispatch(order_id, retry=retry)
    return jsonify({"order_id": order_id, "dispatched": dispatched, "retry": retry}), 202


@orders_bp.route("/<order_id>/refresh-status", methods=["POST"])
@operator_required
def refresh_status(order_id: str):
    machine = current_app.config["STATE_MACHINE"]
    client = current_app.config["FULFILLMENT_CLIENT"]
    webhook_service = current_app.config["WEBHOOK_SERVICE"]

    order = machine.get_order(order_id)
    if not order.partner_job_id:
        raise ValidationError("Order has not been submitted to the print partner",
                              field="partner_job_id")

    job = client.get_job_status(order.partner_job_id)
    result = webhook_service.reconcile(job)
    logger.info(f"Order {order_id[:8]} refreshed: partner {job.status_name} -> {result.action}")

    return jsonify({
        "order": machine.get_order(order_id).to_dict(),
        "partner_job": job.to_dict(),
        "action": result.action,
    }), 200


@orders_bp.route("/<order_id>/cancel", methods=["POST"])
@operator_required
def cancel_order(order_id: str):
    data = request.get_json(silent=True) or {}
    reason = _sanitize_text(data.get("reason") if isinstance(data, dict) else "", MAX_DEDICATION_LENGTH)

    machine = current_app.config["STATE_MACHINE"]
    result = machine.cancel(order_id, reason)
    if not result.changed:
        return jsonify({
            "error": "InvalidTransition",
            "message": f"Order cannot be cancelled in status {result.order.status.value}",
            "order": result.order.to_dict(),
        }), 409
    return jsonify(result.order.to_dict()), 200
