"""
Unit tests for webhook dispatch.

Tests cover:
- Signature checks on the raw body before parsing
- Checkout completion (idempotent, dispatches processing once)
- Print job status reconciliation and shipping notifications
- Ignored event types and topics
"""

import json
import time
from unittest.mock import MagicMock

import pytest

from core.exceptions import ConfigurationError, SignatureError, ValidationError
from core.webhook_verifier import compute_signature
from models.order import OrderStatus, OrderType
from services.notifier import TEMPLATE_BOOK_SHIPPED
from services.webhook_service import WebhookService


PAYMENT_SECRET = "whsec_test"
PARTNER_SECRET = "partner-secret"


def sign_payment(body: bytes, secret: str = PAYMENT_SECRET) -> str:
    timestamp = int(time.time())
    return f"t={timestamp},v1={compute_signature(f'{timestamp}.'.encode() + body, secret)}"


def checkout_event(session_id="cs_test_1", order_id=None, source="book_checkout",
                   payment_status="paid", event_type="checkout.session.completed") -> bytes:
    metadata = {"order_source": source}
    if order_id:
        metadata["book_order_id"] = order_id
    return json.dumps({
        "id": "evt_1",
        "type": event_type,
        "data": {"object": {
            "id": session_id,
            "payment_status": payment_status,
            "payment_intent": "pi_123",
            "amount_total": 3499,
            "metadata": metadata,
        }},
    }).encode()


def partner_event(job_id="job-1", status="SHIPPED", tracking_id="1Z999",
                  topic="PRINT_JOB_STATUS_CHANGED") -> bytes:
    line_item = {"id": 1, "external_id": "x"}
    if tracking_id:
        line_item.update({
            "tracking_id": tracking_id,
            "tracking_urls": [f"https://track.example.com/{tracking_id}"],
            "carrier_name": "UPS",
        })
    return json.dumps({
        "topic": topic,
        "data": {"id": job_id, "status": {"name": status}, "line_items": [line_item]},
    }).encode()


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def dispatcher():
    return MagicMock()


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def webhooks(state_machine, dispatcher, notifier, content_repository):
    return WebhookService(
        state_machine,
        payment_secret=PAYMENT_SECRET,
        partner_secret=PARTNER_SECRET,
        environment="sandbox",
        dispatcher=dispatcher,
        notifier=notifier,
        content_repository=content_repository,
    )


@pytest.fixture
def pending_order(state_machine, shipping_address):
    return state_machine.create_order(
        OrderType.SOFTCOVER,
        creation_id="creation-1",
        shipping_address=shipping_address,
        contact_email="ada@example.com",
        payment_session_id="cs_test_1",
    )


@pytest.fixture
def submitted_order(state_machine, pending_order):
    state_machine.mark_payment_received(pending_order.id)
    state_machine.begin_processing(pending_order.id)
    return state_machine.mark_submitted(pending_order.id, "job-1").order


# =============================================================================
# Payment events
# =============================================================================

class TestPaymentEvents:
    """Tests for payment provider webhooks."""

    def test_checkout_marks_paid_and_dispatches(self, webhooks, state_machine, dispatcher, pending_order):
        body = checkout_event()
        result = webhooks.handle_payment_event(body, sign_payment(body))

        assert result.action == "updated"
        assert result.to_dict()["received"] is True
        order = state_machine.get_order(pending_order.id)
        assert order.status is OrderStatus.PAYMENT_RECEIVED
        assert order.payment_intent_id == "pi_123"
        assert order.amount_cents == 3499
        dispatcher.assert_called_once_with(pending_order.id)

    def test_lookup_by_metadata_order_id(self, webhooks, state_machine, pending_order):
        body = checkout_event(session_id="cs_other", order_id=pending_order.id)
        result = webhooks.handle_payment_event(body, sign_payment(body))
        assert result.order_id == pending_order.id

    def test_redelivery_is_duplicate(self, webhooks, dispatcher, pending_order):
        body = checkout_event()
        webhooks.handle_payment_event(body, sign_payment(body))
        result = webhooks.handle_payment_event(body, sign_payment(body))

        assert result.action == "duplicate"
        assert dispatcher.call_count == 1

    def test_invalid_signature_changes_nothing(self, webhooks, state_machine, dispatcher, pending_order):
        body = checkout_event()
        with pytest.raises(SignatureError):
            webhooks.handle_payment_event(body, sign_payment(body, "wrong-secret"))
        assert state_machine.get_order(pending_order.id).status is OrderStatus.PENDING
        dispatcher.assert_not_called()

    def test_missing_signature(self, webhooks):
        with pytest.raises(SignatureError):
            webhooks.handle_payment_event(checkout_event(), None)

    def test_signature_checked_before_parsing(self, webhooks):
        with pytest.raises(SignatureError):
            webhooks.handle_payment_event(b"not json", "t=1,v1=00")

    def test_signed_invalid_json(self, webhooks):
        body = b"not json"
        with pytest.raises(ValidationError):
            webhooks.handle_payment_event(body, sign_payment(body))

    def test_other_checkout_source_ignored(self, webhooks, state_machine, pending_order):
        body = checkout_event(source="subscription")
        result = webhooks.handle_payment_event(body, sign_payment(body))
        assert result.action == "ignored"
        assert state_machine.get_order(pending_order.id).status is OrderStatus.PENDING

    def test_unknown_event_type_ignored(self, webhooks):
        body = checkout_event(event_type="invoice.paid")
        result = webhooks.handle_payment_event(body, sign_payment(body))
        assert result.action == "ignored"
        assert result.details["event_type"] == "invoice.paid"

    def test_unpaid_checkout_waits(self, webhooks, state_machine, pending_order):
        body = checkout_event(payment_status="unpaid")
        result = webhooks.handle_payment_event(body, sign_payment(body))
        assert result.action == "payment_pending"
        assert state_machine.get_order(pending_order.id).status is OrderStatus.PENDING

    def test_delayed_payment_confirmed_later(self, webhooks, state_machine, dispatcher, pending_order):
        completed = checkout_event(payment_status="unpaid")
        assert webhooks.handle_payment_event(completed, sign_payment(completed)).action == "payment_pending"
        dispatcher.assert_not_called()

        succeeded = checkout_event(event_type="checkout.session.async_payment_succeeded")
        result = webhooks.handle_payment_event(succeeded, sign_payment(succeeded))

        assert result.action == "updated"
        assert state_machine.get_order(pending_order.id).status is OrderStatus.PAYMENT_RECEIVED
        dispatcher.assert_called_once_with(pending_order.id)

    def test_unknown_order(self, webhooks):
        body = checkout_event(session_id="cs_unknown")
        result = webhooks.handle_payment_event(body, sign_payment(body))
        assert result.action == "order_not_found"
        assert result.to_dict()["orderNotFound"] is True

    def test_missing_secret(self, state_machine):
        service = WebhookService(state_machine, payment_secret="", partner_secret=PARTNER_SECRET)
        with pytest.raises(ConfigurationError):
            service.handle_payment_event(checkout_event(), "t=1,v1=00")


# =============================================================================
# Print partner events
# =============================================================================

class TestPartnerEvents:
    """Tests for print partner webhooks."""

    def test_shipped_stores_tracking_and_notifies(self, webhooks, state_machine, notifier, submitted_order):
        body = partner_event()
        result = webhooks.handle_partner_event(body, compute_signature(body, PARTNER_SECRET))

        assert result.action == "updated"
        assert result.status == "shipped"
        order = state_machine.get_order(submitted_order.id)
        assert order.status is OrderStatus.SHIPPED
        assert order.tracking_number == "1Z999"

        template, recipient, variables = notifier.send.call_args.args
        assert template == TEMPLATE_BOOK_SHIPPED
        assert recipient == "ada@example.com"
        assert variables["order_id"] == submitted_order.id[:8].upper()
        assert variables["book_title"] == "The Purple Dragon"
        assert variables["customer_name"] == "Ada Parent"
        assert variables["tracking_url"] == "https://track.example.com/1Z999"

    def test_tracking_from_first_item_that_has_one(self, webhooks, state_machine, submitted_order):
        body = json.dumps({
            "topic": "PRINT_JOB_STATUS_CHANGED",
            "data": {
                "id": "job-1",
                "status": {"name": "SHIPPED"},
                "line_items": [
                    {"id": 1, "external_id": "x"},
                    {"id": 2, "external_id": "x", "tracking_id": "1Z777",
                     "tracking_urls": ["https://track.example.com/1Z777"], "carrier_name": "FedEx"},
                ],
            },
        }).encode()

        webhooks.handle_partner_event(body, compute_signature(body, PARTNER_SECRET))

        order = state_machine.get_order(submitted_order.id)
        assert order.status is OrderStatus.SHIPPED
        assert order.tracking_number == "1Z777"
        assert order.tracking_url == "https://track.example.com/1Z777"

    @pytest.mark.parametrize("data", [
        ["not", "an", "object"],
        {"id": "job-1", "status": {"name": "SHIPPED"}, "line_items": ["x"]},
        {"id": "job-1", "status": {"name": "SHIPPED"}, "line_items": {"id": 1}},
    ])
    def test_malformed_job_rejected(self, webhooks, state_machine, submitted_order, data):
        body = json.dumps({"topic": "PRINT_JOB_STATUS_CHANGED", "data": data}).encode()
        with pytest.raises(ValidationError) as exc_info:
            webhooks.handle_partner_event(body, compute_signature(body, PARTNER_SECRET))
        assert exc_info.value.details["environment"] == "sandbox"
        assert state_machine.get_order(submitted_order.id).status is OrderStatus.SUBMITTED

    def test_non_string_status_name(self, webhooks, state_machine, submitted_order):
        body = json.dumps({"topic": "PRINT_JOB_STATUS_CHANGED",
                           "data": {"id": "job-1", "status": {"name": 7}}}).encode()
        result = webhooks.handle_partner_event(body, compute_signature(body, PARTNER_SECRET))
        assert result.details["partner_status"] == "7"
        assert state_machine.get_order(submitted_order.id).status is OrderStatus.SUBMITTED

    def test_redelivered_shipment_notifies_once(self, webhooks, notifier, submitted_order):
        body = partner_event()
        webhooks.handle_partner_event(body, compute_signature(body, PARTNER_SECRET))
        result = webhooks.handle_partner_event(body, compute_signature(body, PARTNER_SECRET))

        assert result.action == "duplicate"
        assert notifier.send.call_count == 1

    def test_notifier_failure_keeps_shipped(self, webhooks, state_machine, notifier, submitted_order):
        notifier.send.side_effect = RuntimeError("e-mail service down")
        body = partner_event()
        result = webhooks.handle_partner_event(body, compute_signature(body, PARTNER_SECRET))

        assert result.action == "updated"
        assert state_machine.get_order(submitted_order.id).status is OrderStatus.SHIPPED

    def test_in_production(self, webhooks, state_machine, notifier, submitted_order):
        body = partner_event(status="IN_PRODUCTION", tracking_id=None)
        result = webhooks.handle_partner_event(body, compute_signature(body, PARTNER_SECRET))
        assert result.status == "in_production"
        assert result.details["partner_status"] == "IN_PRODUCTION"
        notifier.send.assert_not_called()

    def test_invalid_signature(self, webhooks, state_machine, submitted_order):
        body = partner_event()
        with pytest.raises(SignatureError):
            webhooks.handle_partner_event(body, compute_signature(body, "other-secret"))
        assert state_machine.get_order(submitted_order.id).status is OrderStatus.SUBMITTED

    def test_unknown_topic_ignored(self, webhooks, submitted_order):
        body = partner_event(topic="PRINT_JOB_CREATED")
        result = webhooks.handle_partner_event(body, compute_signature(body, PARTNER_SECRET))
        assert result.action == "ignored"

    def test_unknown_job(self, webhooks):
        body = partner_event(job_id="job-404")
        result = webhooks.handle_partner_event(body, compute_signature(body, PARTNER_SECRET))
        assert result.action == "order_not_found"
        assert result.to_dict()["partner_job_id"] == "job-404"

    def test_missing_job_id(self, webhooks):
        body = json.dumps({"topic": "PRINT_JOB_STATUS_CHANGED", "data": {"status": {"name": "SHIPPED"}}}).encode()
        with pytest.raises(ValidationError):
            webhooks.handle_partner_event(body, compute_signature(body, PARTNER_SECRET))
