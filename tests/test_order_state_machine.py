"""
Unit tests for the order state machine.

Tests cover:
- Checkout creation and address validation
- Payment confirmation (idempotent)
- Pipeline transitions
- Forward-only partner status reconciliation
- Operator cancellation
- Concurrent transitions
"""

import threading

import pytest

from core.exceptions import OrderNotFoundError, ValidationError
from models.fulfillment import TrackingInfo
from models.order import OrderStatus, OrderType, ShippingAddress
from services.order_state_machine import map_partner_status, plan_partner_transition


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def pending_order(state_machine, shipping_address):
    return state_machine.create_order(
        OrderType.SOFTCOVER,
        creation_id="creation-1",
        shipping_address=shipping_address,
        contact_email="ada@example.com",
        amount_cents=2999,
        payment_session_id="cs_test_1",
    )


@pytest.fixture
def submitted_order(state_machine, pending_order):
    state_machine.mark_payment_received(pending_order.id)
    state_machine.begin_processing(pending_order.id)
    return state_machine.mark_submitted(pending_order.id, "job-1").order


# =============================================================================
# Checkout
# =============================================================================

class TestCreateOrder:
    """Tests for order creation."""

    def test_creates_pending_order(self, pending_order, repository):
        assert pending_order.status is OrderStatus.PENDING
        assert repository.get(pending_order.id) is not None

    def test_physical_order_requires_address(self, state_machine):
        with pytest.raises(ValidationError) as exc_info:
            state_machine.create_order(OrderType.HARDCOVER, creation_id="creation-1")
        assert exc_info.value.field == "shipping_address"

    def test_incomplete_address_lists_missing_fields(self, state_machine):
        address = ShippingAddress(name="Ada", street1="1 Main St", country_code="US")
        with pytest.raises(ValidationError) as exc_info:
            state_machine.create_order(OrderType.SOFTCOVER, creation_id="creation-1",
                                       shipping_address=address)
        assert exc_info.value.details["missing"] == ["city", "state_code", "postal_code"]

    def test_ebook_needs_no_address(self, state_machine, shipping_address):
        order = state_machine.create_order(OrderType.EBOOK, creation_id="creation-1",
                                           shipping_address=shipping_address)
        assert order.shipping_address is None

    def test_creation_id_required(self, state_machine):
        with pytest.raises(ValidationError):
            state_machine.create_order(OrderType.EBOOK, creation_id="")


# =============================================================================
# Payment and pipeline
# =============================================================================

class TestPaymentAndPipeline:
    """Tests for payment confirmation and pipeline transitions."""

    def test_payment_by_session_id(self, state_machine, pending_order):
        result = state_machine.mark_payment_received(session_id="cs_test_1",
                                                     payment_intent_id="pi_1",
                                                     amount_cents=3499)
        assert result.changed is True
        assert result.entered is OrderStatus.PAYMENT_RECEIVED
        assert result.order.payment_intent_id == "pi_1"
        assert result.order.amount_cents == 3499
        assert result.order.paid_at is not None

    def test_duplicate_payment_is_noop(self, state_machine, pending_order):
        state_machine.mark_payment_received(pending_order.id)
        second = state_machine.mark_payment_received(pending_order.id)
        assert second.changed is False
        assert second.entered is None
        assert second.order.status is OrderStatus.PAYMENT_RECEIVED

    def test_payment_for_unknown_session(self, state_machine):
        with pytest.raises(OrderNotFoundError) as exc_info:
            state_machine.mark_payment_received(session_id="cs_missing")
        assert exc_info.value.kind == "payment_session_id"

    def test_processing_requires_payment(self, state_machine, pending_order):
        result = state_machine.begin_processing(pending_order.id)
        assert result.changed is False
        assert result.order.status is OrderStatus.PENDING

    def test_submitted_stores_job_id(self, submitted_order):
        assert submitted_order.status is OrderStatus.SUBMITTED
        assert submitted_order.partner_job_id == "job-1"
        assert submitted_order.submitted_at is not None

    def test_second_submit_is_noop(self, state_machine, submitted_order):
        result = state_machine.mark_submitted(submitted_order.id, "job-2")
        assert result.changed is False
        assert result.order.partner_job_id == "job-1"

    def test_retry_reenters_processing(self, state_machine, pending_order):
        state_machine.mark_payment_received(pending_order.id)
        state_machine.begin_processing(pending_order.id)
        state_machine.record_failure(pending_order.id, "render failed")

        assert state_machine.begin_processing(pending_order.id).changed is False
        result = state_machine.begin_processing(pending_order.id, retry=True)
        assert result.changed is True
        assert result.order.last_error is None

    def test_record_failure_keeps_status(self, state_machine, pending_order):
        order = state_machine.record_failure(pending_order.id, "boom")
        assert order.status is OrderStatus.PENDING
        assert order.last_error == "boom"

    def test_record_failure_unknown_order(self, state_machine):
        with pytest.raises(OrderNotFoundError):
            state_machine.record_failure("missing", "boom")

    def test_ebook_delivery_rejected_for_physical(self, state_machine, pending_order):
        with pytest.raises(ValidationError):
            state_machine.mark_ebook_delivered(pending_order.id, "ebooks/x.pdf", "http://x")


# =============================================================================
# Partner status
# =============================================================================

class TestPartnerStatus:
    """Tests for partner status reconciliation."""

    def test_status_map(self):
        assert map_partner_status("IN_PRODUCTION") == (OrderStatus.IN_PRODUCTION, True)
        assert map_partner_status("shipped") == (OrderStatus.SHIPPED, True)
        assert map_partner_status("CANCELED") == (OrderStatus.CANCELLED, True)
        assert map_partner_status("SOMETHING_NEW") == (OrderStatus.PROCESSING, False)

    def test_forward_sequence(self, state_machine, submitted_order):
        result = state_machine.apply_partner_status("job-1", "IN_PRODUCTION")
        assert result.entered is OrderStatus.IN_PRODUCTION

        tracking = TrackingInfo("1Z999", "https://track.example.com/1Z999", "UPS")
        result = state_machine.apply_partner_status("job-1", "SHIPPED", tracking)
        assert result.entered is OrderStatus.SHIPPED
        assert result.order.tracking_number == "1Z999"
        assert result.order.tracking_url == "https://track.example.com/1Z999"
        assert result.order.shipped_at is not None

    def test_repeat_is_noop(self, state_machine, submitted_order):
        state_machine.apply_partner_status("job-1", "IN_PRODUCTION")
        result = state_machine.apply_partner_status("job-1", "IN_PRODUCTION")
        assert result.changed is False

    def test_regression_is_noop(self, state_machine, submitted_order):
        state_machine.apply_partner_status("job-1", "IN_PRODUCTION")
        result = state_machine.apply_partner_status("job-1", "CREATED")
        assert result.changed is False
        assert result.order.status is OrderStatus.IN_PRODUCTION

    def test_unknown_status_does_not_regress(self, state_machine, submitted_order):
        result = state_machine.apply_partner_status("job-1", "SOMETHING_NEW")
        assert result.changed is False
        assert result.order.status is OrderStatus.SUBMITTED

    def test_cancel_from_partner(self, state_machine, submitted_order):
        result = state_machine.apply_partner_status("job-1", "REJECTED")
        assert result.entered is OrderStatus.CANCELLED

    def test_cancel_after_shipping_is_noop(self, state_machine, submitted_order):
        state_machine.apply_partner_status("job-1", "SHIPPED", TrackingInfo("T1"))
        result = state_machine.apply_partner_status("job-1", "CANCELED")
        assert result.changed is False
        assert result.order.status is OrderStatus.SHIPPED

    def test_new_tracking_refreshed_while_shipped(self, state_machine, submitted_order):
        state_machine.apply_partner_status("job-1", "SHIPPED", TrackingInfo("T1"))
        result = state_machine.apply_partner_status("job-1", "SHIPPED", TrackingInfo("T2"))
        assert result.changed is True
        assert result.entered is None
        assert result.order.tracking_number == "T2"

    def test_unknown_job(self, state_machine):
        with pytest.raises(OrderNotFoundError) as exc_info:
            state_machine.apply_partner_status("job-404", "SHIPPED")
        assert exc_info.value.kind == "partner_job_id"

    def test_plan_is_pure(self, submitted_order):
        plan = plan_partner_transition(submitted_order, OrderStatus.IN_PRODUCTION)
        expected, changes = plan
        assert expected == frozenset({OrderStatus.SUBMITTED})
        assert changes == {"status": OrderStatus.IN_PRODUCTION}
        assert submitted_order.status is OrderStatus.SUBMITTED

    def test_plan_noop_for_terminal(self, submitted_order):
        delivered = submitted_order.copy(status=OrderStatus.DELIVERED)
        assert plan_partner_transition(delivered, OrderStatus.SHIPPED) is None


# =============================================================================
# Operator actions and concurrency
# =============================================================================

class TestCancelAndConcurrency:
    """Tests for cancellation and conditional updates under contention."""

    def test_cancel_pending(self, state_machine, pending_order):
        result = state_machine.cancel(pending_order.id, reason="customer request")
        assert result.entered is OrderStatus.CANCELLED
        assert result.order.last_error == "Cancelled: customer request"

    def test_cancel_shipped_is_noop(self, state_machine, submitted_order):
        state_machine.apply_partner_status("job-1", "SHIPPED", TrackingInfo("T1"))
        result = state_machine.cancel(submitted_order.id)
        assert result.changed is False

    def test_cancelled_order_cannot_be_submitted(self, state_machine, pending_order):
        state_machine.mark_payment_received(pending_order.id)
        state_machine.begin_processing(pending_order.id)
        state_machine.cancel(pending_order.id)
        result = state_machine.mark_submitted(pending_order.id, "job-9")
        assert result.changed is False
        assert result.order.partner_job_id is None

    def test_mark_delivered_after_shipping(self, state_machine, submitted_order):
        state_machine.apply_partner_status("job-1", "SHIPPED", TrackingInfo("T1"))
        result = state_machine.mark_delivered(submitted_order.id)
        assert result.entered is OrderStatus.DELIVERED

    def test_concurrent_payment_applies_once(self, state_machine, pending_order):
        results = []
        barrier = threading.Barrier(8)

        def confirm():
            barrier.wait()
            results.append(state_machine.mark_payment_received(pending_order.id))

        threads = [threading.Thread(target=confirm) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(1 for r in results if r.changed) == 1
        assert state_machine.get_order(pending_order.id).status is OrderStatus.PAYMENT_RECEIVED
