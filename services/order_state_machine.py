"""
Order state machine.

All order mutations after creation live here. Each one is a conditional
update through the repository: the change is applied only while the order
is still in an expected status, so concurrent webhook deliveries, pipeline
threads and operator actions cannot move an order backwards or apply the
same transition twice.

Transitions:
    pending          -> payment_received   (payment confirmed)
    payment_received -> processing         (pipeline starts)
    processing       -> submitted          (partner job created, job id stored)
    processing       -> delivered          (digital orders only)
    submitted        -> in_production      (partner status)
    in_production    -> shipped            (partner status, tracking stored)
    shipped          -> delivered
    any pre-shipped  -> cancelled / failed

Partner statuses only move an order forward. Regressions and repeats are
no-ops, which makes webhook redelivery harmless.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional, Tuple

from core.exceptions import OrderNotFoundError, ValidationError
from models.fulfillment import TrackingInfo
from models.order import (
    Order,
    OrderStatus,
    OrderType,
    PRE_SHIPPED_STATUSES,
    ShippingAddress,
    utcnow,
)
from services.order_repository import OrderRepository
from logging_config import get_logger


logger = get_logger(__name__)

PARTNER_STATUS_MAP: Dict[str, OrderStatus] = {
    "CREATED": OrderStatus.SUBMITTED,
    "UNPAID": OrderStatus.SUBMITTED,
    "PAYMENT_IN_PROGRESS": OrderStatus.SUBMITTED,
    "PRODUCTION_DELAYED": OrderStatus.PROCESSING,
    "PRODUCTION_READY": OrderStatus.IN_PRODUCTION,
    "IN_PRODUCTION": OrderStatus.IN_PRODUCTION,
    "SHIPPED": OrderStatus.SHIPPED,
    "REJECTED": OrderStatus.CANCELLED,
    "CANCELED": OrderStatus.CANCELLED,
    "ERROR": OrderStatus.CANCELLED,
}

# Optimistic retries when a concurrent update wins between read and write
MAX_TRANSITION_ATTEMPTS = 3

Plan = Tuple[FrozenSet[OrderStatus], Dict[str, Any]]


def map_partner_status(status_name: str) -> Tuple[OrderStatus, bool]:
    """
    Map a partner status name onto an order status.

    Returns:
        (status, recognized). Unrecognized names map to PROCESSING.
    """
    key = str(status_name or "").strip().upper()
    if key in PARTNER_STATUS_MAP:
        return PARTNER_STATUS_MAP[key], True
    return OrderStatus.PROCESSING, False


def plan_partner_transition(
    order: Order,
    target: OrderStatus,
    tracking: Optional[TrackingInfo] = None,
) -> Optional[Plan]:
    """
    Decide what a partner status means for an order.

    Pure function. Returns the expected current statuses and the field
    changes to apply, or None when the update is a no-op.
    """
    current = order.status

    if target is OrderStatus.CANCELLED:
        if current in PRE_SHIPPED_STATUSES:
            return frozenset({current}), {"status": OrderStatus.CANCELLED}
        return None

    if current.is_terminal or current.rank < 0:
        return None

    if target is OrderStatus.SHIPPED:
        tracking_changes: Dict[str, Any] = {}
        if tracking is not None:
            tracking_changes = {
                "tracking_number": tracking.tracking_number,
                "tracking_url": tracking.tracking_url,
            }
        if current is OrderStatus.SHIPPED:
            if tracking is not None and tracking.tracking_number != order.tracking_number:
                return frozenset({current}), tracking_changes
            return None
        return frozenset({current}), dict(
            tracking_changes, status=OrderStatus.SHIPPED, shipped_at=utcnow()
        )

    if target.rank > current.rank:
        return frozenset({current}), {"status": target}
    return None


@dataclass
class TransitionResult:
    """What an attempted transition did."""

    order: Order
    changed: bool
    previous_status: OrderStatus

    @property
    def entered(self) -> Optional[OrderStatus]:
        """Status newly entered by this call, if any."""
        if self.changed and self.order.status is not self.previous_status:
            return self.order.status
        return None


class OrderStateMachine:
    """Applies order transitions through conditional repository updates."""

    def __init__(self, repository: OrderRepository):
        self._repo = repository

    @property
    def repository(self) -> OrderRepository:
        return self._repo

    def get_order(self, order_id: str) -> Order:
        order = self._repo.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    # =========================================================================
    # CHECKOUT
    # =========================================================================

    def create_order(
        self,
        order_type: OrderType,
        creation_id: str,
        user_id: str = "",
        shipping_address: Optional[ShippingAddress] = None,
        shipping_level: str = "MAIL",
        contact_email: str = "",
        dedication_text: str = "",
        cover_color_id: str = "",
        amount_cents: int = 0,
        payment_session_id: str = "",
        order_id: Optional[str] = None,
    ) -> Order:
        """
        Create a pending order at checkout initiation.

        Raises:
            ValidationError: Missing creation id, or a physical order without
                a complete shipping address
        """
        if not creation_id:
            raise ValidationError("creation_id is required", field="creation_id")
        if order_type.is_physical:
            if shipping_address is None:
                raise ValidationError("Shipping address is required for printed books",
                                      field="shipping_address")
            missing = shipping_address.missing_fields()
            if missing:
                raise ValidationError(
                    f"Shipping address incomplete: {', '.join(missing)}",
                    field="shipping_address",
                    details={"missing": missing},
                )

        order = Order(
            id=order_id or str(uuid.uuid4()),
            order_type=order_type,
            creation_id=creation_id,
            user_id=user_id,
            shipping_address=shipping_address if order_type.is_physical else None,
            shipping_level=shipping_level or "MAIL",
            contact_email=contact_email,
            dedication_text=dedication_text,
            cover_color_id=cover_color_id,
            amount_cents=amount_cents,
            payment_session_id=payment_session_id,
        )
        created = self._repo.add(order)
        logger.info(f"Order {created.id[:8]} created ({order_type.value})")
        return created

    def mark_payment_received(
        self,
        order_id: Optional[str] = None,
        session_id: str = "",
        payment_intent_id: str = "",
        amount_cents: Optional[int] = None,
    ) -> TransitionResult:
        """
        pending -> payment_received. Any other status is a no-op.

        The order is looked up by id, or by payment session id.
        """
        order = self._repo.get(order_id) if order_id else None
        if order is None and session_id:
            order = self._repo.find_by_payment_session(session_id)
        if order is None:
            raise OrderNotFoundError(order_id or session_id,
                                     kind="order_id" if order_id else "payment_session_id")

        changes: Dict[str, Any] = {
            "status": OrderStatus.PAYMENT_RECEIVED,
            "paid_at": utcnow(),
            "payment_intent_id": payment_intent_id or order.payment_intent_id,
        }
        if amount_cents is not None:
            changes["amount_cents"] = amount_cents
        return self._apply(order, {OrderStatus.PENDING}, changes, "payment_received")

    # =========================================================================
    # PIPELINE
    # =========================================================================

    def begin_processing(self, order_id: str, retry: bool = False) -> TransitionResult:
        """
        payment_received -> processing.

        With retry=True a processing order that never reached the partner
        (no job id) is re-entered, which lets an operator resume a failed run.
        """
        order = self.get_order(order_id)
        expected = {OrderStatus.PAYMENT_RECEIVED}
        if retry and order.status is OrderStatus.PROCESSING and not order.partner_job_id:
            expected.add(OrderStatus.PROCESSING)

        result = self._apply(order, expected, {"status": OrderStatus.PROCESSING, "last_error": None},
                             "processing")
        if result.changed and result.previous_status is OrderStatus.PROCESSING:
            logger.info(f"Order {order_id[:8]} re-entered processing (retry)")
        return result

    def mark_submitted(self, order_id: str, partner_job_id: str) -> TransitionResult:
        """processing -> submitted; job id and status are written together."""
        if not partner_job_id:
            raise ValidationError("partner_job_id is required", field="partner_job_id")
        order = self.get_order(order_id)
        return self._apply(order, {OrderStatus.PROCESSING}, {
            "status": OrderStatus.SUBMITTED,
            "partner_job_id": str(partner_job_id),
            "submitted_at": utcnow(),
            "last_error": None,
        }, "submitted")

    def mark_ebook_delivered(self, order_id: str, download_path: str,
                             download_url: str) -> TransitionResult:
        """processing -> delivered for digital orders."""
        order = self.get_order(order_id)
        if order.is_physical:
            raise ValidationError("Only digital orders are delivered by download",
                                  field="order_type")
        return self._apply(order, {OrderStatus.PROCESSING}, {
            "status": OrderStatus.DELIVERED,
            "download_path": download_path,
            "download_url": download_url,
            "completed_at": utcnow(),
            "last_error": None,
        }, "delivered")

    def record_failure(self, order_id: str, error: Any) -> Optional[Order]:
        """Store the last pipeline error; status is left unchanged."""
        message = str(error)[:1000]
        order = self._repo.update_fields(order_id, {"last_error": message})
        if order is None:
            raise OrderNotFoundError(order_id)
        logger.error(f"Order {order_id[:8]} failure recorded (status {order.status.value}): {message}")
        return order

    # =========================================================================
    # PARTNER STATUS
    # =========================================================================

    def apply_partner_status(
        self,
        partner_job_id: str,
        status_name: str,
        tracking: Optional[TrackingInfo] = None,
    ) -> TransitionResult:
        """
        Reconcile a partner job status onto its order.

        Raises:
            OrderNotFoundError: No order was submitted as this job
        """
        target, recognized = map_partner_status(status_name)
        if not recognized:
            logger.warning(
                f"Unrecognized partner status '{status_name}' for job {partner_job_id}; "
                f"treating as processing, needs review"
            )

        order = self._repo.find_by_partner_job_id(partner_job_id)
        if order is None:
            raise OrderNotFoundError(partner_job_id, kind="partner_job_id")

        previous = order.status
        for _ in range(MAX_TRANSITION_ATTEMPTS):
            plan = plan_partner_transition(order, target, tracking)
            if plan is None:
                logger.info(
                    f"Order {order.id[:8]}: partner status {status_name} is a no-op "
                    f"in {order.status.value}"
                )
                return TransitionResult(order, False, previous)

            expected, changes = plan
            updated = self._repo.compare_and_set(order.id, expected, changes)
            if updated is not None:
                logger.info(
                    f"Order {order.id[:8]}: {order.status.value} -> {updated.status.value} "
                    f"(partner {status_name})"
                )
                return TransitionResult(updated, True, order.status)

            order = self.get_order(order.id)

        logger.warning(f"Order {order.id[:8]}: gave up applying {status_name} after concurrent updates")
        return TransitionResult(order, False, previous)

    # =========================================================================
    # OPERATOR
    # =========================================================================

    def cancel(self, order_id: str, reason: str = "") -> TransitionResult:
        """Any pre-shipped status -> cancelled."""
        order = self.get_order(order_id)
        changes: Dict[str, Any] = {"status": OrderStatus.CANCELLED}
        if reason:
            changes["last_error"] = f"Cancelled: {reason}"
        return self._apply(order, PRE_SHIPPED_STATUSES, changes, "cancelled")

    def mark_failed(self, order_id: str, reason: str) -> TransitionResult:
        """Any pre-shipped status -> failed."""
        order = self.get_order(order_id)
        return self._apply(order, PRE_SHIPPED_STATUSES,
                           {"status": OrderStatus.FAILED, "last_error": reason}, "failed")

    def mark_delivered(self, order_id: str) -> TransitionResult:
        """shipped -> delivered."""
        order = self.get_order(order_id)
        return self._apply(order, {OrderStatus.SHIPPED},
                           {"status": OrderStatus.DELIVERED, "completed_at": utcnow()}, "delivered")

    def _apply(self, order: Order, expected, changes: Dict[str, Any], label: str) -> TransitionResult:
        updated = self._repo.compare_and_set(order.id, expected, changes)
        if updated is None:
            current = self._repo.get(order.id) or order
            logger.info(f"Order {order.id[:8]}: {label} skipped, status is {current.status.value}")
            return TransitionResult(current, False, current.status)
        logger.info(f"Order {order.id[:8]}: {order.status.value} -> {updated.status.value}")
        return TransitionResult(updated, True, order.status)
