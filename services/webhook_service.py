"""
Inbound webhook handling.

Two sources, each with a dispatch table keyed by the event's own tag:

    Payment provider - keyed by event type; only a paid checkout of a book
                       order moves an order (pending -> payment_received),
                       either on completion or on a later async payment success
    Print partner    - keyed by topic; only PRINT_JOB_STATUS_CHANGED is
                       reconciled onto the order

The signature is checked on the raw body before anything is parsed.
Unknown event types and topics are acknowledged and ignored so the sender
does not keep retrying them.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from core.exceptions import ConfigurationError, OrderNotFoundError, SignatureError, ValidationError
from core.webhook_verifier import (
    DEFAULT_TOLERANCE_SECONDS,
    verify_partner_signature,
    verify_payment_signature,
)
from models.fulfillment import FulfillmentJob
from models.order import Order, OrderStatus
from services.content_repository import ContentRepository
from services.notifier import Notifier, TEMPLATE_BOOK_SHIPPED, notify_best_effort
from services.order_state_machine import OrderStateMachine, TransitionResult
from logging_config import get_logger


logger = get_logger(__name__)

BOOK_ORDER_SOURCE = "book_checkout"
TOPIC_PRINT_JOB_STATUS_CHANGED = "PRINT_JOB_STATUS_CHANGED"


@dataclass
class WebhookResult:
    """Acknowledgement returned to the sender (always HTTP 200)."""

    action: str
    """What happened: updated, duplicate, ignored, order_not_found, ..."""

    order_id: Optional[str] = None
    status: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"received": True, "action": self.action}
        if self.order_id:
            body["order_id"] = self.order_id
        if self.status:
            body["status"] = self.status
        if self.action == "order_not_found":
            body["orderNotFound"] = True
        body.update(self.details)
        return body


class WebhookService:
    """Verifies, parses and dispatches payment and print partner webhooks."""

    def __init__(
        self,
        state_machine: OrderStateMachine,
        payment_secret: str,
        partner_secret: str,
        environment: str = "sandbox",
        dispatcher: Optional[Callable[[str], Any]] = None,
        notifier: Optional[Notifier] = None,
        content_repository: Optional[ContentRepository] = None,
        signature_tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    ):
        """
        Args:
            state_machine: Applies the resulting transitions
            payment_secret: Payment provider webhook signing secret
            partner_secret: Print partner signing secret (the client secret
                of the active environment)
            environment: Active print partner environment
            dispatcher: Called with the order id after payment is confirmed
                (PipelineRunner.dispatch); None disables auto-processing
            notifier: Shipping notifications
            content_repository: Book titles for notifications
            signature_tolerance: Payment timestamp tolerance (0 disables)
        """
        self._machine = state_machine
        self._payment_secret = payment_secret
        self._partner_secret = partner_secret
        self._environment = environment
        self._dispatcher = dispatcher
        self._notifier = notifier
        self._contents = content_repository
        self._tolerance = signature_tolerance

        self._payment_handlers: Dict[str, Callable[[Dict[str, Any]], WebhookResult]] = {
            "checkout.session.completed": self._on_book_checkout,
            # Delayed payment methods complete unpaid and confirm later
            "checkout.session.async_payment_succeeded": self._on_book_checkout,
        }
        self._partner_handlers: Dict[str, Callable[[Dict[str, Any]], WebhookResult]] = {
            TOPIC_PRINT_JOB_STATUS_CHANGED: self._on_print_job_status_changed,
        }

    # =========================================================================
    # PAYMENT PROVIDER
    # =========================================================================

    def handle_payment_event(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookResult:
        """
        Raises:
            ConfigurationError: No signing secret configured
            SignatureError: Missing or invalid signature
            ValidationError: Body is not a JSON object
        """
        if not self._payment_secret:
            raise ConfigurationError("Payment webhook secret is not configured",
                                     setting="STRIPE_WEBHOOK_SECRET")
        if not verify_payment_signature(raw_body, signature_header or "", self._payment_secret,
                                        tolerance_seconds=self._tolerance):
            logger.warning("Payment webhook rejected: invalid signature")
            raise SignatureError(source="payment")

        event = _parse_json(raw_body)
        event_type = event.get("type", "")
        handler = self._payment_handlers.get(event_type)
        if handler is None:
            logger.info(f"Payment event {event_type or '<none>'} ignored")
            return WebhookResult("ignored", details={"event_type": event_type})
        return handler(event)

    def _on_book_checkout(self, event: Dict[str, Any]) -> WebhookResult:
        session = (event.get("data") or {}).get("object") or {}
        metadata = session.get("metadata") or {}

        if metadata.get("order_source") != BOOK_ORDER_SOURCE:
            logger.info(f"Checkout {session.get('id', '')} is not a book order; ignored")
            return WebhookResult("ignored", details={"event_type": event.get("type")})

        if session.get("payment_status") not in (None, "paid", "no_payment_required"):
            logger.info(f"Checkout {session.get('id', '')} completed without payment; waiting")
            return WebhookResult("payment_pending")

        try:
            result = self._machine.mark_payment_received(
                order_id=metadata.get("book_order_id") or None,
                session_id=session.get("id", ""),
                payment_intent_id=session.get("payment_intent") or "",
                amount_cents=session.get("amount_total"),
            )
        except OrderNotFoundError as exc:
            logger.warning(f"Payment for unknown book order: {exc.message}")
            return WebhookResult("order_not_found")

        if not result.changed:
            return WebhookResult("duplicate", result.order.id, result.order.status.value)

        if self._dispatcher is not None:
            self._dispatcher(result.order.id)
        return WebhookResult("updated", result.order.id, result.order.status.value)

    # =========================================================================
    # PRINT PARTNER
    # =========================================================================

    def handle_partner_event(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookResult:
        """
        Raises:
            ConfigurationError: No signing secret configured
            SignatureError: Missing or invalid signature
            ValidationError: Body is not a JSON object
        """
        if not self._partner_secret:
            raise ConfigurationError("Print partner secret is not configured",
                                     setting=f"LULU_{self._environment.upper()}_CLIENT_SECRET")
        if not verify_partner_signature(raw_body, signature_header, self._partner_secret):
            logger.warning(f"[{self._environment}] Partner webhook rejected: invalid signature")
            raise SignatureError(source="print_partner")

        payload = _parse_json(raw_body)
        topic = payload.get("topic", "")
        handler = self._partner_handlers.get(topic)
        if handler is None:
            logger.info(f"Partner topic {topic or '<none>'} ignored")
            return WebhookResult("ignored", details={"topic": topic})
        return handler(payload)

    def _on_print_job_status_changed(self, payload: Dict[str, Any]) -> WebhookResult:
        data = payload.get("data") or {}
        job = FulfillmentJob.from_partner_dict(data, self._environment)
        if not job.id:
            raise ValidationError("Partner event has no job id", field="data.id")
        return self.reconcile(job)

    def reconcile(self, job: FulfillmentJob) -> WebhookResult:
        """
        Apply a partner job's status to its order.

        Shared by the partner webhook and the operator status refresh.
        """
        try:
            result = self._machine.apply_partner_status(job.id, job.status_name, job.first_tracking())
        except OrderNotFoundError:
            logger.warning(f"[{job.environment}] Partner job {job.id} matches no order")
            return WebhookResult("order_not_found", details={"partner_job_id": job.id})

        if result.entered is OrderStatus.SHIPPED:
            self._notify_shipped(result)

        action = "updated" if result.changed else "duplicate"
        return WebhookResult(action, result.order.id, result.order.status.value,
                             details={"partner_status": job.status_name})

    def _notify_shipped(self, result: TransitionResult) -> None:
        order: Order = result.order
        recipient = order.contact_email or (order.shipping_address.email if order.shipping_address else "")
        notify_best_effort(self._notifier, TEMPLATE_BOOK_SHIPPED, recipient, {
            "customer_name": order.shipping_address.name if order.shipping_address else "",
            "order_id": order.id[:8].upper(),
            "book_title": self._book_title(order),
            "tracking_number": order.tracking_number or "",
            "tracking_url": order.tracking_url or "",
        })

    def _book_title(self, order: Order) -> str:
        if self._contents is None:
            return "your book"
        content = self._contents.get_content(order.creation_id)
        return content.title if content else "your book"


def _parse_json(raw_body: bytes) -> Dict[str, Any]:
    try:
        data = json.loads(raw_body)
    except ValueError:
        raise ValidationError("Webhook body is not valid JSON", field="body")
    if not isinstance(data, dict):
        raise ValidationError("Webhook body must be a JSON object", field="body")
    return data
