"""
Fulfillment orchestration.

One call to process_order takes a paid order to the print partner:

    1. Load the order; already submitted (or further) -> skipped
    2. Guard: payment_received -> processing (lost race -> skipped)
    3. Load story content, plan the page count, validate it
    4. Render interior and cover, preflight both
    5. Upload both documents and sign their URLs
    6. Submit the print job, then record processing -> submitted

Digital orders stop after rendering the interior: the PDF is uploaded,
signed with a long TTL and the order moves processing -> delivered.

Any failure is recorded on the order (last_error) and re-raised. The order
stays in processing so an operator can retry; nothing is rolled back.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional

from core.exceptions import StorybookPrintError, ValidationError
from core.fulfillment_client import FulfillmentClient
from models.book_type import FIXED_PAGE_COUNT, get_book_type_profile
from models.content import BookContent
from models.fulfillment import PrintLineItem
from models.order import Order, OrderStatus
from models.process_result import ProcessResult
from modules.pdf_analyzer import PDFAnalyzer
from modules.pdf_renderer import PDFRenderer, RenderedDocument
from modules.print_specs import cover_spec, interior_spec, validate_page_count
from services.content_repository import ContentRepository
from services.document_storage import DocumentStorage
from services.notifier import Notifier, TEMPLATE_EBOOK_READY, notify_best_effort
from services.order_state_machine import OrderStateMachine
from logging_config import get_logger, get_order_logger


logger = get_logger(__name__)

DEFAULT_SIGNED_URL_TTL = 24 * 60 * 60
DEFAULT_EBOOK_URL_TTL = 7 * 24 * 60 * 60

# Orders at or beyond submitted never go to the partner again
ALREADY_SUBMITTED = frozenset({
    OrderStatus.SUBMITTED,
    OrderStatus.IN_PRODUCTION,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
})


@dataclass
class RenderedDocumentSet:
    """Documents for one order and where they ended up."""

    interior: RenderedDocument
    cover: Optional[RenderedDocument] = None
    interior_path: str = ""
    cover_path: str = ""
    interior_url: str = ""
    cover_url: str = ""
    degraded_pages: list = field(default_factory=list)


class FulfillmentService:
    """Runs the render -> upload -> submit pipeline for one order at a time."""

    def __init__(
        self,
        state_machine: OrderStateMachine,
        content_repository: ContentRepository,
        storage: DocumentStorage,
        renderer: PDFRenderer,
        fulfillment_client: Optional[FulfillmentClient],
        notifier: Optional[Notifier] = None,
        analyzer: Optional[PDFAnalyzer] = None,
        page_count: int = FIXED_PAGE_COUNT,
        signed_url_ttl: int = DEFAULT_SIGNED_URL_TTL,
        ebook_url_ttl: int = DEFAULT_EBOOK_URL_TTL,
    ):
        self._machine = state_machine
        self._contents = content_repository
        self._storage = storage
        self._renderer = renderer
        self._client = fulfillment_client
        self._notifier = notifier
        self._analyzer = analyzer or PDFAnalyzer()
        self._page_count = page_count
        self._signed_url_ttl = signed_url_ttl
        self._ebook_url_ttl = ebook_url_ttl

    @property
    def environment(self) -> str:
        return self._client.environment if self._client else ""

    def process_order(self, order_id: str, retry: bool = False) -> ProcessResult:
        """
        Take one paid order through rendering and submission.

        Args:
            order_id: Order to process
            retry: Resume an order left in processing by a failed run

        Returns:
            ProcessResult (submitted, delivered or skipped)

        Raises:
            OrderNotFoundError: Unknown order
            StorybookPrintError: Any pipeline failure, after it was recorded
                on the order
        """
        order_log = get_order_logger(order_id)
        order = self._machine.get_order(order_id)

        if order.status in ALREADY_SUBMITTED:
            order_log.info(f"Already {order.status.value}; nothing to do")
            return ProcessResult.skipped(order_id, f"Order already {order.status.value}",
                                         partner_job_id=order.partner_job_id,
                                         environment=self.environment)

        guard = self._machine.begin_processing(order_id, retry=retry)
        if not guard.changed:
            order_log.info(f"Not processable in status {guard.order.status.value}")
            return ProcessResult.skipped(order_id, f"Order is {guard.order.status.value}",
                                         partner_job_id=guard.order.partner_job_id,
                                         environment=self.environment)
        order = guard.order

        try:
            if order.is_physical:
                return self._process_physical(order, order_log)
            return self._process_digital(order, order_log)
        except StorybookPrintError as exc:
            order_log.error(f"Processing failed: {exc}")
            self._machine.record_failure(order_id, exc.message)
            raise
        except Exception as exc:
            order_log.exception(f"Unexpected processing failure: {exc}")
            self._machine.record_failure(order_id, f"Unexpected error: {exc}")
            raise

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _load_content(self, order: Order) -> BookContent:
        content = self._contents.get_content(order.creation_id)
        if content is None:
            raise ValidationError(f"No story content for creation {order.creation_id}",
                                  field="creation_id")
        return content.with_order_overrides(order.dedication_text, order.cover_color_id)

    def _plan_page_count(self, content: BookContent) -> int:
        page_count = max(self._page_count, self._renderer.planned_page_count(content))
        return validate_page_count(page_count)

    def _process_physical(self, order: Order, order_log) -> ProcessResult:
        if self._client is None:
            raise ValidationError("Print partner is not configured", field="fulfillment_client")

        content = self._load_content(order)
        page_count = self._plan_page_count(content)
        order_log.info(f"Rendering {page_count}-page {order.book_type.value} book '{content.title}'")

        interior = self._renderer.render_interior_document(content, min_pages=page_count)
        self._analyzer.preflight_interior(interior.data, interior_spec(), expected_pages=page_count)

        cover = self._renderer.render_cover_document(content, page_count, order.book_type)
        self._analyzer.preflight_cover(cover.data, cover_spec(page_count, order.book_type))

        if interior.is_degraded or cover.is_degraded:
            order_log.warning(
                f"Partial degradation: interior pages {interior.degraded_pages}, "
                f"cover {'fallback' if cover.is_degraded else 'ok'}"
            )

        documents = self._store(order, interior, cover)
        order_log.info("Documents uploaded and signed")

        profile = get_book_type_profile(order.book_type)
        line_item = PrintLineItem(
            external_id=order.id,
            title=content.title,
            cover_url=documents.cover_url,
            interior_url=documents.interior_url,
            product_code=profile.product_code,
        )
        contact_email = order.contact_email or (order.shipping_address.email if order.shipping_address else "")
        job = self._client.submit_job([line_item], order.shipping_address,
                                      order.shipping_level, contact_email)
        job_id = job.id

        result = self._machine.mark_submitted(order.id, job_id)
        if not result.changed:
            # Job exists at the partner but the order moved on (e.g. cancelled meanwhile)
            order_log.warning(
                f"Print job {job_id} created but order is {result.order.status.value}; needs review"
            )
            self._machine.record_failure(
                order.id, f"Print job {job_id} created while order was {result.order.status.value}"
            )
            return ProcessResult.skipped(order.id, "Order changed during submission",
                                         partner_job_id=job_id, environment=self.environment)

        order_log.info(f"Submitted as print job {job_id} [{self.environment}]")
        return ProcessResult.submitted(order.id, job_id, self.environment)

    def _process_digital(self, order: Order, order_log) -> ProcessResult:
        content = self._load_content(order)
        page_count = self._plan_page_count(content)
        order_log.info(f"Rendering ebook '{content.title}'")

        interior = self._renderer.render_interior_document(content, min_pages=page_count)
        self._analyzer.preflight_interior(interior.data, interior_spec(), expected_pages=page_count)

        path = f"ebooks/{order.id}/book-{int(time.time())}.pdf"
        self._storage.upload(path, interior.data)
        url = self._storage.signed_url(path, self._ebook_url_ttl)

        result = self._machine.mark_ebook_delivered(order.id, path, url)
        if not result.changed:
            return ProcessResult.skipped(order.id, f"Order is {result.order.status.value}")

        notify_best_effort(self._notifier, TEMPLATE_EBOOK_READY, order.contact_email, {
            "order_id": order.id[:8].upper(),
            "book_title": content.title,
            "download_url": url,
        })
        order_log.info("Ebook delivered")
        return ProcessResult.delivered(order.id, url)

    def _store(self, order: Order, interior: RenderedDocument,
               cover: RenderedDocument) -> RenderedDocumentSet:
        stamp = int(time.time())
        documents = RenderedDocumentSet(
            interior=interior,
            cover=cover,
            interior_path=f"books/{order.id}/interior-{stamp}.pdf",
            cover_path=f"books/{order.id}/cover-{stamp}.pdf",
            degraded_pages=list(interior.degraded_pages),
        )
        self._storage.upload(documents.interior_path, interior.data)
        self._storage.upload(documents.cover_path, cover.data)
        documents.interior_url = self._storage.signed_url(documents.interior_path, self._signed_url_ttl)
        documents.cover_url = self._storage.signed_url(documents.cover_path, self._signed_url_ttl)
        return documents
