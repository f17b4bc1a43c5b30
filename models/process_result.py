"""
Order processing result models.

A ProcessResult is what one run of the fulfillment pipeline produced. It is
returned directly by FulfillmentService.process_order and, for background
runs, handed back to request threads through the PipelineResultStore.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional


class ProcessOutcome(Enum):
    """
    Outcome of a pipeline run.

    SUBMITTED and DELIVERED are successes for physical and digital orders.
    SKIPPED means the order was already past this step (or another run won
    the race); nothing was sent to the partner.
    """

    SUBMITTED = "submitted"
    DELIVERED = "delivered"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ProcessResult:
    """
    Result of processing one order.

    Thread Safety:
        - Pipeline thread WRITES to the result store once when complete
        - Request thread READS from the store (removes on read)
    """

    order_id: str
    outcome: ProcessOutcome
    partner_job_id: Optional[str] = None
    environment: str = ""
    download_url: Optional[str] = None
    notes: str = ""
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def succeeded(self) -> bool:
        return self.outcome is not ProcessOutcome.FAILED

    @classmethod
    def submitted(cls, order_id: str, partner_job_id: str, environment: str) -> "ProcessResult":
        return cls(
            order_id=order_id,
            outcome=ProcessOutcome.SUBMITTED,
            partner_job_id=partner_job_id,
            environment=environment,
            notes="Print job submitted.",
        )

    @classmethod
    def delivered(cls, order_id: str, download_url: str) -> "ProcessResult":
        return cls(
            order_id=order_id,
            outcome=ProcessOutcome.DELIVERED,
            download_url=download_url,
            notes="Ebook ready for download.",
        )

    @classmethod
    def skipped(cls, order_id: str, reason: str, partner_job_id: Optional[str] = None,
                environment: str = "") -> "ProcessResult":
        return cls(
            order_id=order_id,
            outcome=ProcessOutcome.SKIPPED,
            partner_job_id=partner_job_id,
            environment=environment,
            notes=reason,
        )

    @classmethod
    def failed(cls, order_id: str, error_message: str, environment: str = "") -> "ProcessResult":
        return cls(
            order_id=order_id,
            outcome=ProcessOutcome.FAILED,
            environment=environment,
            notes=error_message,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "outcome": self.outcome.value,
            "partner_job_id": self.partner_job_id,
            "environment": self.environment,
            "download_url": self.download_url,
            "notes": self.notes,
            "finished_at": self.finished_at.isoformat(),
        }
