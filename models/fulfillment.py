"""
Print partner data models.

Every result coming back from the partner carries the environment
(sandbox or production) it was produced in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple

from core.exceptions import ValidationError


@dataclass(frozen=True)
class ShippingOption:
    """One purchasable shipping level for an address/product."""

    level_id: str
    display_name: str
    cost: float
    currency: str
    delivery_estimate: str
    environment: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.level_id,
            "name": self.display_name,
            "cost": self.cost,
            "currency": self.currency,
            "estimated_days": self.delivery_estimate,
            "environment": self.environment,
        }


@dataclass(frozen=True)
class PricingQuote:
    """Partner cost of one book shipped at one level."""

    product_code: str
    quantity: int
    unit_cost: float
    shipping_cost: float
    total_cost: float
    currency: str
    environment: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_code": self.product_code,
            "quantity": self.quantity,
            "unit_cost": self.unit_cost,
            "shipping_cost": self.shipping_cost,
            "total_cost": self.total_cost,
            "currency": self.currency,
            "environment": self.environment,
        }


@dataclass(frozen=True)
class PrintLineItem:
    """One book to print: the two document URLs plus bookkeeping."""

    external_id: str
    """Our order id, echoed back by the partner."""

    title: str
    cover_url: str
    interior_url: str
    product_code: str
    quantity: int = 1

    def to_partner_dict(self) -> Dict[str, Any]:
        return {
            "external_id": self.external_id,
            "title": self.title,
            "quantity": self.quantity,
            "printable_normalization": {
                "cover": {"source_url": self.cover_url},
                "interior": {"source_url": self.interior_url},
                "pod_package_id": self.product_code,
            },
        }


@dataclass(frozen=True)
class FulfillmentLineItem:
    """Line item as reported back by the partner."""

    id: str = ""
    external_id: str = ""
    status: str = ""
    tracking_id: Optional[str] = None
    tracking_urls: Tuple[str, ...] = ()
    carrier_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], environment: str = "") -> "FulfillmentLineItem":
        if not isinstance(data, dict):
            raise _malformed("line item is not an object", "data.line_items", environment)
        status_name, _ = _status_parts(data.get("status"))
        urls = data.get("tracking_urls") or ()
        if isinstance(urls, str):
            urls = (urls,)
        elif not isinstance(urls, (list, tuple)):
            raise _malformed("tracking_urls is not a list", "data.line_items.tracking_urls", environment)
        tracking_id = data.get("tracking_id")
        carrier = data.get("carrier_name")
        return cls(
            id=str(data.get("id", "") or ""),
            external_id=str(data.get("external_id", "") or ""),
            status=status_name,
            tracking_id=str(tracking_id) if tracking_id else None,
            tracking_urls=tuple(str(url) for url in urls if url),
            carrier_name=str(carrier) if carrier else None,
        )


@dataclass(frozen=True)
class TrackingInfo:
    """Tracking details taken from the first line item that has one."""

    tracking_number: str
    tracking_url: Optional[str] = None
    carrier_name: Optional[str] = None


@dataclass
class FulfillmentJob:
    """A print job as the partner reports it."""

    id: str
    status_name: str
    environment: str
    status_message: str = ""
    line_items: List[FulfillmentLineItem] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    def first_tracking(self) -> Optional[TrackingInfo]:
        """Tracking of the first line item carrying a tracking id."""
        for item in self.line_items:
            if item.tracking_id:
                url = item.tracking_urls[0] if item.tracking_urls else None
                return TrackingInfo(item.tracking_id, url, item.carrier_name)
        return None

    @classmethod
    def from_partner_dict(cls, data: Dict[str, Any], environment: str) -> "FulfillmentJob":
        """
        Build from a partner job payload (REST response or webhook data).

        Raises:
            ValidationError: The payload does not have the partner's job shape
        """
        if not isinstance(data, dict):
            raise _malformed("job payload is not an object", "data", environment)
        status_name, status_message = _status_parts(data.get("status"))
        line_items = data.get("line_items") or []
        if not isinstance(line_items, list):
            raise _malformed("line_items is not a list", "data.line_items", environment)

        return cls(
            id=str(data.get("id", "") or ""),
            status_name=status_name,
            environment=environment,
            status_message=status_message,
            line_items=[FulfillmentLineItem.from_dict(li, environment) for li in line_items],
            raw=data,
        )

    def to_dict(self) -> Dict[str, Any]:
        tracking = self.first_tracking()
        return {
            "id": self.id,
            "status": self.status_name,
            "status_message": self.status_message,
            "environment": self.environment,
            "tracking_number": tracking.tracking_number if tracking else None,
            "tracking_url": tracking.tracking_url if tracking else None,
        }


def _status_parts(status: Any) -> Tuple[str, str]:
    """(name, message) from a partner status, which is an object or a bare name."""
    if isinstance(status, dict):
        return str(status.get("name") or ""), str(status.get("message") or "")
    return str(status or ""), ""


def _malformed(problem: str, field: str, environment: str) -> ValidationError:
    details = {"environment": environment} if environment else None
    return ValidationError(f"Malformed print job payload: {problem}", field=field, details=details)
