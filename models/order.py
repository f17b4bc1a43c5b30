"""
Order data models.

An Order is the durable audit trail of one book purchase. It is created as
`pending` when checkout starts and is only ever changed through the order
state machine (services.order_state_machine). Orders are never deleted.

Thread Safety:
    Orders handed out by a repository are copies. Mutations go back through
    the repository's conditional update, never by editing a shared instance.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional

from models.book_type import BookType


class OrderStatus(Enum):
    """
    Lifecycle status of an order.

    Lifecycle:
        PENDING -> PAYMENT_RECEIVED -> PROCESSING -> SUBMITTED
            -> IN_PRODUCTION -> SHIPPED -> DELIVERED
        CANCELLED / FAILED reachable from any state before SHIPPED.
        Digital orders go PROCESSING -> DELIVERED.
    """

    PENDING = "pending"
    PAYMENT_RECEIVED = "payment_received"
    PROCESSING = "processing"
    SUBMITTED = "submitted"
    IN_PRODUCTION = "in_production"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.FAILED)

    @property
    def rank(self) -> int:
        """Position along the happy path; terminal failure states rank -1."""
        return _STATUS_RANK.get(self, -1)


_STATUS_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.PAYMENT_RECEIVED: 1,
    OrderStatus.PROCESSING: 2,
    OrderStatus.SUBMITTED: 3,
    OrderStatus.IN_PRODUCTION: 4,
    OrderStatus.SHIPPED: 5,
    OrderStatus.DELIVERED: 6,
}

# States from which cancelled/failed are still reachable
PRE_SHIPPED_STATUSES = frozenset({
    OrderStatus.PENDING,
    OrderStatus.PAYMENT_RECEIVED,
    OrderStatus.PROCESSING,
    OrderStatus.SUBMITTED,
    OrderStatus.IN_PRODUCTION,
})


class OrderType(Enum):
    """What the customer bought."""

    SOFTCOVER = "softcover"
    HARDCOVER = "hardcover"
    EBOOK = "ebook"

    @property
    def is_physical(self) -> bool:
        return self is not OrderType.EBOOK


# Address fields the print partner will not accept empty
REQUIRED_ADDRESS_FIELDS = ("name", "street1", "city", "state_code", "postal_code", "country_code")


@dataclass(frozen=True)
class ShippingAddress:
    """Physical delivery destination (immutable, so order copies can share it)."""

    name: str = ""
    street1: str = ""
    street2: str = ""
    city: str = ""
    state_code: str = ""
    postal_code: str = ""
    country_code: str = "US"
    phone_number: str = ""
    email: str = ""

    def missing_fields(self) -> List[str]:
        """Names of required fields that are blank."""
        return [name for name in REQUIRED_ADDRESS_FIELDS if not str(getattr(self, name) or "").strip()]

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()

    def to_partner_dict(self) -> Dict[str, str]:
        """Wire format expected by the print partner."""
        return {
            "name": self.name,
            "street1": self.street1,
            "street2": self.street2 or "",
            "city": self.city,
            "state_code": self.state_code,
            "postcode": self.postal_code,
            "country_code": self.country_code,
            "phone_number": self.phone_number or "0000000000",
            "email": self.email or "noreply@example.com",
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShippingAddress":
        """Accepts snake_case and the camelCase keys used by the checkout page."""
        return cls(
            name=data.get("name", ""),
            street1=data.get("street1", data.get("address", "")),
            street2=data.get("street2", "") or "",
            city=data.get("city", ""),
            state_code=data.get("state_code", data.get("stateCode", "")),
            postal_code=data.get("postal_code", data.get("postalCode", data.get("postcode", ""))),
            country_code=data.get("country_code", data.get("countryCode", "US")) or "US",
            phone_number=data.get("phone_number", data.get("phoneNumber", "")) or "",
            email=data.get("email", "") or "",
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


@dataclass
class Order:
    """
    A book order.

    Lifecycle:
        1. Created as PENDING when checkout starts
        2. PAYMENT_RECEIVED when the payment webhook confirms checkout
        3. PROCESSING while documents are rendered and uploaded
        4. SUBMITTED once the print partner returns a job id
        5. IN_PRODUCTION / SHIPPED / CANCELLED from partner webhooks
    """

    id: str
    order_type: OrderType
    creation_id: str
    """Story/creation this book is printed from."""

    user_id: str = ""
    status: OrderStatus = OrderStatus.PENDING

    amount_cents: int = 0
    """Amount charged, in cents."""

    payment_session_id: str = ""
    payment_intent_id: str = ""

    shipping_address: Optional[ShippingAddress] = None
    """None for digital-only orders."""

    shipping_level: str = "MAIL"
    contact_email: str = ""
    dedication_text: str = ""
    cover_color_id: str = ""

    partner_job_id: Optional[str] = None
    """Print partner job id; set atomically with SUBMITTED."""

    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None

    download_path: Optional[str] = None
    download_url: Optional[str] = None
    """Digital orders only."""

    last_error: Optional[str] = None
    """Most recent pipeline failure (status is left unchanged)."""

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    paid_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_physical(self) -> bool:
        return self.order_type.is_physical

    @property
    def book_type(self) -> BookType:
        """Binding used for print geometry (digital orders use softcover geometry)."""
        if self.order_type is OrderType.HARDCOVER:
            return BookType.HARDCOVER
        return BookType.SOFTCOVER

    def copy(self, **changes: Any) -> "Order":
        """Detached copy with optional field changes."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dictionary."""
        return {
            "id": self.id,
            "order_type": self.order_type.value,
            "creation_id": self.creation_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "amount_cents": self.amount_cents,
            "payment_session_id": self.payment_session_id,
            "payment_intent_id": self.payment_intent_id,
            "shipping_address": self.shipping_address.to_dict() if self.shipping_address else None,
            "shipping_level": self.shipping_level,
            "contact_email": self.contact_email,
            "dedication_text": self.dedication_text,
            "cover_color_id": self.cover_color_id,
            "partner_job_id": self.partner_job_id,
            "tracking_number": self.tracking_number,
            "tracking_url": self.tracking_url,
            "download_path": self.download_path,
            "download_url": self.download_url,
            "last_error": self.last_error,
            "created_at": _format_ts(self.created_at),
            "updated_at": _format_ts(self.updated_at),
            "paid_at": _format_ts(self.paid_at),
            "submitted_at": _format_ts(self.submitted_at),
            "shipped_at": _format_ts(self.shipped_at),
            "completed_at": _format_ts(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Order":
        """Create an Order from a stored dictionary."""
        address = data.get("shipping_address")
        try:
            status = OrderStatus(data.get("status", "pending"))
        except ValueError:
            status = OrderStatus.PENDING

        return cls(
            id=data["id"],
            order_type=OrderType(data.get("order_type", "softcover")),
            creation_id=data.get("creation_id", ""),
            user_id=data.get("user_id", ""),
            status=status,
            amount_cents=int(data.get("amount_cents", 0) or 0),
            payment_session_id=data.get("payment_session_id", "") or "",
            payment_intent_id=data.get("payment_intent_id", "") or "",
            shipping_address=ShippingAddress.from_dict(address) if address else None,
            shipping_level=data.get("shipping_level", "MAIL") or "MAIL",
            contact_email=data.get("contact_email", "") or "",
            dedication_text=data.get("dedication_text", "") or "",
            cover_color_id=data.get("cover_color_id", "") or "",
            partner_job_id=data.get("partner_job_id"),
            tracking_number=data.get("tracking_number"),
            tracking_url=data.get("tracking_url"),
            download_path=data.get("download_path"),
            download_url=data.get("download_url"),
            last_error=data.get("last_error"),
            created_at=_parse_ts(data.get("created_at")) or utcnow(),
            updated_at=_parse_ts(data.get("updated_at")) or utcnow(),
            paid_at=_parse_ts(data.get("paid_at")),
            submitted_at=_parse_ts(data.get("submitted_at")),
            shipped_at=_parse_ts(data.get("shipped_at")),
            completed_at=_parse_ts(data.get("completed_at")),
        )
