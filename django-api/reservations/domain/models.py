"""Domain models representing persisted state.

These are pure domain objects with no API input rules.
Django ORM models are in reservations/models.py (persistence layer).
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Self
from uuid import UUID

from reservations.domain.value_objects import Category


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.CONFIRMED, PaymentStatus.REJECTED)


class PaymentChannel(str, Enum):
    MANUAL_PROOF = "manual_proof"
    STORE_IMMEDIATE = "store_immediate"
    GATEWAY_P2C = "gateway_p2c"


class PaymentMethod(str, Enum):
    ZELLE = "zelle"
    NATIONAL_TRANSFER = "national_transfer"
    INTERNATIONAL_TRANSFER = "international_transfer"
    PAYPAL = "paypal"
    MOBILE_P2C = "mobile_p2c"
    DEBIT_CARD = "debit_card"
    CREDIT_CARD = "credit_card"
    CASH_BS = "cash_bs"
    CASH_USD = "cash_usd"
    GIFT = "gift"

    @property
    def channel(self) -> PaymentChannel:
        if self is PaymentMethod.MOBILE_P2C:
            return PaymentChannel.GATEWAY_P2C
        if self in _MANUAL_METHODS:
            return PaymentChannel.MANUAL_PROOF
        return PaymentChannel.STORE_IMMEDIATE


_MANUAL_METHODS = frozenset(
    {
        PaymentMethod.ZELLE,
        PaymentMethod.NATIONAL_TRANSFER,
        PaymentMethod.INTERNATIONAL_TRANSFER,
        PaymentMethod.PAYPAL,
    }
)


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    RELEASED = "released"
    COMMITTED = "committed"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class Contact:
    """Identity of the person responsible for a group."""

    email: str
    phone: str
    identification: str | None = None


@dataclass(frozen=True)
class ItemSpec:
    """Requested item, before it is persisted."""

    full_name: str
    identification: str
    gender: str = ""
    size: str = ""
    zone: str = ""
    birth_date: date | None = None
    email: str = ""
    phone: str = ""

    @property
    def category(self) -> Category:
        if self.zone:
            return Category.for_zone(self.zone)
        return Category.for_apparel(self.size, self.gender)

    def to_payload(self) -> dict[str, Any]:
        return {
            "full_name": self.full_name,
            "identification": self.identification,
            "gender": self.gender,
            "size": self.size,
            "zone": self.zone,
            "birth_date": self.birth_date.isoformat() if self.birth_date else None,
            "email": self.email,
            "phone": self.phone,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Self:
        birth_date = payload.get("birth_date")
        return cls(
            full_name=payload["full_name"],
            identification=payload["identification"],
            gender=payload.get("gender") or "",
            size=payload.get("size") or "",
            zone=payload.get("zone") or "",
            birth_date=date.fromisoformat(birth_date) if birth_date else None,
            email=payload.get("email") or "",
            phone=payload.get("phone") or "",
        )


@dataclass(frozen=True)
class PendingWorkOrder:
    """Items of a gateway purchase, materialized only on confirmation."""

    items: tuple[ItemSpec, ...]

    def to_payload(self) -> dict[str, Any]:
        return {"items": [item.to_payload() for item in self.items]}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Self:
        return cls(items=tuple(ItemSpec.from_payload(p) for p in payload.get("items", [])))

    def quantities(self) -> dict[Category, int]:
        counts: dict[Category, int] = {}
        for item in self.items:
            counts[item.category] = counts.get(item.category, 0) + 1
        return counts


@dataclass(frozen=True)
class PaymentDetails:
    """Method-specific data supplied with a registration."""

    reference: str | None = None
    proof_url: str | None = None
    bank_id: str | None = None


@dataclass(frozen=True)
class Item:
    """Domain representation of a ticket or race slot."""

    id: UUID
    group_id: UUID
    position: int
    full_name: str
    identification: str
    category: str
    payment_status: PaymentStatus
    gender: str = ""
    size: str = ""
    zone: str = ""
    birth_date: date | None = None
    email: str = ""
    phone: str = ""
    number: str | None = None


@dataclass(frozen=True)
class Group:
    """Domain representation of a purchase Group."""

    id: UUID
    code: str
    contact: Contact
    item_count: int
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    reserved_until: datetime
    created_at: datetime
    details: PaymentDetails = PaymentDetails()
    work_order: PendingWorkOrder | None = None
    confirmed_by: str | None = None
    confirmed_at: datetime | None = None
    rejection_reason: str = ""
    rejected_at: datetime | None = None
    items: tuple[Item, ...] = ()

    def is_expired(self, now: datetime) -> bool:
        return self.payment_status is PaymentStatus.PENDING and now > self.reserved_until

    def effective_status(self, now: datetime) -> PaymentStatus:
        """Status as every reader must see it: expired pending reads as rejected."""
        if self.is_expired(now):
            return PaymentStatus.REJECTED
        return self.payment_status

    @property
    def has_deferred_items(self) -> bool:
        return self.work_order is not None and not self.items


@dataclass(frozen=True)
class InventoryUnit:
    """Capacity ledger for one category."""

    category: str
    capacity: int
    reserved: int
    sold: int

    def __post_init__(self) -> None:
        if min(self.capacity, self.reserved, self.sold) < 0:
            raise ValueError("Inventory counts cannot be negative")
        if self.reserved + self.sold > self.capacity:
            raise ValueError("reserved + sold exceeds capacity")

    @property
    def available(self) -> int:
        return self.capacity - self.reserved - self.sold


@dataclass(frozen=True)
class Reservation:
    """Hold on one unit of a category."""

    id: UUID
    group_id: UUID
    category: str
    quantity: int
    status: ReservationStatus
    item_id: UUID | None = None


@dataclass(frozen=True)
class Availability:
    category: str
    requested: int
    available: int

    @property
    def is_available(self) -> bool:
        return self.available >= self.requested


@dataclass(frozen=True)
class PaymentTransaction:
    """One payment attempt for a group."""

    id: UUID
    group_id: UUID
    channel: PaymentChannel
    payment_method: PaymentMethod
    amount: Decimal
    currency: str
    status: TransactionStatus
    created_at: datetime
    reference: str = ""
    control: str = ""
    invoice: str = ""
    response_code: str = ""
    description: str = ""
    authorization_id: str = ""
    voucher: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
