"""Domain primitives that enforce validity at creation time."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Self
from uuid import UUID

SHIRT_SIZES = ("XS", "S", "M", "L", "XL", "XXL")
GENDERS = ("M", "F")


@dataclass(frozen=True)
class GroupId:
    """Unique identifier for a purchase Group."""

    value: UUID

    @classmethod
    def from_string(cls, value: str) -> Self:
        return cls(value=UUID(str(value)))

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class Money:
    """Amount with two-decimal precision."""

    amount: Decimal
    currency: str = "USD"

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError("Money amount cannot be negative")

    @classmethod
    def of(cls, value, currency: str = "USD") -> Self:
        try:
            amount = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"Invalid amount: {value}") from exc
        return cls(amount=amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP), currency=currency)

    def times(self, factor) -> "Money":
        return Money.of(self.amount * Decimal(str(factor)), self.currency)

    def __str__(self) -> str:
        return f"{self.amount:.2f}"


@dataclass(frozen=True)
class Category:
    """Inventory category key.

    Apparel categories combine shirt size and gender (``M:F``); ticket
    categories are a zone name (``zone:VIP``).
    """

    key: str

    def __post_init__(self) -> None:
        if not self.key or len(self.key) > 64:
            raise ValueError("Category key must be 1-64 characters")

    @classmethod
    def for_apparel(cls, size: str, gender: str) -> Self:
        size, gender = size.upper(), gender.upper()
        if size not in SHIRT_SIZES:
            raise ValueError(f"Unknown shirt size: {size}")
        if gender not in GENDERS:
            raise ValueError(f"Unknown gender: {gender}")
        return cls(key=f"{size}:{gender}")

    @classmethod
    def for_zone(cls, zone: str) -> Self:
        zone = zone.strip()
        if not zone:
            raise ValueError("Zone cannot be empty")
        return cls(key=f"zone:{zone}")

    def __str__(self) -> str:
        return self.key
