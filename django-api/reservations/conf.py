"""Typed view over the ``RESERVATIONS`` Django setting."""

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any, Self

from django.conf import settings


@dataclass(frozen=True)
class GatewaySettings:
    """Connection and retry parameters for the P2C payment gateway."""

    base_url: str
    username: str
    password: str
    affiliation_code: str
    commerce_phone: str
    commerce_bank_code: str
    live: bool = False
    timeout: float = 30.0
    max_attempts: int = 2
    backoff_base: float = 1.0
    webhook_secret: str = ""

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Self:
        live = bool(raw.get("LIVE", False))
        return cls(
            base_url=raw["BASE_URL"].rstrip("/"),
            username=raw.get("USERNAME", ""),
            password=raw.get("PASSWORD", ""),
            affiliation_code=raw.get("AFFILIATION_CODE", ""),
            commerce_phone=raw.get("COMMERCE_PHONE", ""),
            commerce_bank_code=raw.get("COMMERCE_BANK_CODE", ""),
            live=live,
            timeout=float(raw.get("TIMEOUT", 60.0 if live else 30.0)),
            max_attempts=int(raw.get("MAX_ATTEMPTS", 3 if live else 2)),
            backoff_base=float(raw.get("BACKOFF_BASE", 2.0 if live else 1.0)),
            webhook_secret=raw.get("WEBHOOK_SECRET", ""),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.username and self.password and self.affiliation_code)


@dataclass(frozen=True)
class ReservationSettings:
    """Business parameters for registrations."""

    min_items: int = 1
    max_items: int = 5
    gateway_hold: timedelta = timedelta(minutes=30)
    manual_hold: timedelta = timedelta(hours=72)
    unit_price: Decimal = Decimal("25.00")
    currency: str = "USD"
    number_width: int = 4
    sequence_name: str = "race_numbers"
    sequence_start: int = 1
    availability_cache_ttl: int = 30
    exchange_rate: Decimal = Decimal("1")
    gateway_currency: str = "VES"
    gateway: GatewaySettings | None = field(default=None)

    @classmethod
    def from_django(cls) -> Self:
        raw = getattr(settings, "RESERVATIONS", {})
        gateway = raw.get("GATEWAY")
        return cls(
            min_items=int(raw.get("MIN_ITEMS", 1)),
            max_items=int(raw.get("MAX_ITEMS", 5)),
            gateway_hold=timedelta(minutes=int(raw.get("GATEWAY_HOLD_MINUTES", 30))),
            manual_hold=timedelta(hours=int(raw.get("MANUAL_HOLD_HOURS", 72))),
            unit_price=Decimal(str(raw.get("UNIT_PRICE", "25.00"))),
            currency=raw.get("CURRENCY", "USD"),
            number_width=int(raw.get("NUMBER_WIDTH", 4)),
            sequence_name=raw.get("SEQUENCE_NAME", "race_numbers"),
            sequence_start=int(raw.get("SEQUENCE_START", 1)),
            availability_cache_ttl=int(raw.get("AVAILABILITY_CACHE_TTL", 30)),
            exchange_rate=Decimal(str(raw.get("EXCHANGE_RATE", "1"))),
            gateway_currency=raw.get("GATEWAY_CURRENCY", "VES"),
            gateway=GatewaySettings.from_dict(gateway) if gateway else None,
        )
