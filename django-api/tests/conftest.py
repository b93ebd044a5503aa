"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest
import requests
from rest_framework.test import APIClient

from reservations.conf import GatewaySettings, ReservationSettings
from reservations.domain import Contact, ItemSpec
from reservations.gateway import GatewayClient, wire
from reservations.services.availability_cache import AvailabilityCache
from reservations.services.confirmation_engine import ConfirmationEngine
from reservations.services.inventory_pool import InventoryPool
from reservations.services.notifications import FixedExchangeRate, NotificationDispatcher
from reservations.services.payment_orchestrator import PaymentOrchestrator
from reservations.services.reservation_manager import ReservationManager
from reservations.services.sequence_allocator import SequenceAllocator
from reservations.stores.django_store import DjangoGroupStore, DjangoInventoryStore, DjangoSequenceStore


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotifier(NotificationDispatcher):
    def __init__(self) -> None:
        self.confirmations = []
        self.rejections = []
        self.fail_with: Exception | None = None

    def send_confirmation(self, group, items, payment):
        if self.fail_with:
            raise self.fail_with
        self.confirmations.append((group.code, [item.number for item in items]))
        return True

    def send_rejection(self, group, reason, payment):
        self.rejections.append((group.code, reason))
        return True


def build_response(status_code: int = 200, **fields) -> Mock:
    """HTTP response carrying ``<response>`` with the given fields."""
    return Mock(status_code=status_code, text=wire.encode({"response": fields}).decode())


def build_item(name: str = "Ana Pérez", size: str = "M", gender: str = "F", **extra) -> ItemSpec:
    return ItemSpec(
        full_name=name,
        identification=extra.pop("identification", "V12345678"),
        size=size,
        gender=gender,
        **extra,
    )


@pytest.fixture
def api_client() -> APIClient:
    return APIClient()


@pytest.fixture(autouse=True)
def clear_cache():
    from django.core.cache import cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 1, 12, 0, tzinfo=dt_timezone.utc))


@pytest.fixture
def gateway_settings() -> GatewaySettings:
    return GatewaySettings(
        base_url="https://paytest.example.com",
        username="merchant",
        password="secret",
        affiliation_code="20250101",
        commerce_phone="04141234567",
        commerce_bank_code="0105",
        live=False,
        timeout=30.0,
        max_attempts=3,
        backoff_base=1.0,
    )


@pytest.fixture
def config(gateway_settings) -> ReservationSettings:
    return ReservationSettings(
        unit_price=Decimal("25.00"),
        exchange_rate=Decimal("40"),
        availability_cache_ttl=30,
        gateway=gateway_settings,
    )


@pytest.fixture
def contact() -> Contact:
    return Contact(email="ana@example.com", phone="+58 414-1234567", identification="V12345678")


@pytest.fixture
def stock(db):
    """Create ledger rows: ``stock("M:F", 10)``."""
    from reservations import models as orm

    def create(category: str, capacity: int, reserved: int = 0, sold: int = 0):
        return orm.InventoryUnit.objects.create(
            category=category, capacity=capacity, reserved=reserved, sold=sold
        )

    return create


@pytest.fixture
def group_store() -> DjangoGroupStore:
    return DjangoGroupStore()


@pytest.fixture
def pool(clock, config) -> InventoryPool:
    return InventoryPool(DjangoInventoryStore(), AvailabilityCache(ttl=config.availability_cache_ttl), clock=clock)


@pytest.fixture
def allocator() -> SequenceAllocator:
    return SequenceAllocator(DjangoSequenceStore(), name="race_numbers", width=4, start=1)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def manager(group_store, pool, allocator, config, clock) -> ReservationManager:
    return ReservationManager(group_store, pool, allocator, config, clock=clock)


@pytest.fixture
def engine(group_store, pool, allocator, notifier, clock) -> ConfirmationEngine:
    return ConfirmationEngine(group_store, pool, allocator, notifier, clock=clock)


@pytest.fixture
def http() -> requests.Session:
    session = requests.Session()
    session.post = Mock(name="post")
    return session


@pytest.fixture
def sleep() -> Mock:
    return Mock(name="sleep")


@pytest.fixture
def gateway(gateway_settings, http, sleep, clock) -> GatewayClient:
    return GatewayClient(gateway_settings, session=http, sleep=sleep, clock=clock)


@pytest.fixture
def orchestrator(manager, engine, pool, group_store, gateway, config, clock) -> PaymentOrchestrator:
    return PaymentOrchestrator(
        manager=manager,
        engine=engine,
        pool=pool,
        groups=group_store,
        gateway=gateway,
        rates=FixedExchangeRate(config.exchange_rate),
        settings=config,
        clock=clock,
    )


@pytest.fixture
def make_item():
    return build_item


@pytest.fixture
def gateway_response():
    return build_response
