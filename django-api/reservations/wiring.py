"""Composition root: builds services from settings and the Django stores."""

from datetime import datetime
from typing import Callable

import requests
from django.conf import settings as django_settings
from django.utils import timezone
from django.utils.module_loading import import_string

from reservations.conf import ReservationSettings
from reservations.gateway import GatewayClient
from reservations.services.availability_cache import AvailabilityCache
from reservations.services.confirmation_engine import ConfirmationEngine
from reservations.services.inventory_pool import InventoryPool
from reservations.services.notifications import (
    FixedExchangeRate,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
)
from reservations.services.payment_orchestrator import PaymentOrchestrator
from reservations.services.reservation_manager import ReservationManager
from reservations.services.sequence_allocator import SequenceAllocator
from reservations.stores.django_store import DjangoGroupStore, DjangoInventoryStore, DjangoSequenceStore


def build_notifier() -> NotificationDispatcher:
    path = getattr(django_settings, "RESERVATIONS", {}).get("NOTIFIER")
    if not path:
        return LoggingNotificationDispatcher()
    return import_string(path)()


def build_gateway(
    config: ReservationSettings,
    http_session: requests.Session | None = None,
    clock: Callable[[], datetime] = timezone.now,
) -> GatewayClient | None:
    if config.gateway is None or not config.gateway.is_configured:
        return None
    return GatewayClient(config.gateway, session=http_session, clock=clock)


def build_availability_cache(config: ReservationSettings | None = None) -> AvailabilityCache:
    config = config or ReservationSettings.from_django()
    return AvailabilityCache(ttl=config.availability_cache_ttl)


def build_orchestrator(
    config: ReservationSettings | None = None,
    gateway: GatewayClient | None = None,
    notifier: NotificationDispatcher | None = None,
    clock: Callable[[], datetime] = timezone.now,
) -> PaymentOrchestrator:
    config = config or ReservationSettings.from_django()
    groups = DjangoGroupStore()
    pool = InventoryPool(DjangoInventoryStore(), build_availability_cache(config), clock=clock)
    allocator = SequenceAllocator(
        DjangoSequenceStore(),
        name=config.sequence_name,
        width=config.number_width,
        start=config.sequence_start,
    )
    manager = ReservationManager(groups, pool, allocator, config, clock=clock)
    engine = ConfirmationEngine(groups, pool, allocator, notifier or build_notifier(), clock=clock)
    return PaymentOrchestrator(
        manager=manager,
        engine=engine,
        pool=pool,
        groups=groups,
        gateway=gateway or build_gateway(config, clock=clock),
        rates=FixedExchangeRate(config.exchange_rate),
        settings=config,
        clock=clock,
    )
