"""Inventory pool - capacity, reserved and sold counts per category.

Every write runs in one transaction against the touched category rows:
reserve is a conditional UPDATE that cannot pass capacity, release and
commit lock the reservation rows before moving counts.
"""

from collections import Counter
from datetime import datetime
from typing import Callable
from uuid import UUID

import structlog
from django.utils import timezone

from reservations.domain import Availability, InventoryUnit, Reservation, ReservationStatus
from reservations.domain.errors import InsufficientInventoryError, ValidationError
from reservations.services.availability_cache import AvailabilityCache
from reservations.stores.interfaces import InventoryStore

logger = structlog.get_logger(__name__)


class InventoryPool:
    """Service for the shared inventory ledger."""

    def __init__(
        self,
        store: InventoryStore,
        cache: AvailabilityCache,
        clock: Callable[[], datetime] = timezone.now,
    ) -> None:
        self._store = store
        self._cache = cache
        self._clock = clock

    def reserve(
        self,
        category: str,
        quantity: int,
        group_id: UUID,
        item_ids: list[UUID | None] | None = None,
    ) -> list[Reservation]:
        """Hold ``quantity`` units, one reservation per unit.

        Raises:
            ValidationError: If the quantity is not positive or the category is unknown.
            InsufficientInventoryError: If fewer than ``quantity`` units are available.
        """
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", field="quantity")
        if item_ids is None:
            item_ids = [None] * quantity
        if len(item_ids) != quantity:
            raise ValidationError("One item per reserved unit is required", field="item_ids")

        with self._store.atomic():
            if not self._store.try_reserve(category, quantity):
                unit = self._store.get_unit(category)
                if unit is None:
                    raise ValidationError(f"Unknown inventory category: {category}", field="category")
                logger.info(
                    "inventory_exhausted",
                    category=category,
                    requested=quantity,
                    available=unit.available,
                )
                raise InsufficientInventoryError(category, quantity, unit.available)
            reservations = self._store.create_reservations(group_id, category, item_ids)
        self._invalidate([category])
        logger.debug("inventory_reserved", category=category, quantity=quantity, group_id=str(group_id))
        return reservations

    def release(self, reservation_ids: list[UUID]) -> int:
        """Return active reservations to the pool. Returns the units released."""
        return self._settle(reservation_ids, ReservationStatus.RELEASED)

    def commit(self, reservation_ids: list[UUID]) -> int:
        """Turn active reservations into sold units. Already committed ones are skipped."""
        return self._settle(reservation_ids, ReservationStatus.COMMITTED)

    def restock(self, reservation_ids: list[UUID]) -> int:
        """Return committed units to the pool (used when a sold group is deleted)."""
        if not reservation_ids:
            return 0
        with self._store.atomic():
            locked = [
                r for r in self._store.lock_reservations(reservation_ids)
                if r.status is ReservationStatus.COMMITTED
            ]
            per_category = Counter()
            for reservation in locked:
                per_category[reservation.category] += reservation.quantity
            for category, units in per_category.items():
                self._store.adjust_counts(category, reserved_delta=0, sold_delta=-units)
            self._store.mark_reservations([r.id for r in locked], ReservationStatus.RELEASED, self._clock())
        self._invalidate(per_category)
        return sum(per_category.values())

    def check_availability(self, category: str, quantity: int = 1) -> Availability:
        available = self._cache.get(category)
        if available is None:
            unit = self._store.get_unit(category)
            if unit is None:
                raise ValidationError(f"Unknown inventory category: {category}", field="category")
            available = unit.available
            self._cache.set(category, available)
        return Availability(category=category, requested=quantity, available=available)

    def reservations(self, group_id: UUID, *statuses: ReservationStatus) -> list[Reservation]:
        return self._store.reservations_for_group(group_id, statuses or None)

    def attach(self, reservation_id: UUID, item_id: UUID) -> None:
        self._store.attach_item(reservation_id, item_id)

    def units(self) -> list[InventoryUnit]:
        return self._store.list_units()

    def add_category(self, category: str, capacity: int) -> InventoryUnit:
        if capacity < 0:
            raise ValidationError("Capacity cannot be negative", field="capacity")
        unit = self._store.create_unit(category, capacity)
        self._invalidate([category])
        return unit

    def set_capacity(self, category: str, capacity: int) -> InventoryUnit:
        """Change capacity without breaking reserved + sold <= capacity."""
        if capacity < 0:
            raise ValidationError("Capacity cannot be negative", field="capacity")
        with self._store.atomic():
            if not self._store.try_set_capacity(category, capacity):
                unit = self._store.get_unit(category)
                if unit is None:
                    raise ValidationError(f"Unknown inventory category: {category}", field="category")
                raise ValidationError(
                    f"Capacity {capacity} is below the {unit.reserved + unit.sold} units already held",
                    field="capacity",
                )
            unit = self._store.get_unit(category)
        self._invalidate([category])
        logger.info("inventory_capacity_changed", category=category, capacity=capacity)
        return unit

    def recalculate_reserved(self) -> dict[str, int]:
        """Recompute reserved counts from active reservations. Returns the corrections made."""
        corrections = {}
        with self._store.atomic():
            active = self._store.count_active_by_category()
            for unit in self._store.list_units():
                expected = active.get(unit.category, 0)
                if expected != unit.reserved:
                    self._store.set_reserved(unit.category, expected)
                    corrections[unit.category] = expected - unit.reserved
        if corrections:
            logger.warning("inventory_reserved_recalculated", corrections=corrections)
            self._invalidate(corrections)
        return corrections

    def _settle(self, reservation_ids: list[UUID], target: ReservationStatus) -> int:
        if not reservation_ids:
            return 0
        with self._store.atomic():
            locked = self._store.lock_reservations(reservation_ids)
            active = [r for r in locked if r.status is ReservationStatus.ACTIVE]
            skipped = len(locked) - len(active)
            per_category = Counter()
            for reservation in active:
                per_category[reservation.category] += reservation.quantity
            for category, units in per_category.items():
                if target is ReservationStatus.COMMITTED:
                    self._store.adjust_counts(category, reserved_delta=-units, sold_delta=units)
                else:
                    self._store.adjust_counts(category, reserved_delta=-units, sold_delta=0)
            self._store.mark_reservations([r.id for r in active], target, self._clock())
        if skipped:
            logger.debug("reservations_already_settled", target=target.value, skipped=skipped)
        self._invalidate(per_category)
        return sum(per_category.values())

    def _invalidate(self, categories) -> None:
        categories = list(categories)
        if not categories:
            return
        self._cache.invalidate(categories)
        # a reader may repopulate from uncommitted state before the outer transaction ends
        self._store.on_commit(lambda: self._cache.invalidate(categories))
