"""Store interfaces (repository pattern).

Stores must be swappable and return domain models. Every store exposes
``atomic()`` so services can group several calls into one transaction.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from reservations.domain import (
    Contact,
    Group,
    InventoryUnit,
    Item,
    ItemSpec,
    PaymentDetails,
    PaymentMethod,
    PaymentStatus,
    PaymentTransaction,
    PendingWorkOrder,
    Reservation,
    ReservationStatus,
)


class TransactionalStore(ABC):
    @abstractmethod
    def atomic(self) -> AbstractContextManager:
        """Return a context manager wrapping a database transaction."""
        ...

    @abstractmethod
    def on_commit(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the current transaction commits (now, outside one)."""
        ...


class InventoryStore(TransactionalStore):
    """Interface for the inventory ledger and its reservations."""

    @abstractmethod
    def get_unit(self, category: str) -> InventoryUnit | None:
        """Return the ledger row for a category, or None if unknown."""
        ...

    @abstractmethod
    def list_units(self) -> list[InventoryUnit]:
        """Return every ledger row ordered by category."""
        ...

    @abstractmethod
    def create_unit(self, category: str, capacity: int) -> InventoryUnit:
        """Create a ledger row, or reset the capacity of an existing one."""
        ...

    @abstractmethod
    def try_reserve(self, category: str, quantity: int) -> bool:
        """Atomically add ``quantity`` to reserved if capacity allows it."""
        ...

    @abstractmethod
    def adjust_counts(self, category: str, reserved_delta: int, sold_delta: int) -> None:
        """Apply deltas to reserved and sold in a single update."""
        ...

    @abstractmethod
    def try_set_capacity(self, category: str, capacity: int) -> bool:
        """Set capacity unless it would drop below reserved + sold."""
        ...

    @abstractmethod
    def set_reserved(self, category: str, reserved: int) -> None:
        """Overwrite the reserved count (repair only)."""
        ...

    @abstractmethod
    def create_reservations(
        self, group_id: UUID, category: str, item_ids: list[UUID | None]
    ) -> list[Reservation]:
        """Create one active reservation per entry in ``item_ids``."""
        ...

    @abstractmethod
    def lock_reservations(self, reservation_ids: list[UUID]) -> list[Reservation]:
        """Return the reservations, locked for update."""
        ...

    @abstractmethod
    def mark_reservations(
        self, reservation_ids: list[UUID], status: ReservationStatus, at: datetime
    ) -> None:
        """Move reservations to ``status``."""
        ...

    @abstractmethod
    def reservations_for_group(
        self, group_id: UUID, statuses: tuple[ReservationStatus, ...] | None = None
    ) -> list[Reservation]:
        """Return a group's reservations, optionally filtered by status."""
        ...

    @abstractmethod
    def attach_item(self, reservation_id: UUID, item_id: UUID) -> None:
        """Bind a group-level hold to its materialized item."""
        ...

    @abstractmethod
    def count_active_by_category(self) -> dict[str, int]:
        """Return the sum of active reservation quantities per category."""
        ...


class SequenceStore(TransactionalStore):
    """Interface for the shared number counter."""

    @abstractmethod
    def advance(self, name: str, count: int, start: int) -> int:
        """Lock the counter, move it forward by ``count`` and return the first value."""
        ...

    @abstractmethod
    def record_released(self, numbers: list[str], group_code: str, released_by: str) -> None:
        """Record numbers released by a deletion."""
        ...


class GroupStore(TransactionalStore):
    """Interface for groups, items, payment transactions and the audit log."""

    @abstractmethod
    def create_group(
        self,
        code: str,
        contact: Contact,
        item_count: int,
        payment_method: PaymentMethod,
        payment_status: PaymentStatus,
        reserved_until: datetime,
        details: PaymentDetails,
        work_order: PendingWorkOrder | None,
    ) -> Group:
        """Persist a new group without items."""
        ...

    @abstractmethod
    def create_items(self, group_id: UUID, specs: list[ItemSpec], status: PaymentStatus) -> list[Item]:
        """Persist items in the given order."""
        ...

    @abstractmethod
    def get_group(self, group_id: UUID) -> Group | None:
        """Return a group with its items, or None if not found."""
        ...

    @abstractmethod
    def get_group_by_code(self, code: str) -> Group | None:
        """Return a group by its public code, or None if not found."""
        ...

    @abstractmethod
    def lock_group(self, group_id: UUID) -> Group | None:
        """Return a group with its items, holding its row lock until the transaction ends."""
        ...

    @abstractmethod
    def transition(
        self,
        group_id: UUID,
        from_statuses: tuple[PaymentStatus, ...],
        to_status: PaymentStatus,
        **fields: Any,
    ) -> bool:
        """Update status only if the current status is one of ``from_statuses``."""
        ...

    @abstractmethod
    def set_item_status(self, group_id: UUID, status: PaymentStatus, at: datetime | None) -> None:
        """Mirror a group status onto all of its items."""
        ...

    @abstractmethod
    def assign_numbers(self, assignments: list[tuple[UUID, str]]) -> None:
        """Store numbers for items that have none."""
        ...

    @abstractmethod
    def clear_work_order(self, group_id: UUID) -> None:
        """Drop the deferred work order once items exist."""
        ...

    @abstractmethod
    def find_expired(self, now: datetime) -> list[Group]:
        """Return pending groups past reserved_until with no attempt in flight."""
        ...

    @abstractmethod
    def delete_group(self, group_id: UUID) -> None:
        """Hard-delete a group and everything it owns."""
        ...

    @abstractmethod
    def create_transaction(self, group_id: UUID, **fields: Any) -> PaymentTransaction:
        """Record a payment attempt."""
        ...

    @abstractmethod
    def update_transaction(self, transaction_id: UUID, **fields: Any) -> PaymentTransaction:
        """Update a payment attempt and return it."""
        ...

    @abstractmethod
    def get_transaction_by_control(self, control: str) -> PaymentTransaction | None:
        """Return the attempt bound to a gateway control number."""
        ...

    @abstractmethod
    def list_transactions(self, group_id: UUID) -> list[PaymentTransaction]:
        """Return a group's attempts, newest first."""
        ...

    @abstractmethod
    def has_pending_transaction(self, group_id: UUID) -> bool:
        """Check whether an attempt for the group is still unresolved."""
        ...

    @abstractmethod
    def audit(self, action: str, group: Group, performed_by: str | None, details: dict[str, Any]) -> None:
        """Append an audit entry."""
        ...
