"""Reservation manager - group creation, holds, expiry and deletion.

Services:
- Depend only on interfaces (stores) and sibling services
- Validate domain invariants before anything is written
- Return domain models or raise domain errors
"""

import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Callable
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email
from django.utils import timezone

from reservations.conf import ReservationSettings
from reservations.domain import (
    Contact,
    Group,
    GroupId,
    ItemSpec,
    PaymentChannel,
    PaymentDetails,
    PaymentMethod,
    PaymentStatus,
    PendingWorkOrder,
    Reservation,
    ReservationStatus,
)
from reservations.domain.errors import AlreadyProcessedError, GroupNotFoundError, ValidationError
from reservations.services.inventory_pool import InventoryPool
from reservations.services.sequence_allocator import SequenceAllocator
from reservations.stores.interfaces import GroupStore

logger = structlog.get_logger(__name__)

_PHONE_RE = re.compile(r"^\+?\d{7,15}$")
_BASE36 = string.digits + string.ascii_uppercase


@dataclass(frozen=True)
class DeletionResult:
    group_code: str
    released_units: int
    restocked_units: int
    released_numbers: tuple[str, ...]


def new_group_code(now: datetime) -> str:
    """``G`` + base36 millisecond timestamp + 4 random base36 characters."""
    millis = int(now.timestamp() * 1000)
    stamp = ""
    while millis:
        millis, digit = divmod(millis, 36)
        stamp = _BASE36[digit] + stamp
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"G{stamp}{suffix}"


class ReservationManager:
    """Owns the group lifecycle up to confirmation."""

    def __init__(
        self,
        groups: GroupStore,
        pool: InventoryPool,
        allocator: SequenceAllocator,
        settings: ReservationSettings,
        clock: Callable[[], datetime] = timezone.now,
    ) -> None:
        self._groups = groups
        self._pool = pool
        self._allocator = allocator
        self._settings = settings
        self._clock = clock

    def create_group(
        self,
        contact: Contact,
        items: list[ItemSpec],
        payment_method: PaymentMethod,
        details: PaymentDetails = PaymentDetails(),
        created_by: str | None = None,
    ) -> Group:
        """Create a pending group.

        Gateway purchases keep their items in a work order until the payment
        is approved. Every other method gets its items and inventory
        reservations in the same transaction as the group.

        Raises:
            ValidationError: If contact, items or payment details are invalid.
            InsufficientInventoryError: If a category cannot cover its items.
        """
        self._validate_contact(contact)
        categories = self._validate_items(items)
        self._validate_details(payment_method, details)

        now = self._clock()
        code = new_group_code(now)
        if payment_method.channel is PaymentChannel.GATEWAY_P2C:
            with self._groups.atomic():
                group = self._groups.create_group(
                    code=code,
                    contact=contact,
                    item_count=len(items),
                    payment_method=payment_method,
                    payment_status=PaymentStatus.PENDING,
                    reserved_until=now + self._settings.gateway_hold,
                    details=details,
                    work_order=PendingWorkOrder(items=tuple(items)),
                )
                self._groups.audit("group_created", group, created_by, {"deferred_items": len(items)})
        else:
            with self._groups.atomic():
                group = self._groups.create_group(
                    code=code,
                    contact=contact,
                    item_count=len(items),
                    payment_method=payment_method,
                    payment_status=PaymentStatus.PENDING,
                    reserved_until=now + self._settings.manual_hold,
                    details=details,
                    work_order=None,
                )
                created = self._groups.create_items(group.id, list(items), PaymentStatus.PENDING)
                by_category: dict[str, list[UUID]] = {}
                for item, category in zip(created, categories):
                    by_category.setdefault(category, []).append(item.id)
                # fixed order keeps concurrent creates from locking ledger rows crosswise
                for category in sorted(by_category):
                    item_ids = by_category[category]
                    self._pool.reserve(category, len(item_ids), group.id, item_ids)
                self._groups.audit("group_created", group, created_by, {"items": len(created)})
            group = self._groups.get_group(group.id)

        logger.info(
            "group_created",
            group_code=group.code,
            payment_method=payment_method.value,
            items=len(items),
            reserved_until=group.reserved_until.isoformat(),
        )
        return group

    def get_group(self, group_id: str | UUID) -> Group:
        """Return a group by ID.

        Raises:
            ValidationError: If the group_id is not a valid UUID.
            GroupNotFoundError: If the group does not exist.
        """
        try:
            parsed = GroupId.from_string(group_id)
        except ValueError as exc:
            raise ValidationError(f"Invalid group ID: {group_id}", field="group_id") from exc
        group = self._groups.get_group(parsed.value)
        if group is None:
            raise GroupNotFoundError(str(group_id))
        return group

    def get_group_by_code(self, code: str) -> Group:
        group = self._groups.get_group_by_code(code)
        if group is None:
            raise GroupNotFoundError(code)
        return group

    def place_holds(self, group: Group) -> list[Reservation]:
        """Reserve the work order's units before a gateway attempt.

        Holds left by an earlier unresolved attempt are reused.
        """
        if not group.has_deferred_items:
            return []
        existing = self._pool.reservations(group.id, ReservationStatus.ACTIVE)
        if existing:
            return existing
        holds: list[Reservation] = []
        with self._groups.atomic():
            quantities = group.work_order.quantities()
            for category in sorted(quantities, key=str):
                holds.extend(self._pool.reserve(category.key, quantities[category], group.id))
        logger.info("gateway_holds_placed", group_code=group.code, units=len(holds))
        return holds

    def release_holds(self, group: Group) -> int:
        active = self._pool.reservations(group.id, ReservationStatus.ACTIVE)
        released = self._pool.release([r.id for r in active])
        if released:
            logger.info("gateway_holds_released", group_code=group.code, units=released)
        return released

    def mark_processing(self, group: Group) -> bool:
        moved = self._groups.transition(group.id, (PaymentStatus.PENDING,), PaymentStatus.PROCESSING)
        if moved:
            logger.info("group_processing", group_code=group.code)
        return moved

    def expire_stale(self, now: datetime | None = None) -> list[Group]:
        """Reject pending groups past their hold window and free their inventory."""
        now = now or self._clock()
        expired = []
        for group in self._groups.find_expired(now):
            with self._groups.atomic():
                moved = self._groups.transition(
                    group.id,
                    (PaymentStatus.PENDING,),
                    PaymentStatus.REJECTED,
                    rejection_reason="Reservation expired",
                    rejected_at=now,
                )
                if not moved:
                    continue
                self._groups.set_item_status(group.id, PaymentStatus.REJECTED, None)
                active = self._pool.reservations(group.id, ReservationStatus.ACTIVE)
                released = self._pool.release([r.id for r in active])
                self._groups.audit("group_expired", group, None, {"released_units": released})
            expired.append(group)
            logger.info("group_expired", group_code=group.code, released_units=released)
        return expired

    def delete_group(self, group_id: str | UUID, performed_by: str, force: bool = False) -> DeletionResult:
        """Hard-delete a group, returning its inventory and numbers.

        Raises:
            AlreadyProcessedError: If the group is confirmed and ``force`` is not set.
        """
        group = self.get_group(group_id)
        with self._groups.atomic():
            locked = self._groups.lock_group(group.id)
            if locked is None:
                raise GroupNotFoundError(str(group.id))
            if locked.payment_status is PaymentStatus.CONFIRMED and not force:
                raise AlreadyProcessedError(locked.code, PaymentStatus.CONFIRMED.value)
            group = locked

            numbers = tuple(item.number for item in group.items if item.number)
            active = self._pool.reservations(group.id, ReservationStatus.ACTIVE)
            committed = self._pool.reservations(group.id, ReservationStatus.COMMITTED)
            released = self._pool.release([r.id for r in active])
            restocked = self._pool.restock([r.id for r in committed])
            self._allocator.release(list(numbers), group.code, performed_by)
            self._groups.audit(
                "group_deleted",
                group,
                performed_by,
                {
                    "status": group.payment_status.value,
                    "released_units": released,
                    "restocked_units": restocked,
                    "numbers": list(numbers),
                    "forced": force,
                },
            )
            self._groups.delete_group(group.id)

        logger.warning(
            "group_deleted",
            group_code=group.code,
            performed_by=performed_by,
            released_units=released,
            restocked_units=restocked,
        )
        return DeletionResult(
            group_code=group.code,
            released_units=released,
            restocked_units=restocked,
            released_numbers=numbers,
        )

    def _validate_contact(self, contact: Contact) -> None:
        try:
            validate_email(contact.email or "")
        except DjangoValidationError as exc:
            raise ValidationError(f"Invalid email: {contact.email}", field="email") from exc
        phone = re.sub(r"[\s\-().]", "", contact.phone or "")
        if not _PHONE_RE.match(phone):
            raise ValidationError(f"Invalid phone: {contact.phone}", field="phone")

    def _validate_items(self, items: list[ItemSpec]) -> list[str]:
        low, high = self._settings.min_items, self._settings.max_items
        if not low <= len(items) <= high:
            raise ValidationError(f"A group must have between {low} and {high} items", field="items")
        categories = []
        for position, item in enumerate(items, start=1):
            if not item.full_name.strip():
                raise ValidationError(f"Item {position}: full name is required", field="full_name")
            if not item.identification.strip():
                raise ValidationError(f"Item {position}: identification is required", field="identification")
            try:
                categories.append(item.category.key)
            except ValueError as exc:
                raise ValidationError(f"Item {position}: {exc}", field="category") from exc
        return categories

    def _validate_details(self, method: PaymentMethod, details: PaymentDetails) -> None:
        if method.channel is not PaymentChannel.MANUAL_PROOF:
            return
        if not (details.reference or details.proof_url):
            raise ValidationError(
                f"{method.value} payments need a reference or a proof of payment",
                field="payment_reference",
            )
        if method is PaymentMethod.NATIONAL_TRANSFER and not details.bank_id:
            raise ValidationError("National transfers need the destination bank", field="bank_id")
