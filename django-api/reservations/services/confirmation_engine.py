"""Confirmation engine - the only way a group becomes confirmed or rejected.

A confirmation is one transaction: the guarded status change, item
materialization, inventory commit and number assignment succeed or fail
together. Notifications go out after the commit and never undo it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable
from uuid import UUID

import structlog
from django.utils import timezone

from reservations.domain import (
    Group,
    Item,
    PaymentStatus,
    PaymentTransaction,
    Reservation,
    ReservationStatus,
)
from reservations.domain.errors import AlreadyProcessedError, GroupNotFoundError, ValidationError
from reservations.services.inventory_pool import InventoryPool
from reservations.services.notifications import NotificationDispatcher
from reservations.services.sequence_allocator import SequenceAllocator
from reservations.stores.interfaces import GroupStore

logger = structlog.get_logger(__name__)

_OPEN = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)


@dataclass(frozen=True)
class ConfirmationResult:
    group: Group
    numbers: list[str]
    notification_sent: bool
    warnings: list[str] = field(default_factory=list)


class ConfirmationEngine:
    """Finalizes groups exactly once."""

    def __init__(
        self,
        groups: GroupStore,
        pool: InventoryPool,
        allocator: SequenceAllocator,
        notifier: NotificationDispatcher,
        clock: Callable[[], datetime] = timezone.now,
    ) -> None:
        self._groups = groups
        self._pool = pool
        self._allocator = allocator
        self._notifier = notifier
        self._clock = clock

    def confirm(
        self,
        group_id: UUID,
        confirmed_by: str,
        payment: PaymentTransaction | None = None,
        enforce_expiry: bool = True,
    ) -> ConfirmationResult:
        """Confirm a pending or processing group.

        ``enforce_expiry`` is off for gateway approvals: the buyer was charged
        inside the hold window even if the answer arrived after it.

        Raises:
            GroupNotFoundError: If the group does not exist.
            AlreadyProcessedError: If the group is terminal, expired, or a
                concurrent confirmation won.
        """
        group = self._load(group_id)
        now = self._clock()
        if group.payment_status.is_terminal:
            raise AlreadyProcessedError(group.code, group.payment_status.value)
        if enforce_expiry and group.is_expired(now):
            raise AlreadyProcessedError(group.code, "expired")

        with self._groups.atomic():
            if not self._groups.transition(
                group.id, _OPEN, PaymentStatus.CONFIRMED, confirmed_by=confirmed_by, confirmed_at=now
            ):
                current = self._load(group.id)
                logger.info("confirmation_lost_race", group_code=group.code, status=current.payment_status.value)
                raise AlreadyProcessedError(group.code, current.payment_status.value)

            items = list(group.items)
            if group.has_deferred_items:
                items = self._materialize(group)

            active = self._pool.reservations(group.id, ReservationStatus.ACTIVE)
            committed = self._pool.commit([r.id for r in active])
            self._groups.set_item_status(group.id, PaymentStatus.CONFIRMED, now)

            unnumbered = [item for item in sorted(items, key=lambda i: i.position) if item.number is None]
            numbers: list[str] = []
            if unnumbered:
                numbers = self._allocator.allocate_next(len(unnumbered))
                self._groups.assign_numbers([(item.id, n) for item, n in zip(unnumbered, numbers)])

            confirmed = self._load(group.id)
            self._groups.audit(
                "group_confirmed",
                confirmed,
                confirmed_by,
                {
                    "numbers": numbers,
                    "committed_units": committed,
                    "transaction_id": str(payment.id) if payment else None,
                },
            )

        logger.info(
            "group_confirmed",
            group_code=confirmed.code,
            confirmed_by=confirmed_by,
            numbers=numbers,
        )
        sent, warnings = self._notify_confirmation(confirmed, payment, confirmed_by)
        return ConfirmationResult(group=confirmed, numbers=numbers, notification_sent=sent, warnings=warnings)

    def reject(
        self,
        group_id: UUID,
        reason: str,
        rejected_by: str | None = None,
        payment: PaymentTransaction | None = None,
    ) -> Group:
        """Reject a group and release its inventory. Rejecting twice is a no-op.

        Raises:
            AlreadyProcessedError: If the group is already confirmed.
        """
        group = self._load(group_id)
        if group.payment_status is PaymentStatus.REJECTED:
            logger.debug("group_already_rejected", group_code=group.code)
            return group
        if group.payment_status is PaymentStatus.CONFIRMED:
            raise AlreadyProcessedError(group.code, group.payment_status.value)

        now = self._clock()
        with self._groups.atomic():
            if not self._groups.transition(
                group.id, _OPEN, PaymentStatus.REJECTED, rejection_reason=reason, rejected_at=now
            ):
                current = self._load(group.id)
                if current.payment_status is PaymentStatus.REJECTED:
                    return current
                raise AlreadyProcessedError(group.code, current.payment_status.value)
            self._groups.set_item_status(group.id, PaymentStatus.REJECTED, None)
            active = self._pool.reservations(group.id, ReservationStatus.ACTIVE)
            released = self._pool.release([r.id for r in active])
            rejected = self._load(group.id)
            self._groups.audit("group_rejected", rejected, rejected_by, {"reason": reason, "released_units": released})

        logger.info("group_rejected", group_code=rejected.code, reason=reason, released_units=released)
        try:
            self._notifier.send_rejection(rejected, reason, payment)
        except Exception:
            logger.exception("rejection_notification_failed", group_code=rejected.code)
        return rejected

    def resend_notification(self, group_id: UUID, requested_by: str | None = None) -> bool:
        group = self._load(group_id)
        if group.payment_status is not PaymentStatus.CONFIRMED:
            raise ValidationError(
                f"Group {group.code} is {group.payment_status.value}, only confirmed groups get a confirmation",
                field="group_id",
            )
        sent, _ = self._notify_confirmation(group, None, requested_by)
        return sent

    def _materialize(self, group: Group) -> list[Item]:
        """Create the work order's items and bind each to a hold of its category."""
        items = self._groups.create_items(group.id, list(group.work_order.items), PaymentStatus.PENDING)
        holds: dict[str, list[Reservation]] = {}
        for hold in self._pool.reservations(group.id, ReservationStatus.ACTIVE):
            if hold.item_id is None:
                holds.setdefault(hold.category, []).append(hold)

        shortfall: dict[str, list[UUID]] = {}
        for item in items:
            bucket = holds.get(item.category)
            if bucket:
                self._pool.attach(bucket.pop(0).id, item.id)
            else:
                shortfall.setdefault(item.category, []).append(item.id)
        for category in sorted(shortfall):
            self._pool.reserve(category, len(shortfall[category]), group.id, shortfall[category])

        leftover = [hold.id for bucket in holds.values() for hold in bucket]
        if leftover:
            self._pool.release(leftover)
        self._groups.clear_work_order(group.id)
        logger.info(
            "work_order_materialized",
            group_code=group.code,
            items=len(items),
            reserved_late=sum(len(ids) for ids in shortfall.values()),
        )
        return items

    def _notify_confirmation(
        self, group: Group, payment: PaymentTransaction | None, actor: str | None
    ) -> tuple[bool, list[str]]:
        warnings = []
        try:
            sent = self._notifier.send_confirmation(group, list(group.items), payment)
        except Exception as exc:
            logger.exception("confirmation_notification_failed", group_code=group.code)
            sent = False
            warnings.append(f"Confirmation notification failed: {exc.__class__.__name__}")
        else:
            if not sent:
                warnings.append("Confirmation notification was not accepted for delivery")
        self._groups.audit(
            "notification_sent" if sent else "notification_failed",
            group,
            actor,
            {"kind": "confirmation", "recipient": group.contact.email},
        )
        return sent, warnings

    def _load(self, group_id: UUID) -> Group:
        group = self._groups.get_group(group_id)
        if group is None:
            raise GroupNotFoundError(str(group_id))
        return group
