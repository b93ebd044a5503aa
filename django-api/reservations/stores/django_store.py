"""Django ORM implementation of the reservation stores."""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator
from uuid import UUID

from django.db import DatabaseError, transaction
from django.db.models import Exists, F, OuterRef, Sum

from reservations import models as orm
from reservations.domain import (
    Contact,
    Group,
    InventoryUnit,
    Item,
    ItemSpec,
    PaymentChannel,
    PaymentDetails,
    PaymentMethod,
    PaymentStatus,
    PaymentTransaction,
    PendingWorkOrder,
    Reservation,
    ReservationStatus,
    TransactionStatus,
)
from reservations.domain.errors import PersistenceConflictError
from reservations.stores.interfaces import GroupStore, InventoryStore, SequenceStore


class _DjangoStore:
    @contextmanager
    def atomic(self) -> Iterator[None]:
        try:
            with transaction.atomic():
                yield
        except DatabaseError as exc:
            raise PersistenceConflictError(f"Database write rejected: {exc.__class__.__name__}") from exc

    def on_commit(self, callback: Callable[[], None]) -> None:
        transaction.on_commit(callback)


def _unit(row: orm.InventoryUnit) -> InventoryUnit:
    return InventoryUnit(
        category=row.category,
        capacity=row.capacity,
        reserved=row.reserved,
        sold=row.sold,
    )


def _reservation(row: orm.Reservation) -> Reservation:
    return Reservation(
        id=row.id,
        group_id=row.group_id,
        item_id=row.item_id,
        category=row.category,
        quantity=row.quantity,
        status=ReservationStatus(row.status),
    )


def _item(row: orm.Item) -> Item:
    return Item(
        id=row.id,
        group_id=row.group_id,
        position=row.position,
        full_name=row.full_name,
        identification=row.identification,
        category=row.category,
        payment_status=PaymentStatus(row.payment_status),
        gender=row.gender,
        size=row.size,
        zone=row.zone,
        birth_date=row.birth_date,
        email=row.email,
        phone=row.phone,
        number=row.number,
    )


def _group(row: orm.Group, items: list[orm.Item] | None = None) -> Group:
    return Group(
        id=row.id,
        code=row.code,
        contact=Contact(
            email=row.contact_email,
            phone=row.contact_phone,
            identification=row.contact_identification,
        ),
        item_count=row.item_count,
        payment_method=PaymentMethod(row.payment_method),
        payment_status=PaymentStatus(row.payment_status),
        reserved_until=row.reserved_until,
        created_at=row.created_at,
        details=PaymentDetails(
            reference=row.payment_reference,
            proof_url=row.payment_proof_url,
            bank_id=row.bank_id,
        ),
        work_order=PendingWorkOrder.from_payload(row.work_order) if row.work_order else None,
        confirmed_by=row.confirmed_by,
        confirmed_at=row.confirmed_at,
        rejection_reason=row.rejection_reason,
        rejected_at=row.rejected_at,
        items=tuple(_item(i) for i in items or ()),
    )


def _transaction(row: orm.PaymentTransaction) -> PaymentTransaction:
    return PaymentTransaction(
        id=row.id,
        group_id=row.group_id,
        channel=PaymentChannel(row.channel),
        payment_method=PaymentMethod(row.payment_method),
        amount=row.amount,
        currency=row.currency,
        status=TransactionStatus(row.status),
        created_at=row.created_at,
        reference=row.reference,
        control=row.control,
        invoice=row.invoice,
        response_code=row.response_code,
        description=row.description,
        authorization_id=row.authorization_id,
        voucher=row.voucher,
        metadata=row.metadata or {},
    )


class DjangoInventoryStore(_DjangoStore, InventoryStore):
    """Inventory ledger backed by conditional UPDATEs and row locks."""

    def get_unit(self, category: str) -> InventoryUnit | None:
        row = orm.InventoryUnit.objects.filter(category=category).first()
        return _unit(row) if row else None

    def list_units(self) -> list[InventoryUnit]:
        return [_unit(row) for row in orm.InventoryUnit.objects.all()]

    def create_unit(self, category: str, capacity: int) -> InventoryUnit:
        row, _ = orm.InventoryUnit.objects.update_or_create(
            category=category, defaults={"capacity": capacity}
        )
        return _unit(row)

    def try_reserve(self, category: str, quantity: int) -> bool:
        updated = orm.InventoryUnit.objects.filter(
            category=category,
            capacity__gte=F("reserved") + F("sold") + quantity,
        ).update(reserved=F("reserved") + quantity)
        return updated == 1

    def adjust_counts(self, category: str, reserved_delta: int, sold_delta: int) -> None:
        orm.InventoryUnit.objects.filter(category=category).update(
            reserved=F("reserved") + reserved_delta,
            sold=F("sold") + sold_delta,
        )

    def try_set_capacity(self, category: str, capacity: int) -> bool:
        updated = orm.InventoryUnit.objects.filter(
            category=category,
            reserved__lte=capacity - F("sold"),
        ).update(capacity=capacity)
        return updated == 1

    def set_reserved(self, category: str, reserved: int) -> None:
        orm.InventoryUnit.objects.filter(category=category).update(reserved=reserved)

    def create_reservations(
        self, group_id: UUID, category: str, item_ids: list[UUID | None]
    ) -> list[Reservation]:
        rows = orm.Reservation.objects.bulk_create(
            [
                orm.Reservation(group_id=group_id, item_id=item_id, category=category, quantity=1)
                for item_id in item_ids
            ]
        )
        return [_reservation(row) for row in rows]

    def lock_reservations(self, reservation_ids: list[UUID]) -> list[Reservation]:
        rows = (
            orm.Reservation.objects.select_for_update()
            .filter(id__in=reservation_ids)
            .order_by("category", "id")
        )
        return [_reservation(row) for row in rows]

    def mark_reservations(
        self, reservation_ids: list[UUID], status: ReservationStatus, at: datetime
    ) -> None:
        stamp = {
            ReservationStatus.RELEASED: "released_at",
            ReservationStatus.COMMITTED: "committed_at",
        }.get(status)
        fields: dict[str, Any] = {"status": status.value}
        if stamp:
            fields[stamp] = at
        orm.Reservation.objects.filter(id__in=reservation_ids).update(**fields)

    def reservations_for_group(
        self, group_id: UUID, statuses: tuple[ReservationStatus, ...] | None = None
    ) -> list[Reservation]:
        qs = orm.Reservation.objects.filter(group_id=group_id)
        if statuses:
            qs = qs.filter(status__in=[s.value for s in statuses])
        return [_reservation(row) for row in qs.order_by("created_at", "id")]

    def attach_item(self, reservation_id: UUID, item_id: UUID) -> None:
        orm.Reservation.objects.filter(id=reservation_id).update(item_id=item_id)

    def count_active_by_category(self) -> dict[str, int]:
        rows = (
            orm.Reservation.objects.filter(status=ReservationStatus.ACTIVE.value)
            .values("category")
            .annotate(total=Sum("quantity"))
        )
        return {row["category"]: row["total"] for row in rows}


class DjangoSequenceStore(_DjangoStore, SequenceStore):
    """Counter row advanced under ``SELECT ... FOR UPDATE``."""

    def advance(self, name: str, count: int, start: int) -> int:
        orm.SequenceCounter.objects.get_or_create(name=name, defaults={"current": start})
        counter = orm.SequenceCounter.objects.select_for_update().get(name=name)
        first = counter.current
        orm.SequenceCounter.objects.filter(pk=counter.pk).update(current=F("current") + count)
        return first

    def record_released(self, numbers: list[str], group_code: str, released_by: str) -> None:
        orm.ReleasedNumber.objects.bulk_create(
            [
                orm.ReleasedNumber(number=number, group_code=group_code, released_by=released_by)
                for number in numbers
            ]
        )


class DjangoGroupStore(_DjangoStore, GroupStore):
    """Groups, items, payment attempts and audit entries."""

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
        row = orm.Group.objects.create(
            code=code,
            contact_email=contact.email,
            contact_phone=contact.phone,
            contact_identification=contact.identification,
            item_count=item_count,
            payment_method=payment_method.value,
            payment_status=payment_status.value,
            reserved_until=reserved_until,
            payment_reference=details.reference,
            payment_proof_url=details.proof_url,
            bank_id=details.bank_id,
            work_order=work_order.to_payload() if work_order else None,
        )
        return _group(row)

    def create_items(self, group_id: UUID, specs: list[ItemSpec], status: PaymentStatus) -> list[Item]:
        rows = orm.Item.objects.bulk_create(
            [
                orm.Item(
                    group_id=group_id,
                    position=position,
                    full_name=spec.full_name,
                    identification=spec.identification,
                    birth_date=spec.birth_date,
                    gender=spec.gender,
                    size=spec.size,
                    zone=spec.zone,
                    email=spec.email,
                    phone=spec.phone,
                    category=spec.category.key,
                    payment_status=status.value,
                )
                for position, spec in enumerate(specs, start=1)
            ]
        )
        return [_item(row) for row in rows]

    def get_group(self, group_id: UUID) -> Group | None:
        row = orm.Group.objects.filter(id=group_id).prefetch_related("items").first()
        return _group(row, list(row.items.all())) if row else None

    def get_group_by_code(self, code: str) -> Group | None:
        row = orm.Group.objects.filter(code=code).prefetch_related("items").first()
        return _group(row, list(row.items.all())) if row else None

    def lock_group(self, group_id: UUID) -> Group | None:
        row = orm.Group.objects.select_for_update().filter(id=group_id).first()
        return _group(row, list(row.items.all())) if row else None

    def transition(
        self,
        group_id: UUID,
        from_statuses: tuple[PaymentStatus, ...],
        to_status: PaymentStatus,
        **fields: Any,
    ) -> bool:
        updated = orm.Group.objects.filter(
            id=group_id,
            payment_status__in=[s.value for s in from_statuses],
        ).update(payment_status=to_status.value, **fields)
        return updated == 1

    def set_item_status(self, group_id: UUID, status: PaymentStatus, at: datetime | None) -> None:
        fields: dict[str, Any] = {"payment_status": status.value}
        if status is PaymentStatus.CONFIRMED:
            fields["confirmed_at"] = at
        orm.Item.objects.filter(group_id=group_id).update(**fields)

    def assign_numbers(self, assignments: list[tuple[UUID, str]]) -> None:
        for item_id, number in assignments:
            orm.Item.objects.filter(id=item_id, number__isnull=True).update(number=number)

    def clear_work_order(self, group_id: UUID) -> None:
        orm.Group.objects.filter(id=group_id).update(work_order=None)

    def find_expired(self, now: datetime) -> list[Group]:
        in_flight = orm.PaymentTransaction.objects.filter(
            group_id=OuterRef("pk"),
            status=TransactionStatus.PENDING.value,
            channel=PaymentChannel.GATEWAY_P2C.value,
        )
        rows = (
            orm.Group.objects.filter(
                payment_status=PaymentStatus.PENDING.value,
                reserved_until__lt=now,
            )
            .exclude(Exists(in_flight))
            .order_by("reserved_until")
        )
        return [_group(row) for row in rows]

    def delete_group(self, group_id: UUID) -> None:
        orm.Group.objects.filter(id=group_id).delete()

    def create_transaction(self, group_id: UUID, **fields: Any) -> PaymentTransaction:
        row = orm.PaymentTransaction.objects.create(group_id=group_id, **_enum_values(fields))
        return _transaction(row)

    def update_transaction(self, transaction_id: UUID, **fields: Any) -> PaymentTransaction:
        orm.PaymentTransaction.objects.filter(id=transaction_id).update(**_enum_values(fields))
        return _transaction(orm.PaymentTransaction.objects.get(id=transaction_id))

    def get_transaction_by_control(self, control: str) -> PaymentTransaction | None:
        row = orm.PaymentTransaction.objects.filter(control=control).first()
        return _transaction(row) if row else None

    def list_transactions(self, group_id: UUID) -> list[PaymentTransaction]:
        return [_transaction(row) for row in orm.PaymentTransaction.objects.filter(group_id=group_id)]

    def has_pending_transaction(self, group_id: UUID) -> bool:
        return orm.PaymentTransaction.objects.filter(
            group_id=group_id,
            status=TransactionStatus.PENDING.value,
            channel=PaymentChannel.GATEWAY_P2C.value,
        ).exists()

    def audit(self, action: str, group: Group, performed_by: str | None, details: dict[str, Any]) -> None:
        orm.AuditEntry.objects.create(
            action=action,
            group_id=group.id,
            group_code=group.code,
            performed_by=performed_by or "",
            details=details,
        )


def _enum_values(fields: dict[str, Any]) -> dict[str, Any]:
    return {key: getattr(value, "value", value) for key, value in fields.items()}
