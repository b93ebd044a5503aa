"""Django ORM models (persistence layer).

These models handle database concerns. Domain logic lives in domain/models.py.
"""

import uuid

from django.db import models
from django.db.models import F, Q

from reservations.domain.models import (
    PaymentChannel,
    PaymentMethod,
    PaymentStatus,
    ReservationStatus,
    TransactionStatus,
)


def _choices(enum_cls) -> list[tuple[str, str]]:
    return [(member.value, member.name.replace("_", " ").title()) for member in enum_cls]


class InventoryUnit(models.Model):
    """Capacity ledger row for one category."""

    category = models.CharField(max_length=64, unique=True)
    capacity = models.PositiveIntegerField()
    reserved = models.PositiveIntegerField(default=0)
    sold = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["category"]
        constraints = [
            models.CheckConstraint(
                condition=Q(capacity__gte=F("reserved") + F("sold")),
                name="inventory_within_capacity",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.category} ({self.capacity - self.reserved - self.sold} available)"


class Group(models.Model):
    """Persistence model for purchase groups."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=32, unique=True)
    contact_email = models.EmailField()
    contact_phone = models.CharField(max_length=32)
    contact_identification = models.CharField(max_length=32, blank=True, null=True)
    item_count = models.PositiveSmallIntegerField()
    payment_method = models.CharField(max_length=32, choices=_choices(PaymentMethod))
    payment_status = models.CharField(
        max_length=16,
        choices=_choices(PaymentStatus),
        default=PaymentStatus.PENDING.value,
    )
    payment_reference = models.CharField(max_length=128, blank=True, null=True)
    payment_proof_url = models.URLField(max_length=500, blank=True, null=True)
    bank_id = models.CharField(max_length=32, blank=True, null=True)
    reserved_until = models.DateTimeField()
    work_order = models.JSONField(blank=True, null=True)
    confirmed_by = models.CharField(max_length=128, blank=True, null=True)
    confirmed_at = models.DateTimeField(blank=True, null=True)
    rejection_reason = models.TextField(blank=True, default="")
    rejected_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["payment_status", "reserved_until"]),
            models.Index(fields=["contact_email"]),
        ]

    def __str__(self) -> str:
        return self.code


class Item(models.Model):
    """Persistence model for tickets and race slots."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    group = models.ForeignKey(Group, on_delete=models.CASCADE, related_name="items")
    position = models.PositiveSmallIntegerField()
    full_name = models.CharField(max_length=255)
    identification = models.CharField(max_length=32)
    birth_date = models.DateField(blank=True, null=True)
    gender = models.CharField(max_length=1, blank=True, default="")
    size = models.CharField(max_length=4, blank=True, default="")
    zone = models.CharField(max_length=64, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    phone = models.CharField(max_length=32, blank=True, default="")
    category = models.CharField(max_length=64)
    payment_status = models.CharField(
        max_length=16,
        choices=_choices(PaymentStatus),
        default=PaymentStatus.PENDING.value,
    )
    number = models.CharField(max_length=16, unique=True, blank=True, null=True)
    confirmed_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["group", "position"]
        constraints = [
            models.UniqueConstraint(fields=["group", "position"], name="unique_item_position"),
        ]

    def __str__(self) -> str:
        return f"{self.full_name} ({self.number or 'unassigned'})"


class Reservation(models.Model):
    """Hold on one inventory unit, owned by an item or (in flight) a group."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    group = models.ForeignKey(Group, on_delete=models.CASCADE, related_name="reservations")
    item = models.ForeignKey(
        Item,
        on_delete=models.CASCADE,
        related_name="reservations",
        blank=True,
        null=True,
    )
    category = models.CharField(max_length=64)
    quantity = models.PositiveIntegerField(default=1)
    status = models.CharField(
        max_length=16,
        choices=_choices(ReservationStatus),
        default=ReservationStatus.ACTIVE.value,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    released_at = models.DateTimeField(blank=True, null=True)
    committed_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["group", "status"]),
            models.Index(fields=["category", "status"]),
        ]

    def __str__(self) -> str:
        return f"{self.category} x{self.quantity} [{self.status}]"


class SequenceCounter(models.Model):
    """Single shared counter for sequence numbers."""

    name = models.CharField(max_length=32, unique=True)
    current = models.PositiveIntegerField()
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.name}={self.current}"


class ReleasedNumber(models.Model):
    """Audit of a sequence number freed by group deletion. Never re-issued."""

    number = models.CharField(max_length=16)
    group_code = models.CharField(max_length=32)
    released_by = models.CharField(max_length=128, blank=True, default="")
    released_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-released_at"]

    def __str__(self) -> str:
        return self.number


class PaymentTransaction(models.Model):
    """One payment attempt for a group."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    group = models.ForeignKey(Group, on_delete=models.CASCADE, related_name="transactions")
    channel = models.CharField(max_length=32, choices=_choices(PaymentChannel))
    payment_method = models.CharField(max_length=32, choices=_choices(PaymentMethod))
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    currency = models.CharField(max_length=3, default="USD")
    status = models.CharField(
        max_length=16,
        choices=_choices(TransactionStatus),
        default=TransactionStatus.PENDING.value,
    )
    reference = models.CharField(max_length=128, blank=True, default="")
    control = models.CharField(max_length=64, blank=True, default="", db_index=True)
    invoice = models.CharField(max_length=64, blank=True, default="")
    response_code = models.CharField(max_length=8, blank=True, default="")
    description = models.CharField(max_length=255, blank=True, default="")
    authorization_id = models.CharField(max_length=64, blank=True, default="")
    voucher = models.TextField(blank=True, default="")
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["group", "status"]),
        ]

    def __str__(self) -> str:
        return f"{self.payment_method} {self.amount} [{self.status}]"


class AuditEntry(models.Model):
    """Append-only audit log of group lifecycle actions."""

    action = models.CharField(max_length=64)
    group_id = models.UUIDField(db_index=True)
    group_code = models.CharField(max_length=32)
    performed_by = models.CharField(max_length=128, blank=True, default="")
    details = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.action} {self.group_code}"
