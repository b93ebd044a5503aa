from django.contrib import admin

from reservations.models import (
    AuditEntry,
    Group,
    InventoryUnit,
    Item,
    PaymentTransaction,
    ReleasedNumber,
    Reservation,
    SequenceCounter,
)


class ItemInline(admin.TabularInline):
    model = Item
    extra = 0
    fields = ["position", "full_name", "identification", "category", "payment_status", "number"]
    readonly_fields = ["number"]


class ReservationInline(admin.TabularInline):
    model = Reservation
    extra = 0
    fields = ["category", "quantity", "status", "item", "released_at", "committed_at"]
    readonly_fields = fields


class PaymentTransactionInline(admin.TabularInline):
    model = PaymentTransaction
    extra = 0
    fields = ["payment_method", "amount", "currency", "status", "control", "response_code", "created_at"]
    readonly_fields = fields


@admin.register(Group)
class GroupAdmin(admin.ModelAdmin):
    list_display = ["code", "contact_email", "item_count", "payment_method", "payment_status", "reserved_until", "created_at"]
    list_filter = ["payment_status", "payment_method"]
    search_fields = ["code", "contact_email", "contact_identification"]
    readonly_fields = ["code", "work_order", "confirmed_by", "confirmed_at", "rejected_at"]
    inlines = [ItemInline, ReservationInline, PaymentTransactionInline]


@admin.register(Item)
class ItemAdmin(admin.ModelAdmin):
    list_display = ["full_name", "identification", "category", "number", "payment_status"]
    list_filter = ["payment_status", "category"]
    search_fields = ["full_name", "identification", "number", "group__code"]


@admin.register(InventoryUnit)
class InventoryUnitAdmin(admin.ModelAdmin):
    list_display = ["category", "capacity", "reserved", "sold", "updated_at"]
    search_fields = ["category"]


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(admin.ModelAdmin):
    list_display = ["group", "payment_method", "amount", "currency", "status", "control", "response_code", "created_at"]
    list_filter = ["status", "channel", "payment_method"]
    search_fields = ["control", "reference", "invoice", "group__code"]


@admin.register(AuditEntry)
class AuditEntryAdmin(admin.ModelAdmin):
    list_display = ["action", "group_code", "performed_by", "created_at"]
    list_filter = ["action"]
    search_fields = ["group_code", "performed_by"]


admin.site.register(SequenceCounter)
admin.site.register(ReleasedNumber)
