"""Serializers for request parsing and for rendering domain models.

Input serializers check shape only. Business rules (item limits, method
prerequisites, inventory) are enforced by the services.
"""

from django.utils import timezone
from rest_framework import serializers

from reservations.domain import Contact, ItemSpec, PaymentDetails, PaymentMethod
from reservations.gateway import MobilePayer


class ContactSerializer(serializers.Serializer):
    email = serializers.CharField(max_length=254)
    phone = serializers.CharField(max_length=32)
    identification = serializers.CharField(max_length=32, required=False, allow_blank=True, allow_null=True)

    def to_domain(self, data) -> Contact:
        return Contact(
            email=data["email"],
            phone=data["phone"],
            identification=data.get("identification") or None,
        )


class ItemInputSerializer(serializers.Serializer):
    full_name = serializers.CharField(max_length=255)
    identification = serializers.CharField(max_length=32)
    gender = serializers.CharField(max_length=1, required=False, allow_blank=True, default="")
    size = serializers.CharField(max_length=4, required=False, allow_blank=True, default="")
    zone = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")
    birth_date = serializers.DateField(required=False, allow_null=True, default=None)
    email = serializers.CharField(max_length=254, required=False, allow_blank=True, default="")
    phone = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")


class RegisterGroupSerializer(serializers.Serializer):
    """Request body for POST /api/groups"""

    contact = ContactSerializer()
    items = ItemInputSerializer(many=True, allow_empty=False)
    payment_method = serializers.ChoiceField(choices=[m.value for m in PaymentMethod])
    payment_reference = serializers.CharField(max_length=128, required=False, allow_blank=True, allow_null=True)
    payment_proof_url = serializers.URLField(max_length=500, required=False, allow_blank=True, allow_null=True)
    bank_id = serializers.CharField(max_length=32, required=False, allow_blank=True, allow_null=True)
    performed_by = serializers.CharField(max_length=128, required=False, allow_blank=True)

    def to_domain(self) -> tuple[Contact, list[ItemSpec], PaymentMethod, PaymentDetails]:
        data = self.validated_data
        contact = ContactSerializer().to_domain(data["contact"])
        items = [ItemSpec(**item) for item in data["items"]]
        details = PaymentDetails(
            reference=data.get("payment_reference") or None,
            proof_url=data.get("payment_proof_url") or None,
            bank_id=data.get("bank_id") or None,
        )
        return contact, items, PaymentMethod(data["payment_method"]), details


class GatewayPaymentSerializer(serializers.Serializer):
    """Request body for POST /api/groups/{group_id}/gateway-payment"""

    phone = serializers.CharField(max_length=32)
    bank_code = serializers.CharField(max_length=4)
    national_id = serializers.CharField(max_length=16)

    def to_domain(self) -> MobilePayer:
        return MobilePayer(**self.validated_data)


class GatewayNotificationSerializer(serializers.Serializer):
    """Request body for POST /api/gateway/webhook"""

    control = serializers.CharField(max_length=64)
    estado = serializers.CharField(max_length=2)
    codigo = serializers.CharField(max_length=8, required=False, allow_blank=True, default="")
    descripcion = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    referencia = serializers.CharField(max_length=128, required=False, allow_blank=True, default="")
    authid = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")

    def to_kwargs(self) -> dict:
        data = self.validated_data
        return {
            "control": data["control"],
            "state": data["estado"].strip().upper(),
            "code": data["codigo"],
            "description": data["descripcion"],
            "reference": data["referencia"],
            "authorization_id": data["authid"],
        }


class ActorSerializer(serializers.Serializer):
    performed_by = serializers.CharField(max_length=128)


class RejectSerializer(ActorSerializer):
    reason = serializers.CharField(max_length=500)


class DeleteSerializer(ActorSerializer):
    force = serializers.BooleanField(required=False, default=False)


class AvailabilityQuerySerializer(serializers.Serializer):
    category = serializers.CharField(max_length=64)
    quantity = serializers.IntegerField(min_value=1, required=False, default=1)


class CapacitySerializer(serializers.Serializer):
    category = serializers.CharField(max_length=64)
    capacity = serializers.IntegerField(min_value=0)


class ItemSerializer(serializers.Serializer):
    """Serializer for Item domain model."""

    id = serializers.UUIDField()
    position = serializers.IntegerField()
    full_name = serializers.CharField()
    identification = serializers.CharField()
    category = serializers.CharField()
    gender = serializers.CharField()
    size = serializers.CharField()
    zone = serializers.CharField()
    birth_date = serializers.DateField()
    payment_status = serializers.CharField(source="payment_status.value")
    number = serializers.CharField(allow_null=True)


class GroupSerializer(serializers.Serializer):
    """Serializer for Group domain model."""

    id = serializers.UUIDField()
    code = serializers.CharField()
    email = serializers.CharField(source="contact.email")
    phone = serializers.CharField(source="contact.phone")
    item_count = serializers.IntegerField()
    payment_method = serializers.CharField(source="payment_method.value")
    payment_status = serializers.SerializerMethodField()
    reserved_until = serializers.DateTimeField()
    created_at = serializers.DateTimeField()
    confirmed_by = serializers.CharField(allow_null=True)
    confirmed_at = serializers.DateTimeField(allow_null=True)
    rejection_reason = serializers.CharField()
    items_pending = serializers.BooleanField(source="has_deferred_items")
    items = ItemSerializer(many=True)

    def get_payment_status(self, group) -> str:
        return group.effective_status(timezone.now()).value


class TransactionSerializer(serializers.Serializer):
    """Serializer for PaymentTransaction domain model."""

    id = serializers.UUIDField()
    channel = serializers.CharField(source="channel.value")
    payment_method = serializers.CharField(source="payment_method.value")
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    currency = serializers.CharField()
    status = serializers.CharField(source="status.value")
    reference = serializers.CharField()
    control = serializers.CharField()
    invoice = serializers.CharField()
    response_code = serializers.CharField()
    description = serializers.CharField()
    authorization_id = serializers.CharField()
    voucher = serializers.CharField()
    created_at = serializers.DateTimeField()


class InventoryUnitSerializer(serializers.Serializer):
    """Serializer for InventoryUnit domain model."""

    category = serializers.CharField()
    capacity = serializers.IntegerField()
    reserved = serializers.IntegerField()
    sold = serializers.IntegerField()
    available = serializers.IntegerField()


class AvailabilitySerializer(serializers.Serializer):
    category = serializers.CharField()
    requested = serializers.IntegerField()
    available = serializers.IntegerField()
    is_available = serializers.BooleanField()
