from reservations.domain.models import (
    Availability,
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
from reservations.domain.value_objects import Category, GroupId, Money

__all__ = [
    "Availability",
    "Contact",
    "Group",
    "InventoryUnit",
    "Item",
    "ItemSpec",
    "PaymentChannel",
    "PaymentDetails",
    "PaymentMethod",
    "PaymentStatus",
    "PaymentTransaction",
    "PendingWorkOrder",
    "Reservation",
    "ReservationStatus",
    "TransactionStatus",
    "Category",
    "GroupId",
    "Money",
]
