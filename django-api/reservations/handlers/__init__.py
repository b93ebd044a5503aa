from reservations.handlers.views import (
    AvailabilityView,
    BankListView,
    ConfirmView,
    GatewayPaymentView,
    GatewayWebhookView,
    GroupDetailView,
    GroupListView,
    InventoryView,
    ReconcileView,
    RejectView,
    ResendNotificationView,
    TransactionListView,
)

__all__ = [
    "AvailabilityView",
    "BankListView",
    "ConfirmView",
    "GatewayPaymentView",
    "GatewayWebhookView",
    "GroupDetailView",
    "GroupListView",
    "InventoryView",
    "ReconcileView",
    "RejectView",
    "ResendNotificationView",
    "TransactionListView",
]
