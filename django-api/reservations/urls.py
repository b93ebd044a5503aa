from django.urls import path

from reservations.handlers import (
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

urlpatterns = [
    path("groups", GroupListView.as_view(), name="group-list"),
    path("groups/<str:group_id>", GroupDetailView.as_view(), name="group-detail"),
    path("groups/<str:group_id>/gateway-payment", GatewayPaymentView.as_view(), name="group-gateway-payment"),
    path("groups/<str:group_id>/confirm", ConfirmView.as_view(), name="group-confirm"),
    path("groups/<str:group_id>/reject", RejectView.as_view(), name="group-reject"),
    path(
        "groups/<str:group_id>/resend-notification",
        ResendNotificationView.as_view(),
        name="group-resend-notification",
    ),
    path("groups/<str:group_id>/transactions", TransactionListView.as_view(), name="group-transactions"),
    path("gateway/transactions/<str:control>/reconcile", ReconcileView.as_view(), name="gateway-reconcile"),
    path("gateway/webhook", GatewayWebhookView.as_view(), name="gateway-webhook"),
    path("gateway/banks", BankListView.as_view(), name="gateway-banks"),
    path("availability", AvailabilityView.as_view(), name="availability"),
    path("inventory", InventoryView.as_view(), name="inventory"),
]
