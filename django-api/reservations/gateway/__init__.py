from reservations.gateway.client import (
    GatewayClient,
    GatewaySession,
    MobilePayer,
    PurchaseResult,
    StatusResult,
)

__all__ = [
    "GatewayClient",
    "GatewaySession",
    "MobilePayer",
    "PurchaseResult",
    "StatusResult",
]
