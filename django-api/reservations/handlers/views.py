"""HTTP handlers (views) - handle HTTP concerns only.

Handlers:
- Parse requests and validate input format
- Call the payment orchestrator for business logic
- Map domain errors to HTTP responses
- Never contain business logic
- Never expose internal error details
"""

import structlog
from rest_framework import status
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from reservations.conf import ReservationSettings
from reservations.domain.errors import DomainError, ErrorCode
from reservations.gateway import GatewayClient, signatures
from reservations.handlers.serializers import (
    ActorSerializer,
    AvailabilityQuerySerializer,
    AvailabilitySerializer,
    CapacitySerializer,
    DeleteSerializer,
    GatewayNotificationSerializer,
    GatewayPaymentSerializer,
    GroupSerializer,
    InventoryUnitSerializer,
    RegisterGroupSerializer,
    RejectSerializer,
    TransactionSerializer,
)
from reservations.services.payment_orchestrator import GatewayOutcome, PaymentOrchestrator
from reservations.wiring import build_orchestrator

logger = structlog.get_logger(__name__)

ERROR_STATUS = {
    ErrorCode.VALIDATION_FAILED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.GROUP_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.TRANSACTION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.INSUFFICIENT_INVENTORY: status.HTTP_409_CONFLICT,
    ErrorCode.ALREADY_PROCESSED: status.HTTP_409_CONFLICT,
    ErrorCode.PERSISTENCE_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.GATEWAY_DECLINE: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.GATEWAY_TRANSPORT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorCode.GATEWAY_PROTOCOL: status.HTTP_502_BAD_GATEWAY,
}

GATEWAY_STATUS = {
    GatewayOutcome.APPROVED: status.HTTP_200_OK,
    GatewayOutcome.DECLINED: status.HTTP_402_PAYMENT_REQUIRED,
    GatewayOutcome.UNKNOWN: status.HTTP_202_ACCEPTED,
}


def error_response(exc: DomainError) -> Response:
    body = {"error": exc.code.value, "message": exc.message}
    field = getattr(exc, "field", None)
    if field:
        body["field"] = field
    if exc.code is ErrorCode.INSUFFICIENT_INVENTORY:
        body.update(category=exc.category, requested=exc.requested, available=exc.available)
    return Response(body, status=ERROR_STATUS[exc.code])


class ReservationsView(APIView):
    """Base view: builds the orchestrator and maps domain errors."""

    def orchestrator(self) -> PaymentOrchestrator:
        return build_orchestrator()

    def handle_exception(self, exc):
        if isinstance(exc, DomainError):
            logger.info("request_failed", path=self.request.path, error=exc.code.value)
            return error_response(exc)
        return super().handle_exception(exc)


def _payment_body(result) -> dict:
    return {
        "outcome": result.outcome.value,
        "message": result.message,
        "group": GroupSerializer(result.group).data,
        "transaction": TransactionSerializer(result.transaction).data,
        "numbers": result.confirmation.numbers if result.confirmation else [],
    }


class GroupListView(ReservationsView):
    """Handler for POST /api/groups"""

    def post(self, request: Request) -> Response:
        serializer = RegisterGroupSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        contact, items, method, details = serializer.to_domain()
        result = self.orchestrator().register(
            contact,
            items,
            method,
            details,
            performed_by=serializer.validated_data.get("performed_by") or None,
        )
        body = {
            "group": GroupSerializer(result.group).data,
            "amount": str(result.amount),
            "currency": result.amount.currency,
        }
        if result.confirmation:
            body["numbers"] = result.confirmation.numbers
            body["warnings"] = result.confirmation.warnings
        return Response(body, status=status.HTTP_201_CREATED)


class GroupDetailView(ReservationsView):
    """Handler for GET/DELETE /api/groups/{group_id}"""

    def get(self, request: Request, group_id: str) -> Response:
        group = self.orchestrator().get_group(group_id)
        return Response(GroupSerializer(group).data)

    def delete(self, request: Request, group_id: str) -> Response:
        serializer = DeleteSerializer(data=request.data or request.query_params)
        serializer.is_valid(raise_exception=True)
        result = self.orchestrator().delete_group(
            group_id,
            serializer.validated_data["performed_by"],
            force=serializer.validated_data["force"],
        )
        return Response(
            {
                "group_code": result.group_code,
                "released_units": result.released_units,
                "restocked_units": result.restocked_units,
                "released_numbers": list(result.released_numbers),
            }
        )


class GatewayPaymentView(ReservationsView):
    """Handler for POST /api/groups/{group_id}/gateway-payment"""

    def post(self, request: Request, group_id: str) -> Response:
        serializer = GatewayPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = self.orchestrator().pay_with_gateway(group_id, serializer.to_domain())
        return Response(_payment_body(result), status=GATEWAY_STATUS[result.outcome])


class ReconcileView(ReservationsView):
    """Handler for POST /api/gateway/transactions/{control}/reconcile"""

    def post(self, request: Request, control: str) -> Response:
        performed_by = request.data.get("performed_by")
        result = self.orchestrator().reconcile(control, performed_by=performed_by)
        return Response(_payment_body(result))


class GatewayWebhookView(ReservationsView):
    """Handler for POST /api/gateway/webhook

    Status notifications pushed by the gateway. Only signed bodies are
    applied; the webhook is off while no secret is configured.
    """

    def webhook_secret(self) -> str:
        gateway = ReservationSettings.from_django().gateway
        return gateway.webhook_secret if gateway else ""

    def post(self, request: Request) -> Response:
        body = request.body
        secret = self.webhook_secret()
        if not secret:
            logger.warning("gateway_webhook_disabled")
            return Response(
                {"error": "FORBIDDEN", "message": "Webhook is not enabled"},
                status=status.HTTP_403_FORBIDDEN,
            )
        if not signatures.verify(secret, body, request.META.get(signatures.SIGNATURE_HEADER)):
            logger.warning("gateway_webhook_bad_signature", remote_addr=request.META.get("REMOTE_ADDR"))
            return Response(
                {"error": "INVALID_SIGNATURE", "message": "Invalid signature"},
                status=status.HTTP_401_UNAUTHORIZED,
            )

        serializer = GatewayNotificationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = self.orchestrator().apply_gateway_notification(**serializer.to_kwargs())
        return Response({"received": True, **_payment_body(result)})


class ConfirmView(ReservationsView):
    """Handler for POST /api/groups/{group_id}/confirm"""

    def post(self, request: Request, group_id: str) -> Response:
        serializer = ActorSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = self.orchestrator().confirm(group_id, serializer.validated_data["performed_by"])
        return Response(
            {
                "group": GroupSerializer(result.group).data,
                "numbers": result.numbers,
                "notification_sent": result.notification_sent,
                "warnings": result.warnings,
            }
        )


class RejectView(ReservationsView):
    """Handler for POST /api/groups/{group_id}/reject"""

    def post(self, request: Request, group_id: str) -> Response:
        serializer = RejectSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        group = self.orchestrator().reject(
            group_id,
            serializer.validated_data["reason"],
            rejected_by=serializer.validated_data["performed_by"],
        )
        return Response({"group": GroupSerializer(group).data})


class ResendNotificationView(ReservationsView):
    """Handler for POST /api/groups/{group_id}/resend-notification"""

    def post(self, request: Request, group_id: str) -> Response:
        serializer = ActorSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        sent = self.orchestrator().resend_notification(group_id, serializer.validated_data["performed_by"])
        return Response({"notification_sent": sent})


class TransactionListView(ReservationsView):
    """Handler for GET /api/groups/{group_id}/transactions"""

    def get(self, request: Request, group_id: str) -> Response:
        transactions = self.orchestrator().transactions(group_id)
        return Response(TransactionSerializer(transactions, many=True).data)


class AvailabilityView(ReservationsView):
    """Handler for GET /api/availability?category=M:F&quantity=2"""

    def get(self, request: Request) -> Response:
        serializer = AvailabilityQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        availability = self.orchestrator().check_availability(
            serializer.validated_data["category"],
            serializer.validated_data["quantity"],
        )
        return Response(AvailabilitySerializer(availability).data)


class InventoryView(ReservationsView):
    """Handler for GET/PUT /api/inventory"""

    def get(self, request: Request) -> Response:
        return Response(InventoryUnitSerializer(self.orchestrator().inventory(), many=True).data)

    def put(self, request: Request) -> Response:
        serializer = CapacitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        unit = self.orchestrator().set_capacity(
            serializer.validated_data["category"],
            serializer.validated_data["capacity"],
        )
        return Response(InventoryUnitSerializer(unit).data)


class BankListView(APIView):
    """Handler for GET /api/gateway/banks"""

    def get(self, request: Request) -> Response:
        return Response([{"code": code, "name": name} for code, name in GatewayClient.supported_banks()])
