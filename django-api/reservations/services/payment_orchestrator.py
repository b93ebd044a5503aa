"""Payment orchestrator - entry point for every registration and payment.

Each payment method maps to a channel strategy:

- manual proof (zelle, transfers, paypal): group waits for an administrator
- store immediate (card, cash, gift at the counter): confirmed on the spot
- gateway P2C (mobile payment): confirmed when the gateway approves

Gateway calls never run inside a database transaction. Holds are placed
before the call and settled after it in separate short transactions.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable
from uuid import UUID

import structlog
from django.utils import timezone

from reservations.conf import ReservationSettings
from reservations.domain import (
    Availability,
    Contact,
    Group,
    InventoryUnit,
    ItemSpec,
    Money,
    PaymentChannel,
    PaymentDetails,
    PaymentMethod,
    PaymentStatus,
    PaymentTransaction,
    TransactionStatus,
)
from reservations.domain.errors import (
    AlreadyProcessedError,
    DomainError,
    GatewayDeclineError,
    GroupNotFoundError,
    TransactionNotFoundError,
    ValidationError,
)
from reservations.gateway import GatewayClient, MobilePayer, StatusResult
from reservations.gateway import validators
from reservations.services.confirmation_engine import ConfirmationEngine, ConfirmationResult
from reservations.services.inventory_pool import InventoryPool
from reservations.services.notifications import ExchangeRateProvider
from reservations.services.reservation_manager import DeletionResult, ReservationManager
from reservations.stores.interfaces import GroupStore

logger = structlog.get_logger(__name__)

GATEWAY_ACTOR = "gateway"


class GatewayOutcome(str, Enum):
    APPROVED = "approved"
    DECLINED = "declined"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RegistrationResult:
    group: Group
    amount: Money
    transaction: PaymentTransaction | None = None
    confirmation: ConfirmationResult | None = None


@dataclass(frozen=True)
class GatewayPaymentResult:
    outcome: GatewayOutcome
    group: Group
    transaction: PaymentTransaction
    confirmation: ConfirmationResult | None = None
    message: str = ""


class PaymentStrategy(ABC):
    """What happens to a freshly registered group for one channel."""

    channel: PaymentChannel

    @abstractmethod
    def on_registered(
        self, group: Group, amount: Money, performed_by: str | None
    ) -> tuple[PaymentTransaction | None, ConfirmationResult | None]:
        ...


class ManualProofStrategy(PaymentStrategy):
    """Records the buyer's proof. An administrator confirms or rejects later."""

    channel = PaymentChannel.MANUAL_PROOF

    def __init__(self, groups: GroupStore) -> None:
        self._groups = groups

    def on_registered(self, group, amount, performed_by):
        transaction = self._groups.create_transaction(
            group.id,
            channel=self.channel,
            payment_method=group.payment_method,
            amount=amount.amount,
            currency=amount.currency,
            status=TransactionStatus.PENDING,
            reference=group.details.reference or "",
            metadata={
                "proof_url": group.details.proof_url,
                "bank_id": group.details.bank_id,
            },
        )
        return transaction, None


class StoreImmediateStrategy(PaymentStrategy):
    """Payment taken at the counter, so the group is confirmed right away."""

    channel = PaymentChannel.STORE_IMMEDIATE

    def __init__(self, groups: GroupStore, engine: ConfirmationEngine) -> None:
        self._groups = groups
        self._engine = engine

    def on_registered(self, group, amount, performed_by):
        transaction = self._groups.create_transaction(
            group.id,
            channel=self.channel,
            payment_method=group.payment_method,
            amount=amount.amount,
            currency=amount.currency,
            status=TransactionStatus.APPROVED,
            reference=group.details.reference or "",
            metadata={"registered_by": performed_by},
        )
        confirmation = self._engine.confirm(group.id, performed_by or "store", payment=transaction)
        return transaction, confirmation


class GatewayP2CStrategy(PaymentStrategy):
    """Nothing to do at registration. The buyer pays through ``pay_with_gateway``."""

    channel = PaymentChannel.GATEWAY_P2C

    def on_registered(self, group, amount, performed_by):
        return None, None


class PaymentOrchestrator:
    """Facade over reservations, confirmations and the payment gateway."""

    def __init__(
        self,
        manager: ReservationManager,
        engine: ConfirmationEngine,
        pool: InventoryPool,
        groups: GroupStore,
        gateway: GatewayClient | None,
        rates: ExchangeRateProvider,
        settings: ReservationSettings,
        clock: Callable[[], datetime] = timezone.now,
    ) -> None:
        self._manager = manager
        self._engine = engine
        self._pool = pool
        self._groups = groups
        self._gateway = gateway
        self._rates = rates
        self._settings = settings
        self._clock = clock
        self._strategies: dict[PaymentChannel, PaymentStrategy] = {
            PaymentChannel.MANUAL_PROOF: ManualProofStrategy(groups),
            PaymentChannel.STORE_IMMEDIATE: StoreImmediateStrategy(groups, engine),
            PaymentChannel.GATEWAY_P2C: GatewayP2CStrategy(),
        }

    def register(
        self,
        contact: Contact,
        items: list[ItemSpec],
        payment_method: PaymentMethod,
        details: PaymentDetails = PaymentDetails(),
        performed_by: str | None = None,
    ) -> RegistrationResult:
        """Create a group and apply its channel's registration step."""
        if payment_method.channel is PaymentChannel.GATEWAY_P2C and self._gateway is None:
            raise ValidationError("Mobile payments are not available", field="payment_method")
        group = self._manager.create_group(contact, items, payment_method, details, created_by=performed_by)
        amount = self.price(group)
        strategy = self._strategies[payment_method.channel]
        transaction, confirmation = strategy.on_registered(group, amount, performed_by)
        if confirmation is not None:
            group = confirmation.group
        return RegistrationResult(group=group, amount=amount, transaction=transaction, confirmation=confirmation)

    def price(self, group: Group) -> Money:
        if group.payment_method is PaymentMethod.GIFT:
            return Money.of(0, self._settings.currency)
        return Money.of(self._settings.unit_price * group.item_count, self._settings.currency)

    def gateway_amount(self, group: Group) -> Money:
        """Group price converted to the gateway's local currency."""
        return Money.of(self.price(group).amount * self._rates.rate(), self._settings.gateway_currency)

    def pay_with_gateway(self, group_id: str | UUID, payer: MobilePayer) -> GatewayPaymentResult:
        """Run one gateway attempt for a deferred group.

        A decline leaves the group pending so the buyer can try again. An
        unknown outcome moves it to processing until ``reconcile`` settles it.

        Raises:
            ValidationError: If buyer data is malformed or the group is not a gateway group.
            AlreadyProcessedError: If the group is no longer payable.
            InsufficientInventoryError: If the items sold out since registration.
        """
        gateway = self._require_gateway()
        group = self._manager.get_group(group_id)
        if group.payment_method.channel is not PaymentChannel.GATEWAY_P2C:
            raise ValidationError(f"Group {group.code} is not paid through the gateway", field="payment_method")

        payer = payer.normalized()
        amount = self.gateway_amount(group)
        validators.format_amount(amount.amount)

        group, transaction = self._claim_attempt(group, payer, amount, gateway.new_invoice_number())
        try:
            session = gateway.pre_register()
        except Exception as exc:
            self._abandon(group, transaction, exc)
            raise
        transaction = self._groups.update_transaction(transaction.id, control=session.control)

        try:
            result = gateway.purchase(session, payer, amount.amount, transaction.invoice)
        except GatewayDeclineError as exc:
            return self._declined(group, transaction, exc)
        except DomainError as exc:
            return self._unknown(group, transaction, exc.code.value, exc.message)
        except Exception as exc:
            self._unknown(group, transaction, "UNEXPECTED", exc.__class__.__name__)
            raise

        transaction = self._groups.update_transaction(
            transaction.id,
            status=TransactionStatus.APPROVED,
            response_code=result.response_code,
            description=result.description,
            authorization_id=result.authorization_id,
            reference=result.reference,
            voucher=result.voucher,
        )
        confirmation = self._confirm_paid(group, transaction)
        return GatewayPaymentResult(
            outcome=GatewayOutcome.APPROVED,
            group=confirmation.group if confirmation else self._manager.get_group(group.id),
            transaction=transaction,
            confirmation=confirmation,
            message=result.description,
        )

    def reconcile(self, control: str, performed_by: str | None = None) -> GatewayPaymentResult:
        """Settle an attempt with an unknown outcome through a status query.

        Only a final gateway state settles the attempt. While the gateway
        still reports it in progress the outcome stays unknown. Settled
        attempts are returned as they are, so reconciling twice is safe.
        """
        transaction, group = self._open_attempt(control)
        if transaction.status is not TransactionStatus.PENDING:
            return self._settled(transaction, group)
        status = self._require_gateway().query_status(control)
        return self._apply_status(transaction, group, status, performed_by or GATEWAY_ACTOR, source="status_query")

    def apply_gateway_notification(
        self,
        control: str,
        state: str,
        code: str = "",
        description: str = "",
        reference: str = "",
        authorization_id: str = "",
    ) -> GatewayPaymentResult:
        """Apply a status pushed by the gateway for one of our control numbers.

        The caller has already verified the notification's signature.
        """
        transaction, group = self._open_attempt(control)
        if transaction.status is not TransactionStatus.PENDING:
            return self._settled(transaction, group)
        status = StatusResult(
            control=control,
            response_code=code,
            description=description,
            state=state,
            authorization_id=authorization_id,
            reference=reference,
        )
        return self._apply_status(transaction, group, status, GATEWAY_ACTOR, source="notification")

    def confirm(self, group_id: str | UUID, confirmed_by: str) -> ConfirmationResult:
        group = self._manager.get_group(group_id)
        payment = self._latest_transaction(group, TransactionStatus.PENDING)
        result = self._engine.confirm(group.id, confirmed_by, payment=payment)
        if payment is not None and payment.channel is PaymentChannel.MANUAL_PROOF:
            self._groups.update_transaction(payment.id, status=TransactionStatus.APPROVED)
        return result

    def reject(self, group_id: str | UUID, reason: str, rejected_by: str | None = None) -> Group:
        group = self._manager.get_group(group_id)
        payment = self._latest_transaction(group, TransactionStatus.PENDING)
        rejected = self._engine.reject(group.id, reason, rejected_by=rejected_by, payment=payment)
        if payment is not None and payment.channel is PaymentChannel.MANUAL_PROOF:
            self._groups.update_transaction(payment.id, status=TransactionStatus.REJECTED, description=reason)
        return rejected

    def resend_notification(self, group_id: str | UUID, requested_by: str | None = None) -> bool:
        group = self._manager.get_group(group_id)
        return self._engine.resend_notification(group.id, requested_by)

    def delete_group(self, group_id: str | UUID, performed_by: str, force: bool = False) -> DeletionResult:
        return self._manager.delete_group(group_id, performed_by, force=force)

    def get_group(self, group_id: str | UUID) -> Group:
        return self._manager.get_group(group_id)

    def get_group_by_code(self, code: str) -> Group:
        return self._manager.get_group_by_code(code)

    def transactions(self, group_id: str | UUID) -> list[PaymentTransaction]:
        group = self._manager.get_group(group_id)
        return self._groups.list_transactions(group.id)

    def check_availability(self, category: str, quantity: int = 1) -> Availability:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", field="quantity")
        return self._pool.check_availability(category, quantity)

    def inventory(self) -> list[InventoryUnit]:
        return self._pool.units()

    def set_capacity(self, category: str, capacity: int) -> InventoryUnit:
        return self._pool.set_capacity(category, capacity)

    def recalculate_inventory(self) -> dict[str, int]:
        return self._pool.recalculate_reserved()

    def sweep_expired(self, now: datetime | None = None) -> list[Group]:
        return self._manager.expire_stale(now)

    def _claim_attempt(
        self, group: Group, payer: MobilePayer, amount: Money, invoice: str
    ) -> tuple[Group, PaymentTransaction]:
        """Lock the group, place its holds and record the attempt before any network call.

        A concurrent attempt on the same group waits on the row lock and then
        finds the pending transaction.
        """
        with self._groups.atomic():
            locked = self._groups.lock_group(group.id)
            if locked is None:
                raise GroupNotFoundError(str(group.id))
            if locked.payment_status is not PaymentStatus.PENDING:
                raise AlreadyProcessedError(locked.code, locked.payment_status.value)
            if locked.is_expired(self._clock()):
                raise AlreadyProcessedError(locked.code, "expired")
            if self._groups.has_pending_transaction(locked.id):
                raise AlreadyProcessedError(locked.code, "being paid")
            self._manager.place_holds(locked)
            transaction = self._groups.create_transaction(
                locked.id,
                channel=PaymentChannel.GATEWAY_P2C,
                payment_method=PaymentMethod.MOBILE_P2C,
                amount=amount.amount,
                currency=amount.currency,
                status=TransactionStatus.PENDING,
                invoice=invoice,
                metadata={
                    "bank_code": payer.bank_code,
                    "phone": payer.phone,
                    "national_id": validators.mask_national_id(payer.national_id),
                },
            )
        logger.info("gateway_attempt_claimed", group_code=locked.code, transaction_id=str(transaction.id))
        return locked, transaction

    def _abandon(self, group: Group, transaction: PaymentTransaction, exc: Exception) -> None:
        """Close an attempt that never reached the purchase step."""
        description = getattr(exc, "message", "") or exc.__class__.__name__
        self._groups.update_transaction(
            transaction.id,
            status=TransactionStatus.FAILED,
            control=getattr(exc, "control", "") or "",
            response_code=getattr(exc, "response_code", "") or "",
            description=description[:255],
        )
        self._manager.release_holds(group)
        logger.warning("gateway_attempt_abandoned", group_code=group.code, error=description)

    def _declined(
        self, group: Group, transaction: PaymentTransaction, exc: GatewayDeclineError
    ) -> GatewayPaymentResult:
        transaction = self._groups.update_transaction(
            transaction.id,
            status=TransactionStatus.REJECTED,
            response_code=exc.response_code,
            description=exc.description,
            voucher=exc.voucher,
        )
        self._manager.release_holds(group)
        self._groups.audit(
            "gateway_declined",
            group,
            GATEWAY_ACTOR,
            {"control": transaction.control, "code": exc.response_code},
        )
        return GatewayPaymentResult(
            outcome=GatewayOutcome.DECLINED,
            group=self._manager.get_group(group.id),
            transaction=transaction,
            message=exc.description,
        )

    def _unknown(
        self, group: Group, transaction: PaymentTransaction, error: str, message: str
    ) -> GatewayPaymentResult:
        self._manager.mark_processing(group)
        transaction = self._groups.update_transaction(
            transaction.id,
            metadata={**transaction.metadata, "error": error, "error_message": message},
        )
        self._groups.audit(
            "gateway_outcome_unknown",
            group,
            GATEWAY_ACTOR,
            {"control": transaction.control, "error": error},
        )
        logger.warning("gateway_outcome_unknown", group_code=group.code, control=transaction.control, error=message)
        return GatewayPaymentResult(
            outcome=GatewayOutcome.UNKNOWN,
            group=self._manager.get_group(group.id),
            transaction=transaction,
            message=message,
        )

    def _open_attempt(self, control: str) -> tuple[PaymentTransaction, Group]:
        transaction = self._groups.get_transaction_by_control(control) if control else None
        if transaction is None:
            raise TransactionNotFoundError(control)
        return transaction, self._manager.get_group(transaction.group_id)

    def _settled(self, transaction: PaymentTransaction, group: Group) -> GatewayPaymentResult:
        return GatewayPaymentResult(
            outcome=_OUTCOMES[transaction.status],
            group=group,
            transaction=transaction,
            message=transaction.description,
        )

    def _apply_status(
        self,
        transaction: PaymentTransaction,
        group: Group,
        status: StatusResult,
        actor: str,
        source: str,
    ) -> GatewayPaymentResult:
        """Settle a pending attempt from a gateway state: A approves, R declines, anything else waits."""
        if not status.settled:
            transaction = self._groups.update_transaction(
                transaction.id,
                metadata={**transaction.metadata, "last_state": status.state, "last_code": status.response_code},
            )
            logger.info(
                "gateway_status_in_progress",
                control=transaction.control,
                state=status.state,
                source=source,
                group_code=group.code,
            )
            return GatewayPaymentResult(
                outcome=GatewayOutcome.UNKNOWN,
                group=group,
                transaction=transaction,
                message=status.description,
            )

        confirmation = None
        if status.approved:
            transaction = self._groups.update_transaction(
                transaction.id,
                status=TransactionStatus.APPROVED,
                response_code=status.response_code,
                description=status.description,
                authorization_id=status.authorization_id or transaction.authorization_id,
                reference=status.reference or transaction.reference,
                voucher=status.voucher or transaction.voucher,
            )
            confirmation = self._confirm_paid(group, transaction)
            group = confirmation.group if confirmation else self._manager.get_group(group.id)
            outcome = GatewayOutcome.APPROVED
        else:
            transaction = self._groups.update_transaction(
                transaction.id,
                status=TransactionStatus.REJECTED,
                response_code=status.response_code,
                description=status.description,
            )
            reason = f"Gateway declined ({status.response_code or status.state}): {status.description}"
            if group.payment_status is PaymentStatus.PROCESSING:
                group = self._engine.reject(group.id, reason, rejected_by=actor, payment=transaction)
            elif group.payment_status is PaymentStatus.PENDING:
                self._manager.release_holds(group)
            outcome = GatewayOutcome.DECLINED

        self._groups.audit(
            f"gateway_{outcome.value}",
            group,
            actor,
            {"control": transaction.control, "source": source, "state": status.state, "code": status.response_code},
        )
        logger.info(
            "gateway_status_applied",
            control=transaction.control,
            outcome=outcome.value,
            source=source,
            group_code=group.code,
        )
        return GatewayPaymentResult(
            outcome=outcome,
            group=group,
            transaction=transaction,
            confirmation=confirmation,
            message=status.description,
        )

    def _confirm_paid(self, group: Group, transaction: PaymentTransaction) -> ConfirmationResult | None:
        """Confirm a group the gateway charged. None when another path already confirmed it."""
        try:
            return self._engine.confirm(group.id, GATEWAY_ACTOR, payment=transaction, enforce_expiry=False)
        except AlreadyProcessedError:
            if self._manager.get_group(group.id).payment_status is PaymentStatus.CONFIRMED:
                logger.info("gateway_payment_already_applied", group_code=group.code, control=transaction.control)
                return None
            self._log_not_applied(group, transaction)
            raise
        except DomainError:
            self._log_not_applied(group, transaction)
            raise

    def _log_not_applied(self, group: Group, transaction: PaymentTransaction) -> None:
        # the buyer was charged; this needs a human
        logger.error(
            "gateway_payment_not_applied",
            group_code=group.code,
            control=transaction.control,
            authorization_id=transaction.authorization_id,
        )

    def _latest_transaction(self, group: Group, status: TransactionStatus) -> PaymentTransaction | None:
        for transaction in self._groups.list_transactions(group.id):
            if transaction.status is status:
                return transaction
        return None

    def _require_gateway(self) -> GatewayClient:
        if self._gateway is None:
            raise ValidationError("Mobile payments are not available", field="payment_method")
        return self._gateway


_OUTCOMES = {
    TransactionStatus.APPROVED: GatewayOutcome.APPROVED,
    TransactionStatus.REJECTED: GatewayOutcome.DECLINED,
    TransactionStatus.FAILED: GatewayOutcome.DECLINED,
    TransactionStatus.PENDING: GatewayOutcome.UNKNOWN,
}
