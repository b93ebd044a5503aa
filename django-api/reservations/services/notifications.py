"""Collaborators the core talks to but does not own.

Notification delivery and exchange-rate lookup live outside this service.
The core only depends on these interfaces.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

import structlog

from reservations.domain import Group, Item, PaymentTransaction

logger = structlog.get_logger(__name__)


class NotificationDispatcher(ABC):
    """Delivers confirmation and rejection messages to the buyer."""

    @abstractmethod
    def send_confirmation(
        self, group: Group, items: list[Item], payment: PaymentTransaction | None
    ) -> bool:
        """Return True when the message was accepted for delivery."""
        ...

    @abstractmethod
    def send_rejection(self, group: Group, reason: str, payment: PaymentTransaction | None) -> bool:
        """Return True when the message was accepted for delivery."""
        ...


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Dispatcher that only records the event in the log."""

    def send_confirmation(
        self, group: Group, items: list[Item], payment: PaymentTransaction | None
    ) -> bool:
        logger.info(
            "confirmation_notification",
            group_code=group.code,
            recipient=group.contact.email,
            numbers=[item.number for item in items],
            transaction_id=str(payment.id) if payment else None,
        )
        return True

    def send_rejection(self, group: Group, reason: str, payment: PaymentTransaction | None) -> bool:
        logger.info(
            "rejection_notification",
            group_code=group.code,
            recipient=group.contact.email,
            reason=reason,
        )
        return True


class ExchangeRateProvider(ABC):
    @abstractmethod
    def rate(self) -> Decimal:
        """Local currency units per unit of the price currency."""
        ...


class FixedExchangeRate(ExchangeRateProvider):
    def __init__(self, value: Decimal) -> None:
        if value <= 0:
            raise ValueError("Exchange rate must be positive")
        self._value = value

    def rate(self) -> Decimal:
        return self._value
