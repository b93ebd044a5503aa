"""Domain error codes for the reservations module."""

from dataclasses import dataclass
from enum import Enum


class ErrorCode(Enum):
    """Domain error codes."""

    VALIDATION_FAILED = "VALIDATION_FAILED"
    GROUP_NOT_FOUND = "GROUP_NOT_FOUND"
    TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
    INSUFFICIENT_INVENTORY = "INSUFFICIENT_INVENTORY"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    PERSISTENCE_CONFLICT = "PERSISTENCE_CONFLICT"
    GATEWAY_DECLINE = "GATEWAY_DECLINE"
    GATEWAY_TRANSPORT = "GATEWAY_TRANSPORT"
    GATEWAY_PROTOCOL = "GATEWAY_PROTOCOL"


@dataclass(eq=False)
class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationError(DomainError):
    """Raised when input is malformed. No state was changed."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(code=ErrorCode.VALIDATION_FAILED, message=message)
        self.field = field


class GroupNotFoundError(DomainError):
    """Raised when a group does not exist."""

    def __init__(self, group_id: str) -> None:
        super().__init__(code=ErrorCode.GROUP_NOT_FOUND, message="Group not found")
        self.group_id = group_id


class TransactionNotFoundError(DomainError):
    """Raised when no payment transaction matches a control number."""

    def __init__(self, control: str) -> None:
        super().__init__(
            code=ErrorCode.TRANSACTION_NOT_FOUND,
            message="Payment transaction not found",
        )
        self.control = control


class InsufficientInventoryError(DomainError):
    """Raised when a category cannot cover the requested quantity."""

    def __init__(self, category: str, requested: int, available: int) -> None:
        super().__init__(
            code=ErrorCode.INSUFFICIENT_INVENTORY,
            message=f"Only {available} remaining for {category}",
        )
        self.category = category
        self.requested = requested
        self.available = available


class AlreadyProcessedError(DomainError):
    """Raised when a group already left the state an operation requires."""

    def __init__(self, group_code: str, status: str) -> None:
        super().__init__(
            code=ErrorCode.ALREADY_PROCESSED,
            message=f"Group {group_code} is already {status}",
        )
        self.group_code = group_code
        self.status = status


class PersistenceConflictError(DomainError):
    """Raised when a concurrent write won. Retry the whole operation."""

    def __init__(self, message: str = "Concurrent update detected") -> None:
        super().__init__(code=ErrorCode.PERSISTENCE_CONFLICT, message=message)


class GatewayDeclineError(DomainError):
    """Raised when the issuing bank declined. Terminal, never retried."""

    def __init__(
        self,
        response_code: str,
        description: str,
        control: str | None = None,
        voucher: str = "",
    ) -> None:
        super().__init__(
            code=ErrorCode.GATEWAY_DECLINE,
            message=f"Payment declined ({response_code}): {description}",
        )
        self.response_code = response_code
        self.description = description
        self.control = control
        self.voucher = voucher


class GatewayTransportError(DomainError):
    """Raised when the gateway could not be reached after every retry."""

    def __init__(self, operation: str, attempts: int, reason: str) -> None:
        super().__init__(
            code=ErrorCode.GATEWAY_TRANSPORT,
            message=f"Gateway {operation} failed after {attempts} attempt(s)",
        )
        self.operation = operation
        self.attempts = attempts
        self.reason = reason


class GatewayProtocolError(DomainError):
    """Raised when the gateway answered with something unparseable."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.GATEWAY_PROTOCOL, message=message)
