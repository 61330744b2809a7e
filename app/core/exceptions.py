"""
Custom Exception Hierarchy

Provides structured exceptions for consistent error handling across the application.
Every exception carries an HTTP status so the FastAPI handlers in
``app.core.middleware`` can render it without route-level try/except.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"
    CONFLICT = "ERR_1007"

    # Order errors (2xxx)
    ORDER_NOT_FOUND = "ERR_2001"
    ORDER_ALREADY_ASSIGNED = "ERR_2002"
    ORDER_INVALID_STATUS = "ERR_2003"
    ORDER_NOT_ASSIGNED_TO_WORKER = "ERR_2004"
    ORDER_PAYMENT_INCOMPLETE = "ERR_2005"
    ORDER_ALREADY_REVIEWED = "ERR_2006"

    # Delivery worker errors (3xxx)
    WORKER_NOT_FOUND = "ERR_3001"
    WORKER_BUSY = "ERR_3002"

    # Wallet, payment and settlement errors (4xxx)
    PAYMENT_NOT_FOUND = "ERR_4001"
    INVALID_AMOUNT = "ERR_4003"
    SETTLEMENT_NOT_FOUND = "ERR_4005"
    SETTLEMENT_AMOUNT_MISMATCH = "ERR_4006"
    SETTLEMENT_NOT_PENDING = "ERR_4007"
    INVALID_SETTLEMENT_METHOD = "ERR_4008"
    INSUFFICIENT_BALANCE = "ERR_4009"

    # External service errors (5xxx)
    PUSH_GATEWAY_ERROR = "ERR_5001"
    OPS_WEBHOOK_ERROR = "ERR_5002"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"

    # State machine errors (6xxx)
    INVALID_STATE_TRANSITION = "ERR_6001"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails (BadRequest)"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class ConflictException(AppException):
    """Raised when the current state of a record rejects the operation"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFLICT,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=409,
            details=details
        )


class ForbiddenException(AppException):
    """Raised when the caller may not act on the resource"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.FORBIDDEN,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=403,
            details=details
        )


# ==================== Orders ====================


class OrderNotFoundError(NotFoundException):
    """Raised when order is not found"""

    def __init__(self, order_id: int):
        super().__init__("Order", order_id, error_code=ErrorCode.ORDER_NOT_FOUND)


class OrderAlreadyAssignedError(ConflictException):
    """Raised when another worker already holds the order"""

    def __init__(self, order_id: int, assigned_worker_id: int | None = None):
        super().__init__(
            message=f"Order {order_id} is already assigned to another delivery worker",
            error_code=ErrorCode.ORDER_ALREADY_ASSIGNED,
            details={"order_id": order_id, "assigned_worker_id": assigned_worker_id},
        )


class OrderStatusError(ConflictException):
    """Raised when order has invalid status for operation"""

    def __init__(self, order_id: int, current_status: str, allowed_statuses: list[str]):
        super().__init__(
            message=f"Order {order_id} has status '{current_status}', expected one of {allowed_statuses}",
            error_code=ErrorCode.ORDER_INVALID_STATUS,
            details={
                "order_id": order_id,
                "current_status": current_status,
                "allowed_statuses": allowed_statuses,
            },
        )


class OrderNotAssignedToWorkerError(ForbiddenException):
    """Raised when the caller is not the order's assigned worker"""

    def __init__(self, order_id: int, worker_id: int):
        super().__init__(
            message=f"Order {order_id} is not assigned to you",
            error_code=ErrorCode.ORDER_NOT_ASSIGNED_TO_WORKER,
            details={"order_id": order_id, "worker_id": worker_id},
        )


class OrderPaymentIncompleteError(ValidationException):
    """Raised when dispatch requires a paid order"""

    def __init__(self, order_id: int, payment_status: str):
        super().__init__(
            message=f"Order {order_id} cannot be assigned before payment succeeds",
            error_code=ErrorCode.ORDER_PAYMENT_INCOMPLETE,
            details={"order_id": order_id, "payment_status": payment_status},
        )


# ==================== Delivery workers ====================


class WorkerNotFoundError(NotFoundException):
    """Raised when delivery worker is missing, inactive or deleted"""

    def __init__(self, worker_id: int):
        super().__init__("Delivery worker", worker_id, error_code=ErrorCode.WORKER_NOT_FOUND)


class WorkerBusyError(ConflictException):
    """Raised when the worker is still on another delivery"""

    def __init__(self, worker_id: int):
        super().__init__(
            message=f"Delivery worker {worker_id} already has an active order",
            error_code=ErrorCode.WORKER_BUSY,
            details={"worker_id": worker_id},
        )


# ==================== Payments & settlements ====================


class PaymentsNotFoundError(NotFoundException):
    """Raised when none of the requested payments can be claimed"""

    def __init__(self, payment_ids: list[int]):
        super().__init__("Outstanding payments", payment_ids, error_code=ErrorCode.PAYMENT_NOT_FOUND)


class SettlementNotFoundError(NotFoundException):
    """Raised when settlement is missing or belongs to another worker"""

    def __init__(self, settlement_id: int):
        super().__init__("Settlement", settlement_id, error_code=ErrorCode.SETTLEMENT_NOT_FOUND)


class SettlementAmountMismatchError(ValidationException):
    """Raised when the confirmed amount differs from the stored settlement amount"""

    def __init__(self, settlement_id: int, expected: Any, received: Any):
        super().__init__(
            message=f"Amount mismatch for settlement {settlement_id}",
            error_code=ErrorCode.SETTLEMENT_AMOUNT_MISMATCH,
            details={
                "settlement_id": settlement_id,
                "expected": str(expected),
                "received": str(received),
            },
        )


class InsufficientBalanceError(ConflictException):
    """Raised when a withdrawal exceeds the wallet balance"""

    def __init__(self, worker_id: int, balance: Any, requested: Any):
        super().__init__(
            message="Requested amount exceeds the wallet balance",
            error_code=ErrorCode.INSUFFICIENT_BALANCE,
            details={
                "worker_id": worker_id,
                "balance": str(balance),
                "requested": str(requested),
            },
        )


class SettlementNotPendingError(ConflictException):
    """Raised when confirming a settlement that is no longer pending"""

    def __init__(self, settlement_id: int, current_status: str):
        super().__init__(
            message=f"Settlement {settlement_id} is already {current_status}",
            error_code=ErrorCode.SETTLEMENT_NOT_PENDING,
            details={"settlement_id": settlement_id, "current_status": current_status},
        )


# ==================== External services ====================


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name

    @classmethod
    def from_response(
        cls,
        service_name: str,
        operation: str,
        response: Any,
        *,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        max_response_chars: int = 500
    ) -> "ExternalServiceException":
        """Build an error from an HTTP response (e.g. httpx.Response)."""
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            service_name=service_name,
            message=f"{service_name} {operation} returned status {status_code}",
            error_code=error_code,
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )


# ==================== State machine ====================


class InvalidStateTransitionError(ConflictException):
    """Raised when a lifecycle step is requested out of order"""

    def __init__(self, order_id: int, current_stage: str, target_stage: str):
        super().__init__(
            message=f"Invalid transition from '{current_stage}' to '{target_stage}'",
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            details={
                "order_id": order_id,
                "current_stage": current_stage,
                "target_stage": target_stage,
            }
        )
