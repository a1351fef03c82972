"""
Custom Exception Hierarchy

Structured exceptions shared by the HTTP layer, the ledger and the
reconciliation workers.
"""
from decimal import Decimal
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    ALREADY_EXISTS = "ERR_1003"
    UNAUTHORIZED = "ERR_1004"
    CONFLICT = "ERR_1005"
    RATE_LIMITED = "ERR_1006"

    # Order errors (2xxx)
    ORDER_NOT_FOUND = "ERR_2001"
    INVALID_ORDER_NUMBER = "ERR_2002"
    ORDER_OWNED_BY_ANOTHER_USER = "ERR_2003"
    ORDER_ALREADY_FINALIZED = "ERR_2004"

    # User errors (3xxx)
    USER_NOT_FOUND = "ERR_3001"
    USER_ALREADY_EXISTS = "ERR_3002"
    INVALID_CREDENTIALS = "ERR_3003"

    # Ledger errors (4xxx)
    BALANCE_NOT_FOUND = "ERR_4001"
    INSUFFICIENT_FUNDS = "ERR_4002"
    INVALID_AMOUNT = "ERR_4003"
    DUPLICATE_LEDGER_ENTRY = "ERR_4004"

    # External service errors (5xxx)
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5001"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5002"


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
    """Raised when input validation fails, before any state is touched"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        status_code: int = 400,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )
        if field:
            self.details["field"] = field


class InvalidOrderNumberError(ValidationException):
    """Order number is not a Luhn-valid numeral string"""

    def __init__(self, order_number: str):
        super().__init__(
            message="Invalid order number format",
            field="order_number",
            details={"order_number": order_number},
            error_code=ErrorCode.INVALID_ORDER_NUMBER,
            status_code=422,
        )


class InvalidAmountError(ValidationException):
    """Credit and debit amounts must be positive with at most 2 decimal places"""

    def __init__(self, amount: Decimal | float | int):
        super().__init__(
            message=f"Invalid amount {amount}: must be positive with at most 2 decimal places",
            field="amount",
            details={"amount": str(amount)},
            error_code=ErrorCode.INVALID_AMOUNT,
        )


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


NotFoundError = NotFoundException


class UserNotFoundError(NotFoundException):
    def __init__(self, identifier: str | int):
        super().__init__("User", identifier, ErrorCode.USER_NOT_FOUND)


class OrderNotFoundError(NotFoundException):
    def __init__(self, order_number: str):
        super().__init__("Order", order_number, ErrorCode.ORDER_NOT_FOUND)


class BalanceNotFoundError(NotFoundException):
    """
    No balance row for a user.

    Balances are created together with the user, so this signals a
    data-integrity problem and is reported to HTTP callers as a 500.
    """

    def __init__(self, user_id: int):
        super().__init__("Account balance", user_id, ErrorCode.BALANCE_NOT_FOUND)
        self.status_code = 500


class ConflictError(AppException):
    """Duplicate ownership, double credit or another uniqueness violation"""

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


class UserAlreadyExistsError(ConflictError):
    def __init__(self, login: str):
        super().__init__(
            message=f"User already exists: {login}",
            error_code=ErrorCode.USER_ALREADY_EXISTS,
            details={"login": login},
        )


class DuplicateLedgerEntryError(ConflictError):
    """A ledger entry of this type already exists for the order number"""

    def __init__(self, order_number: str, entry_type: str):
        super().__init__(
            message=f"Ledger entry '{entry_type}' already recorded for order {order_number}",
            error_code=ErrorCode.DUPLICATE_LEDGER_ENTRY,
            details={"order_number": order_number, "entry_type": entry_type},
        )


class OrderAlreadyFinalizedError(ConflictError):
    """The order reached a terminal status before this write"""

    def __init__(self, order_number: str, current_status: str):
        super().__init__(
            message=f"Order {order_number} is already final ({current_status})",
            error_code=ErrorCode.ORDER_ALREADY_FINALIZED,
            details={"order_number": order_number, "current_status": current_status},
        )


class InsufficientFundsError(AppException):
    """Debit amount exceeds the current balance"""

    def __init__(self, user_id: int, current_balance: Decimal, requested_amount: Decimal):
        super().__init__(
            message=f"Insufficient funds for user {user_id}",
            error_code=ErrorCode.INSUFFICIENT_FUNDS,
            status_code=402,
            details={
                "user_id": user_id,
                "current_balance": str(current_balance),
                "requested_amount": str(requested_amount),
            }
        )


class InvalidCredentialsError(AppException):
    def __init__(self):
        super().__init__(
            message="Invalid login or password",
            error_code=ErrorCode.INVALID_CREDENTIALS,
            status_code=401,
        )


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


class TransientIOError(ExternalServiceException):
    """
    Network, timeout or decode failure talking to the accrual service.

    Never terminal: the reconciliation loop logs it and polls again.
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
    ):
        super().__init__(
            service_name="accrual",
            message=f"Accrual service error: {message}",
            error_code=error_code,
            details=details
        )

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500
    ) -> "TransientIOError":
        """Build the error from an httpx response, truncating the body for logs"""
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=message or f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class ServiceTimeoutError(TransientIOError):
    """Accrual service did not answer within the request timeout"""

    def __init__(self, timeout_seconds: float):
        super().__init__(
            message=f"request timed out after {timeout_seconds}s",
            details={"timeout_seconds": timeout_seconds},
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
        )
