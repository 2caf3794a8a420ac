"""Exceptions and error codes shared by the REST and WebSocket adapters.

The same ``ErrorCode`` values appear in REST error envelopes and in
WebSocket ``error`` messages.
"""

from enum import Enum, IntEnum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes for API responses."""

    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_FAILED = "AUTH_FAILED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INVALID_REQUEST = "INVALID_REQUEST"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"


class ErrorType(str, Enum):
    """Categories of errors for client handling."""

    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RATE_LIMIT = "rate_limit"
    INTERNAL = "internal"


class CloseCode(IntEnum):
    """WebSocket close codes."""

    NORMAL = 1000
    GOING_AWAY = 1001
    AUTH_FAILED = 4001
    SESSION_EXPIRED = 4002
    RATE_LIMITED = 4003
    MAINTENANCE = 4004


_ERROR_TYPE_MAP: dict[ErrorCode, ErrorType] = {
    ErrorCode.AUTH_REQUIRED: ErrorType.AUTHENTICATION,
    ErrorCode.AUTH_FAILED: ErrorType.AUTHENTICATION,
    ErrorCode.NOT_FOUND: ErrorType.NOT_FOUND,
    ErrorCode.CONFLICT: ErrorType.CONFLICT,
    ErrorCode.INVALID_REQUEST: ErrorType.VALIDATION,
    ErrorCode.RATE_LIMITED: ErrorType.RATE_LIMIT,
    ErrorCode.SERVER_ERROR: ErrorType.INTERNAL,
    ErrorCode.DATABASE_ERROR: ErrorType.INTERNAL,
}

_RETRYABLE_CODES: set[ErrorCode] = {
    ErrorCode.RATE_LIMITED,
    ErrorCode.DATABASE_ERROR,
}


def error_type_for(code: ErrorCode) -> ErrorType:
    return _ERROR_TYPE_MAP.get(code, ErrorType.INTERNAL)


def is_retryable(code: ErrorCode) -> bool:
    return code in _RETRYABLE_CODES


class APIException(Exception):
    """Base exception for all API errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
        error_type: ErrorType | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        self.error_type = error_type or error_type_for(error_code)
        self.retryable = retryable if retryable is not None else is_retryable(error_code)


class ValidationError(APIException):
    """Raised when a request is well-formed HTTP but carries an unusable payload."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_REQUEST,
            status_code=400,
            details=details,
        )


class AuthenticationError(APIException):
    """Raised when the bearer credential is missing or does not verify."""

    def __init__(self, message: str = "Authentication failed", *, missing: bool = False):
        super().__init__(
            message=message,
            error_code=ErrorCode.AUTH_REQUIRED if missing else ErrorCode.AUTH_FAILED,
            status_code=401,
        )


class ResourceNotFoundError(APIException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource_type: str, resource_id: int | str):
        super().__init__(
            message=f"{resource_type} with ID {resource_id} not found",
            error_code=ErrorCode.NOT_FOUND,
            status_code=404,
            details={"resource_type": resource_type, "resource_id": str(resource_id)},
        )


class ConflictError(APIException):
    """Raised when a write targets a stale version of a resource."""

    def __init__(self, message: str = "Version conflict", details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.CONFLICT,
            status_code=409,
            details=details,
        )
