"""Exception handlers producing the JSON error envelope for REST routes."""

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from bookmark_sync.api.exceptions import (
    APIException,
    ConflictError,
    ErrorCode,
    ErrorType,
    ValidationError,
)
from bookmark_sync.api.models.responses import error_response, make_error
from bookmark_sync.core.logging_utils import get_logger
from bookmark_sync.domain.exceptions.domain_exceptions import (
    BookmarkNotFoundError,
    DomainException,
    VersionConflictError,
)

logger = get_logger(__name__)


def _envelope(request: Request, exc: APIException) -> JSONResponse:
    correlation_id = getattr(request.state, "correlation_id", None)
    detail = make_error(
        exc.error_code,
        exc.message,
        error_type=exc.error_type,
        retryable=exc.retryable,
        details=exc.details or None,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(detail, correlation_id=correlation_id),
    )


async def api_exception_handler(request: Request, exc: Exception) -> Response:
    """Handle custom API exceptions."""
    if not isinstance(exc, APIException):
        raise exc

    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "api_error",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", None),
            "error_code": exc.error_code.value,
            "status_code": exc.status_code,
            "path": request.url.path,
        },
    )
    return _envelope(request, exc)


async def validation_exception_handler(request: Request, exc: Exception) -> Response:
    """Handle request body/query validation errors as 400 INVALID_REQUEST."""
    if not isinstance(exc, RequestValidationError):
        raise exc

    fields = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning(
        "request_validation_failed",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", None),
            "errors": fields,
            "path": request.url.path,
        },
    )
    return _envelope(request, ValidationError("Invalid request", details={"fields": fields}))


async def domain_exception_handler(request: Request, exc: Exception) -> Response:
    """Translate domain errors raised by the sync engine."""
    if not isinstance(exc, DomainException):
        raise exc

    api_exc: APIException
    if isinstance(exc, BookmarkNotFoundError):
        api_exc = APIException(
            exc.message,
            ErrorCode.NOT_FOUND,
            status_code=status.HTTP_404_NOT_FOUND,
            details=exc.details,
        )
    elif isinstance(exc, VersionConflictError):
        api_exc = ConflictError(exc.message, details=exc.details)
    else:
        # InvalidRequestError and any other rule violation
        api_exc = ValidationError(exc.message, details=exc.details or None)
    return await api_exception_handler(request, api_exc)


async def database_exception_handler(request: Request, exc: Exception) -> Response:
    """Handle database-related exceptions."""
    correlation_id = getattr(request.state, "correlation_id", None)
    logger.error(
        "database_error",
        exc_info=True,
        extra={"correlation_id": correlation_id, "path": request.url.path, "error": str(exc)},
    )
    detail = make_error(
        ErrorCode.DATABASE_ERROR,
        "Database temporarily unavailable",
        error_type=ErrorType.INTERNAL,
        retryable=True,
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=error_response(detail, correlation_id=correlation_id),
    )


async def global_exception_handler(request: Request, exc: Exception) -> Response:
    """Catch-all handler for unexpected exceptions."""
    correlation_id = getattr(request.state, "correlation_id", None)
    logger.error(
        "unhandled_exception",
        exc_info=True,
        extra={"correlation_id": correlation_id, "path": request.url.path, "error": str(exc)},
    )

    # Don't leak error details in production
    config = getattr(request.app.state, "config", None)
    debug_mode = config is not None and config.runtime.log_level == "DEBUG"
    message = str(exc) if debug_mode else "An internal server error occurred"

    detail = make_error(
        ErrorCode.SERVER_ERROR,
        message,
        error_type=ErrorType.INTERNAL,
        retryable=False,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response(detail, correlation_id=correlation_id),
    )
