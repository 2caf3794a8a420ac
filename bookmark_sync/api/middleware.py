"""FastAPI middleware for request processing."""

import time
import uuid
from collections.abc import Callable
from contextvars import ContextVar

from fastapi import Request

from bookmark_sync.core.logging_utils import get_logger

logger = get_logger(__name__)

# Correlation ID captured by middleware for use in helpers and handlers.
correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)


async def correlation_id_middleware(request: Request, call_next: Callable):
    """
    Add correlation ID to all requests for tracing.

    Checks for X-Correlation-ID header, generates one if missing.
    """
    correlation_id = request.headers.get("X-Correlation-ID")

    if not correlation_id:
        correlation_id = f"api-{uuid.uuid4().hex[:16]}"

    request.state.correlation_id = correlation_id
    token = correlation_id_ctx.set(correlation_id)
    started = time.perf_counter()

    try:
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        logger.debug(
            "http_request_completed",
            extra={
                "correlation_id": correlation_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return response
    finally:
        correlation_id_ctx.reset(token)
