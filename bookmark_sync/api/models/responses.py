"""
Pydantic models for API responses and the shared error envelope.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from bookmark_sync.api.exceptions import ErrorType
from bookmark_sync.api.middleware import correlation_id_ctx
from bookmark_sync.core.time_utils import UTC

APP_VERSION = os.getenv("APP_VERSION", "1.0.0")


class CamelModel(BaseModel):
    """Base for wire models: snake_case in Python, camelCase in JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookmarkOut(CamelModel):
    id: str
    user_id: str
    parent_id: str | None = None
    title: str
    url: str | None = None
    favicon: str | None = None
    date_added: int
    date_modified: int
    is_folder: bool
    sort_order: int
    sync_version: int
    is_deleted: bool = False
    deleted_at: int | None = None


class SyncEventOut(CamelModel):
    id: str
    type: str
    bookmark_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: int
    client_id: str
    sync_version: int


def bookmark_to_wire(row: Mapping[str, Any]) -> dict[str, Any]:
    """Stored bookmark row (snake_case dict) to its JSON shape."""
    return BookmarkOut.model_validate(dict(row)).model_dump(by_alias=True)


def event_to_wire(row: Mapping[str, Any]) -> dict[str, Any]:
    return SyncEventOut.model_validate(dict(row)).model_dump(by_alias=True)


class MetaInfo(BaseModel):
    """Metadata attached to error responses."""

    correlation_id: str = ""
    timestamp: str = Field(
        default_factory=lambda: datetime.now(UTC).isoformat().replace("+00:00", "Z")
    )
    version: str = APP_VERSION


class ErrorDetail(BaseModel):
    """Error details aligned to the API error envelope."""

    code: str
    error_type: str = Field(default=ErrorType.INTERNAL.value, serialization_alias="errorType")
    message: str
    retryable: bool = False
    details: dict[str, Any] | None = None
    correlation_id: str = ""


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail
    meta: MetaInfo = Field(default_factory=MetaInfo)


def make_error(
    code: str | Enum,
    message: str,
    *,
    error_type: str | ErrorType = ErrorType.INTERNAL,
    retryable: bool = False,
    details: dict[str, Any] | None = None,
) -> ErrorDetail:
    """Create an ErrorDetail from enum or string values."""
    code_str = code.value if isinstance(code, Enum) else code
    error_type_str = error_type.value if isinstance(error_type, ErrorType) else error_type
    return ErrorDetail(
        code=code_str,
        error_type=error_type_str,
        message=message,
        retryable=retryable,
        details=details,
    )


def error_response(detail: ErrorDetail, *, correlation_id: str | None = None) -> dict[str, Any]:
    """Build the standard error body, filling the correlation id from context."""
    corr = correlation_id or correlation_id_ctx.get() or ""
    if not detail.correlation_id:
        detail = detail.model_copy(update={"correlation_id": corr})
    meta = MetaInfo(correlation_id=corr)
    return ErrorResponse(error=detail, meta=meta).model_dump(by_alias=True)
