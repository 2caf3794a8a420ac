"""Domain-specific exceptions.

These represent sync rule violations. The engine raises them and the
transport adapters translate them into HTTP responses or WebSocket errors.
"""

from __future__ import annotations

from typing import Any


class DomainException(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        """Initialize domain exception.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidRequestError(DomainException):
    """Raised when a payload is well-formed JSON but violates bookmark rules."""


class BookmarkNotFoundError(DomainException):
    """Raised when an update or move targets an id the user does not own."""

    def __init__(self, bookmark_id: str) -> None:
        super().__init__("Bookmark not found", details={"bookmark_id": bookmark_id})
        self.bookmark_id = bookmark_id


class VersionConflictError(DomainException):
    """Raised when the stored row version differs from the one the client expected."""

    def __init__(self, current: dict[str, Any], expected_version: int) -> None:
        super().__init__(
            "Version conflict",
            details={
                "bookmark_id": current.get("id"),
                "expected_version": expected_version,
                "server_version": current.get("sync_version"),
            },
        )
        self.current = current
        self.expected_version = expected_version
