"""
Pydantic models for API request validation.

Shared by the REST routes and the WebSocket message payloads.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator

from bookmark_sync.api.models.responses import CamelModel

UNTITLED_PLACEHOLDER = "(untitled)"


class CreateBookmarkRequest(CamelModel):
    """CreateSpec: a new bookmark or folder."""

    local_id: str | None = None
    parent_id: str | None = None
    title: str = Field(default="", validate_default=True)
    url: str | None = None
    is_folder: bool = False
    sort_order: int = 0
    favicon: str | None = None

    @field_validator("title", mode="before")
    @classmethod
    def _default_title(cls, value: Any) -> str:
        title = str(value or "").strip()
        return title or UNTITLED_PLACEHOLDER

    @field_validator("url", "favicon", "parent_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(exclude={"local_id"})


class BatchCreateRequest(CamelModel):
    bookmarks: list[CreateBookmarkRequest] = Field(default_factory=list)


class BookmarkPatch(CamelModel):
    """Fields an update may change; only those actually sent are applied."""

    title: str | None = None
    url: str | None = None
    favicon: str | None = None
    sort_order: int | None = None

    def changes(self, *, by_alias: bool = False) -> dict[str, Any]:
        return self.model_dump(
            include={"title", "url", "favicon", "sort_order"}, exclude_unset=True, by_alias=by_alias
        )


class UpdateBookmarkRequest(BookmarkPatch):
    expected_version: int = 0


class MoveBookmarkRequest(CamelModel):
    parent_id: str | None = None
    sort_order: int = 0
