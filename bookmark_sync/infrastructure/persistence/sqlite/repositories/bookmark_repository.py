"""SQLite implementation of the bookmark store.

The synchronous methods expect to run inside a connection (normally a
transaction opened by the sync engine); the ``async_*`` methods are
standalone read paths.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from typing import Any

from bookmark_sync.core.time_utils import now_ms
from bookmark_sync.db.models import Bookmark, model_to_dict
from bookmark_sync.domain.exceptions.domain_exceptions import (
    BookmarkNotFoundError,
    InvalidRequestError,
    VersionConflictError,
)
from bookmark_sync.infrastructure.persistence.sqlite.base import SqliteBaseRepository

# Columns an update patch may touch.
PATCHABLE_FIELDS = ("title", "url", "favicon", "sort_order")
# Patch keys where an explicit null clears the column instead of being ignored.
NULLABLE_PATCH_FIELDS = frozenset({"favicon"})

DEFAULT_SEARCH_LIMIT = 100


class SqliteBookmarkRepositoryAdapter(SqliteBaseRepository):
    """Adapter for bookmark rows, keyed by (id, user_id)."""

    def create(self, user_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        now = now_ms()
        record = Bookmark.create(
            id=str(uuid.uuid4()),
            user_id=user_id,
            parent_id=data.get("parent_id"),
            title=data.get("title") or "",
            url=data.get("url"),
            favicon=data.get("favicon"),
            is_folder=bool(data.get("is_folder")),
            sort_order=int(data.get("sort_order") or 0),
            date_added=now,
            date_modified=now,
            sync_version=1,
        )
        return model_to_dict(record) or {}

    def get(self, bookmark_id: str, user_id: str) -> dict[str, Any] | None:
        """Fetch a row, soft-deleted or not."""
        record = Bookmark.get_or_none((Bookmark.id == bookmark_id) & (Bookmark.user_id == user_id))
        return model_to_dict(record)

    def list_all(self, user_id: str) -> list[dict[str, Any]]:
        query = (
            Bookmark.select()
            .where((Bookmark.user_id == user_id) & (~Bookmark.is_deleted))
            .order_by(Bookmark.sort_order, Bookmark.date_added)
        )
        return [model_to_dict(row) or {} for row in query]

    def update(
        self,
        bookmark_id: str,
        user_id: str,
        patch: Mapping[str, Any],
        expected_version: int,
    ) -> dict[str, Any]:
        """Apply ``patch`` and bump the row version.

        Raises:
            BookmarkNotFoundError: No row with this id for the user.
            VersionConflictError: Stored version differs from ``expected_version``.
            InvalidRequestError: The patch would give a folder a url or leave a
                bookmark without one.
        """
        current = self._require_version(bookmark_id, user_id, expected_version)

        changes: dict[str, Any] = {}
        for key in PATCHABLE_FIELDS:
            if key not in patch:
                continue
            value = patch[key]
            if value is None and key not in NULLABLE_PATCH_FIELDS:
                continue
            changes[key] = value

        if "url" in changes:
            url = (changes["url"] or "").strip()
            if current["is_folder"]:
                if url:
                    raise InvalidRequestError(
                        "A folder cannot have a url", details={"field": "url"}
                    )
                # Folders keep a null url.
                del changes["url"]
            elif not url:
                raise InvalidRequestError(
                    "A bookmark that is not a folder requires a url", details={"field": "url"}
                )

        self._bump(bookmark_id, user_id, date_modified=now_ms(), **changes)
        return self.get(bookmark_id, user_id) or {}

    def move(
        self,
        bookmark_id: str,
        user_id: str,
        new_parent_id: str | None,
        new_index: int,
        expected_version: int,
    ) -> dict[str, Any]:
        """Reparent and reorder a row; same conflict rules as ``update``."""
        self._require_version(bookmark_id, user_id, expected_version)
        self._bump(
            bookmark_id,
            user_id,
            parent_id=new_parent_id,
            sort_order=new_index,
            date_modified=now_ms(),
        )
        return self.get(bookmark_id, user_id) or {}

    def soft_delete(
        self, bookmark_id: str, user_id: str, expected_version: int
    ) -> dict[str, Any] | None:
        """Mark a row deleted.

        Returns None when the row is absent or already deleted; the caller
        treats that as a successful no-op.

        Raises:
            VersionConflictError: Stored version differs from ``expected_version``.
        """
        current = self.get(bookmark_id, user_id)
        if current is None or current["is_deleted"]:
            return None
        if current["sync_version"] != expected_version:
            raise VersionConflictError(current, expected_version)

        self._bump(bookmark_id, user_id, is_deleted=True, deleted_at=now_ms())
        return self.get(bookmark_id, user_id)

    def delete_all_for_user(self, user_id: str) -> int:
        return Bookmark.delete().where(Bookmark.user_id == user_id).execute()

    def search(
        self, user_id: str, query: str, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> list[dict[str, Any]]:
        """Case-insensitive substring match on title or url, newest change first."""
        rows = (
            Bookmark.select()
            .where(
                (Bookmark.user_id == user_id)
                & (~Bookmark.is_deleted)
                & (Bookmark.title.contains(query) | Bookmark.url.contains(query))
            )
            .order_by(Bookmark.date_modified.desc())
            .limit(limit)
        )
        return [model_to_dict(row) or {} for row in rows]

    # -------------------------------------------------------------------------
    # Async read paths
    # -------------------------------------------------------------------------

    async def async_get(self, bookmark_id: str, user_id: str) -> dict[str, Any] | None:
        return await self._execute(
            self.get, bookmark_id, user_id, operation_name="get_bookmark", read_only=True
        )

    async def async_search(
        self, user_id: str, query: str, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> list[dict[str, Any]]:
        return await self._execute(
            self.search, user_id, query, limit, operation_name="search_bookmarks", read_only=True
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_version(
        self, bookmark_id: str, user_id: str, expected_version: int
    ) -> dict[str, Any]:
        current = self.get(bookmark_id, user_id)
        if current is None:
            raise BookmarkNotFoundError(bookmark_id)
        if current["sync_version"] != expected_version:
            raise VersionConflictError(current, expected_version)
        return current

    @staticmethod
    def _bump(bookmark_id: str, user_id: str, **changes: Any) -> None:
        (
            Bookmark.update(sync_version=Bookmark.sync_version + 1, **changes)
            .where((Bookmark.id == bookmark_id) & (Bookmark.user_id == user_id))
            .execute()
        )
