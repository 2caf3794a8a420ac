"""Bookmark sync engine.

The engine is the only writer of bookmarks, sync events and the version
ledger. Every mutation runs as one transaction under the database write
lock:

    read row -> compare version -> write row -> bump ledger -> append event

so two clients holding the same ``expectedVersion`` can never both succeed,
and the ledger value always equals the ``syncVersion`` of the newest event.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Literal

from bookmark_sync.api.models.messages import (
    SyncFullMessage,
    SyncIncrementalMessage,
)
from bookmark_sync.api.models.requests import BookmarkPatch, CreateBookmarkRequest
from bookmark_sync.api.models.responses import bookmark_to_wire, event_to_wire
from bookmark_sync.core.logging_utils import get_logger
from bookmark_sync.domain.exceptions.domain_exceptions import (
    InvalidRequestError,
    VersionConflictError,
)
from bookmark_sync.infrastructure.persistence.sqlite.repositories import (
    SqliteBookmarkRepositoryAdapter,
    SqliteSyncEventRepositoryAdapter,
    SqliteSyncVersionRepositoryAdapter,
)

if TYPE_CHECKING:
    from bookmark_sync.api.websocket.registry import ConnectionRegistry
    from bookmark_sync.db.session import DatabaseSessionManager

logger = get_logger(__name__)

DEFAULT_EVENTS_PAGE_LIMIT = 1000
DEFAULT_SEARCH_LIMIT = 100
DEFAULT_BATCH_MAX_ITEMS = 1000


@dataclass(frozen=True)
class SyncPayload:
    """Answer to a sync request: either every live bookmark or the missed events."""

    kind: Literal["full", "incremental"]
    current_version: int
    bookmarks: list[dict[str, Any]] = field(default_factory=list)
    events: list[dict[str, Any]] = field(default_factory=list)

    def to_message(self) -> SyncFullMessage | SyncIncrementalMessage:
        if self.kind == "full":
            return SyncFullMessage(bookmarks=self.bookmarks, sync_version=self.current_version)
        return SyncIncrementalMessage(events=self.events, current_version=self.current_version)


@dataclass(frozen=True)
class MutationResult:
    """Outcome of one create/update/move/delete.

    Exactly one of these holds: ``conflict`` is set (nothing was written),
    ``noop`` is true (delete of a missing row, nothing was written), or
    ``event`` and ``sync_version`` describe the committed change.
    """

    bookmark_id: str
    sync_version: int | None = None
    bookmark: dict[str, Any] | None = None
    event: dict[str, Any] | None = None
    conflict: dict[str, Any] | None = None
    noop: bool = False
    local_id: str | None = None

    @property
    def applied(self) -> bool:
        return self.event is not None


class SyncEngine:
    """Full/incremental sync decisions and the optimistic-concurrency mutation protocol."""

    def __init__(
        self,
        session_manager: DatabaseSessionManager,
        *,
        registry: ConnectionRegistry | None = None,
        events_page_limit: int = DEFAULT_EVENTS_PAGE_LIMIT,
        search_limit: int = DEFAULT_SEARCH_LIMIT,
        batch_max_items: int = DEFAULT_BATCH_MAX_ITEMS,
    ) -> None:
        self._session = session_manager
        self._bookmarks = SqliteBookmarkRepositoryAdapter(session_manager)
        self._events = SqliteSyncEventRepositoryAdapter(session_manager)
        self._versions = SqliteSyncVersionRepositoryAdapter(session_manager)
        self._registry = registry
        self._events_page_limit = events_page_limit
        self._search_limit = search_limit
        self.batch_max_items = batch_max_items

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def current_version(self, user_id: str) -> int:
        return await self._versions.async_current_version(user_id)

    async def list_bookmarks(self, user_id: str) -> tuple[list[dict[str, Any]], int]:
        """Live bookmarks and the ledger value they correspond to, read together."""

        def _snapshot() -> tuple[list[dict[str, Any]], int]:
            rows = self._bookmarks.list_all(user_id)
            return [bookmark_to_wire(row) for row in rows], self._versions.current_version(user_id)

        return await self._session._safe_db_operation(
            _snapshot, operation_name="list_bookmarks", read_only=True
        )

    async def get_bookmark(self, user_id: str, bookmark_id: str) -> dict[str, Any] | None:
        row = await self._bookmarks.async_get(bookmark_id, user_id)
        return bookmark_to_wire(row) if row else None

    async def search(self, user_id: str, query: str) -> list[dict[str, Any]]:
        rows = await self._bookmarks.async_search(user_id, query, self._search_limit)
        return [bookmark_to_wire(row) for row in rows]

    async def sync(self, user_id: str, last_sync_version: int) -> SyncPayload:
        """Pick full or incremental sync for a client that has seen ``last_sync_version``.

        A client at 0, or at/after the ledger, gets the full live set. Anyone
        else gets the events after their cursor, unless the log no longer
        reaches back that far, in which case they are forced into a full sync.
        """

        def _decide() -> SyncPayload:
            current = self._versions.current_version(user_id)
            if last_sync_version == 0 or last_sync_version >= current:
                return self._full_payload(user_id, current)

            oldest = self._events.oldest_version(user_id)
            if oldest is None or oldest > last_sync_version + 1:
                logger.info(
                    "sync_range_unavailable",
                    extra={
                        "user_id": user_id,
                        "last_sync_version": last_sync_version,
                        "oldest_retained": oldest,
                    },
                )
                return self._full_payload(user_id, current)

            events = self._events.since(user_id, last_sync_version, self._events_page_limit)
            return SyncPayload(
                kind="incremental",
                current_version=current,
                events=[event_to_wire(event) for event in events],
            )

        payload: SyncPayload = await self._session._safe_db_operation(
            _decide, operation_name="sync_decide", read_only=True
        )
        logger.info(
            "sync_served",
            extra={
                "user_id": user_id,
                "kind": payload.kind,
                "last_sync_version": last_sync_version,
                "current_version": payload.current_version,
                "event_count": len(payload.events),
            },
        )
        return payload

    def _full_payload(self, user_id: str, current: int) -> SyncPayload:
        rows = self._bookmarks.list_all(user_id)
        return SyncPayload(
            kind="full",
            current_version=current,
            bookmarks=[bookmark_to_wire(row) for row in rows],
        )

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def create(
        self, user_id: str, spec: CreateBookmarkRequest, client_id: str
    ) -> MutationResult:
        data = self._normalize_create(spec)

        def _create() -> MutationResult:
            return self._create_one(user_id, data, client_id, spec.local_id)

        result: MutationResult = await self._session._safe_db_transaction(
            _create, operation_name="create_bookmark"
        )
        self._log_result("bookmark_created", user_id, client_id, result)
        return result

    async def create_many(
        self, user_id: str, specs: Sequence[CreateBookmarkRequest], client_id: str
    ) -> list[MutationResult]:
        """Create every spec in order inside one transaction.

        Each create still gets its own ledger bump and event.
        """
        prepared = [(self._normalize_create(spec), spec.local_id) for spec in specs]

        def _create_all() -> list[MutationResult]:
            return [
                self._create_one(user_id, data, client_id, local_id)
                for data, local_id in prepared
            ]

        results: list[MutationResult] = await self._session._safe_db_transaction(
            _create_all, operation_name="create_bookmarks_batch"
        )
        logger.info(
            "bookmarks_batch_created",
            extra={
                "user_id": user_id,
                "client_id": client_id,
                "batch_size": len(results),
                "sync_version": results[-1].sync_version if results else None,
            },
        )
        return results

    async def update(
        self,
        user_id: str,
        bookmark_id: str,
        patch: BookmarkPatch,
        expected_version: int,
        client_id: str,
    ) -> MutationResult:
        """Apply a patch if the row is still at ``expected_version``.

        Raises:
            BookmarkNotFoundError: The user has no bookmark with this id.
        """
        changes = patch.changes()
        wire_changes = patch.changes(by_alias=True)

        def _update() -> MutationResult:
            try:
                row = self._bookmarks.update(bookmark_id, user_id, changes, expected_version)
            except VersionConflictError as exc:
                return self._conflict(bookmark_id, exc)
            return self._commit(user_id, "update", row, wire_changes, client_id)

        result: MutationResult = await self._session._safe_db_transaction(
            _update, operation_name="update_bookmark"
        )
        self._log_result("bookmark_updated", user_id, client_id, result)
        return result

    async def move(
        self,
        user_id: str,
        bookmark_id: str,
        new_parent_id: str | None,
        new_index: int,
        expected_version: int,
        client_id: str,
    ) -> MutationResult:
        """Reparent/reorder a row if it is still at ``expected_version``.

        Raises:
            BookmarkNotFoundError: The user has no bookmark with this id.
        """

        def _move() -> MutationResult:
            try:
                row = self._bookmarks.move(
                    bookmark_id, user_id, new_parent_id, new_index, expected_version
                )
            except VersionConflictError as exc:
                return self._conflict(bookmark_id, exc)
            data = {"parentId": new_parent_id, "sortOrder": new_index}
            return self._commit(user_id, "move", row, data, client_id)

        result: MutationResult = await self._session._safe_db_transaction(
            _move, operation_name="move_bookmark"
        )
        self._log_result("bookmark_moved", user_id, client_id, result)
        return result

    async def delete(
        self, user_id: str, bookmark_id: str, expected_version: int, client_id: str
    ) -> MutationResult:
        """Soft-delete a row. Deleting a missing or already-deleted id is a no-op success."""

        def _delete() -> MutationResult:
            try:
                row = self._bookmarks.soft_delete(bookmark_id, user_id, expected_version)
            except VersionConflictError as exc:
                return self._conflict(bookmark_id, exc)
            if row is None:
                return MutationResult(bookmark_id=bookmark_id, noop=True)
            return self._commit(user_id, "delete", row, {}, client_id)

        result: MutationResult = await self._session._safe_db_transaction(
            _delete, operation_name="delete_bookmark"
        )
        self._log_result("bookmark_deleted", user_id, client_id, result)
        return result

    async def clear(self, user_id: str) -> dict[str, int]:
        """Hard-delete every bookmark and event of the user and reset the ledger to 0."""

        def _clear() -> dict[str, int]:
            bookmarks = self._bookmarks.delete_all_for_user(user_id)
            events = self._events.delete_all_for_user(user_id)
            self._versions.reset(user_id)
            return {"bookmarks": bookmarks, "events": events}

        counts: dict[str, int] = await self._session._safe_db_transaction(
            _clear, operation_name="clear_bookmarks"
        )
        logger.info("bookmarks_cleared", extra={"user_id": user_id, **counts})
        return counts

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    def publish(
        self, user_id: str, result: MutationResult, exclude: Any = None
    ) -> asyncio.Task[int] | None:
        """Push a committed change to the user's other live connections.

        Returns at once; the sends run as a background task, or not at all for
        conflicts, no-ops and engines without a registry.
        """
        message = self._fanout_message(result)
        if self._registry is None or message is None:
            return None
        return self._registry.publish(user_id, message, exclude=exclude)

    @staticmethod
    def _fanout_message(result: MutationResult) -> dict[str, Any] | None:
        if not result.applied or result.event is None:
            return None
        return SyncIncrementalMessage(
            events=[result.event], current_version=result.sync_version or 0
        ).to_wire()

    # -------------------------------------------------------------------------
    # Helpers (run inside the transaction)
    # -------------------------------------------------------------------------

    @staticmethod
    def _normalize_create(spec: CreateBookmarkRequest) -> dict[str, Any]:
        data = spec.to_store()
        if data["is_folder"]:
            data["url"] = None
        elif not data["url"]:
            raise InvalidRequestError(
                "A bookmark that is not a folder requires a url", details={"field": "url"}
            )
        return data

    def _create_one(
        self, user_id: str, data: dict[str, Any], client_id: str, local_id: str | None
    ) -> MutationResult:
        row = self._bookmarks.create(user_id, data)
        result = self._commit(user_id, "create", row, None, client_id)
        return replace(result, local_id=local_id)

    def _commit(
        self,
        user_id: str,
        event_type: str,
        row: dict[str, Any],
        data: dict[str, Any] | None,
        client_id: str,
    ) -> MutationResult:
        bookmark = bookmark_to_wire(row)
        version = self._versions.increment_version(user_id)
        event = self._events.record(
            user_id,
            event_type,
            row["id"],
            bookmark if data is None else data,
            client_id,
            version,
        )
        return MutationResult(
            bookmark_id=row["id"],
            sync_version=version,
            bookmark=bookmark,
            event=event_to_wire(event),
        )

    @staticmethod
    def _conflict(bookmark_id: str, exc: VersionConflictError) -> MutationResult:
        return MutationResult(bookmark_id=bookmark_id, conflict=bookmark_to_wire(exc.current))

    @staticmethod
    def _log_result(event: str, user_id: str, client_id: str, result: MutationResult) -> None:
        if result.conflict is not None:
            logger.info(
                "bookmark_version_conflict",
                extra={
                    "user_id": user_id,
                    "client_id": client_id,
                    "bookmark_id": result.bookmark_id,
                    "server_version": result.conflict.get("syncVersion"),
                },
            )
            return
        logger.info(
            event,
            extra={
                "user_id": user_id,
                "client_id": client_id,
                "bookmark_id": result.bookmark_id,
                "sync_version": result.sync_version,
                "noop": result.noop,
            },
        )
