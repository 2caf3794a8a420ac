"""SQLite implementation of the append-only sync event log."""

from __future__ import annotations

import uuid
from typing import Any

from peewee import fn

from bookmark_sync.core.time_utils import now_ms
from bookmark_sync.db.models import SyncEvent, model_to_dict
from bookmark_sync.infrastructure.persistence.sqlite.base import SqliteBaseRepository

EVENT_TYPES = ("create", "update", "delete", "move")
DEFAULT_PAGE_LIMIT = 1000


class SqliteSyncEventRepositoryAdapter(SqliteBaseRepository):
    """Adapter for sync event records. Rows are never updated."""

    def record(
        self,
        user_id: str,
        event_type: str,
        bookmark_id: str,
        data: dict[str, Any],
        client_id: str,
        sync_version: int,
    ) -> dict[str, Any]:
        if event_type not in EVENT_TYPES:
            msg = f"Unknown sync event type: {event_type}"
            raise ValueError(msg)
        record = SyncEvent.create(
            id=str(uuid.uuid4()),
            user_id=user_id,
            type=event_type,
            bookmark_id=bookmark_id,
            data=data,
            timestamp=now_ms(),
            client_id=client_id,
            sync_version=sync_version,
        )
        return model_to_dict(record) or {}

    def since(
        self, user_id: str, version: int, limit: int = DEFAULT_PAGE_LIMIT
    ) -> list[dict[str, Any]]:
        """Events with ``sync_version > version``, ascending, at most ``limit``.

        Callers page by passing the last returned ``sync_version`` back in.
        """
        query = (
            SyncEvent.select()
            .where((SyncEvent.user_id == user_id) & (SyncEvent.sync_version > version))
            .order_by(SyncEvent.sync_version)
            .limit(limit)
        )
        return [model_to_dict(row) or {} for row in query]

    def oldest_version(self, user_id: str) -> int | None:
        """Lowest retained ledger value, or None when the log is empty."""
        return (
            SyncEvent.select(fn.MIN(SyncEvent.sync_version))
            .where(SyncEvent.user_id == user_id)
            .scalar()
        )

    def delete_all_for_user(self, user_id: str) -> int:
        return SyncEvent.delete().where(SyncEvent.user_id == user_id).execute()
