"""SQLite implementation of the per-user version ledger."""

from __future__ import annotations

from bookmark_sync.core.time_utils import utc_now
from bookmark_sync.db.models import SyncVersion
from bookmark_sync.infrastructure.persistence.sqlite.base import SqliteBaseRepository


class SqliteSyncVersionRepositoryAdapter(SqliteBaseRepository):
    """Adapter for ``sync_versions``.

    A user's row appears the first time they mutate anything; until then the
    version reads as 0. ``increment_version`` must run inside the same
    transaction as the mutation and event it accounts for.
    """

    def current_version(self, user_id: str) -> int:
        row = SyncVersion.get_or_none(SyncVersion.user_id == user_id)
        return row.current_version if row else 0

    def increment_version(self, user_id: str) -> int:
        row, _ = SyncVersion.get_or_create(user_id=user_id, defaults={"current_version": 0})
        (
            SyncVersion.update(
                current_version=SyncVersion.current_version + 1,
                updated_at=utc_now(),
            )
            .where(SyncVersion.user_id == user_id)
            .execute()
        )
        return row.current_version + 1

    def reset(self, user_id: str) -> None:
        updated = (
            SyncVersion.update(current_version=0, updated_at=utc_now())
            .where(SyncVersion.user_id == user_id)
            .execute()
        )
        if not updated:
            SyncVersion.create(user_id=user_id, current_version=0)

    async def async_current_version(self, user_id: str) -> int:
        return await self._execute(
            self.current_version, user_id, operation_name="current_version", read_only=True
        )
