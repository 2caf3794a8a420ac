"""SQLite repository adapters.

Each adapter wraps one table behind the Peewee models in
``bookmark_sync.db.models``.
"""

from bookmark_sync.infrastructure.persistence.sqlite.repositories.bookmark_repository import (
    SqliteBookmarkRepositoryAdapter,
)
from bookmark_sync.infrastructure.persistence.sqlite.repositories.sync_event_repository import (
    SqliteSyncEventRepositoryAdapter,
)
from bookmark_sync.infrastructure.persistence.sqlite.repositories.sync_version_repository import (
    SqliteSyncVersionRepositoryAdapter,
)

__all__ = [
    "SqliteBookmarkRepositoryAdapter",
    "SqliteSyncEventRepositoryAdapter",
    "SqliteSyncVersionRepositoryAdapter",
]
