"""Service layer for the sync API.

The sync engine sits between the transports (REST routes, WebSocket
sessions) and the SQLite repositories.
"""

from bookmark_sync.api.services.sync_engine import MutationResult, SyncEngine, SyncPayload

__all__ = ["MutationResult", "SyncEngine", "SyncPayload"]
