"""Client-side sync state.

Everything the uploader needs between runs (token, server URL, the
local-to-remote id map, last sync markers) lives in a ``SyncSession`` that is
re-hydrated from its ``KeyValueStore`` before every operation. The session
object may be recreated at any time; storage is the source of truth.
"""

from __future__ import annotations

import re
from typing import Any

from bookmark_sync.client.storage import KeyValueStore
from bookmark_sync.core.logging_utils import get_logger

logger = get_logger(__name__)

DEFAULT_SERVER_URL = "http://localhost:3000"

SETTINGS_KEY = "settings"
SYNC_VERSION_KEY = "syncVersion"
LAST_SYNC_KEY = "lastSync"
ID_MAP_KEY = "idMap"

# The browser's synthetic root; it never exists on the server.
ROOT_LOCAL_ID = "0"


class SyncSession:
    def __init__(self, store: KeyValueStore, *, default_server_url: str = DEFAULT_SERVER_URL):
        self.store = store
        self.default_server_url = default_server_url
        self.auth_token: str | None = None
        self.server_url: str = default_server_url
        self.sync_enabled = True
        self.last_sync_time: int | None = None
        self.sync_version = 0
        self.local_to_remote: dict[str, str] = {}
        self.remote_to_local: dict[str, str] = {}
        self._restored = False

    @property
    def is_authenticated(self) -> bool:
        return bool(self.auth_token)

    async def restore(self, *, force: bool = False) -> bool:
        """Load state from storage. Returns whether a token is present."""
        if self._restored and self.auth_token and not force:
            return True

        settings = await self._settings()
        self.auth_token = settings.get("authToken") or None
        self.server_url = settings.get("serverUrl") or self.default_server_url
        self.sync_enabled = bool(settings.get("syncEnabled", True))
        self.last_sync_time = await self.store.get(LAST_SYNC_KEY)
        self.sync_version = int(await self.store.get(SYNC_VERSION_KEY, 0) or 0)
        if self.auth_token:
            self._load_id_map(await self.store.get(ID_MAP_KEY, {}) or {})
        self._restored = True
        logger.debug(
            "client_session_restored",
            extra={"authenticated": self.is_authenticated, "mapped_ids": len(self.local_to_remote)},
        )
        return self.is_authenticated

    async def save_settings(self, **changes: Any) -> None:
        """Merge camelCase setting keys into the stored settings."""
        settings = await self._settings()
        settings.update(changes)
        await self.store.set(SETTINGS_KEY, settings)
        self._restored = False

    async def login_with_token(self, token: str) -> None:
        await self.save_settings(authToken=token)
        self.auth_token = token
        self._load_id_map(await self.store.get(ID_MAP_KEY, {}) or {})
        self._restored = True
        logger.info("client_logged_in")

    async def logout(self) -> None:
        await self.save_settings(authToken=None)
        await self.store.set(ID_MAP_KEY, {})
        self.auth_token = None
        self.local_to_remote.clear()
        self.remote_to_local.clear()
        self._restored = False
        logger.info("client_logged_out")

    async def persist_id_map(self) -> None:
        await self.store.set(ID_MAP_KEY, dict(self.local_to_remote))

    async def mark_synced(self, timestamp_ms: int, sync_version: int | None = None) -> None:
        self.last_sync_time = timestamp_ms
        await self.store.set(LAST_SYNC_KEY, timestamp_ms)
        if sync_version is not None:
            self.sync_version = sync_version
            await self.store.set(SYNC_VERSION_KEY, sync_version)

    def map_id(self, local_id: str, remote_id: str) -> None:
        self.local_to_remote[local_id] = remote_id
        self.remote_to_local[remote_id] = local_id

    def unmap_id(self, local_id: str) -> str | None:
        remote_id = self.local_to_remote.pop(local_id, None)
        if remote_id is not None:
            self.remote_to_local.pop(remote_id, None)
        return remote_id

    def reset_id_map(self) -> None:
        self.local_to_remote.clear()
        self.remote_to_local.clear()

    def remote_parent_id(self, local_parent_id: str | None) -> str | None:
        """Server id for a local parent; ``None`` for the root or an unmapped parent."""
        if not local_parent_id or local_parent_id == ROOT_LOCAL_ID:
            return None
        return self.local_to_remote.get(local_parent_id)

    @property
    def api_url(self) -> str:
        """HTTP base URL derived from the configured server URL.

        A WebSocket URL is accepted: the scheme is switched to http(s) and a
        trailing ``/ws`` path is dropped.
        """
        url = (self.server_url or self.default_server_url).rstrip("/")
        if url.startswith(("ws://", "wss://")):
            url = "http" + url[2:]
            url = re.sub(r"/ws$", "", url)
        return url

    async def _settings(self) -> dict[str, Any]:
        stored = await self.store.get(SETTINGS_KEY) or {}
        return {"syncEnabled": True, "serverUrl": self.default_server_url, **stored}

    def _load_id_map(self, id_map: dict[str, str]) -> None:
        self.local_to_remote = dict(id_map)
        self.remote_to_local = {remote: local for local, remote in id_map.items()}
