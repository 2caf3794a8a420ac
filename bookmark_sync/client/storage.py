"""Key-value persistence for the sync client.

The browser extension this client models keeps its state in an async
key-value area; ``KeyValueStore`` is that capability, injected into
``SyncSession`` so state survives restarts and tests can use memory.
"""

from __future__ import annotations

import asyncio
import copy
import json
import os
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from bookmark_sync.core.logging_utils import get_logger

logger = get_logger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    async def get(self, key: str, default: Any = None) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def clear(self) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store. Values are deep-copied in and out like a real store."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def clear(self) -> None:
        self._data.clear()


class JsonFileKeyValueStore:
    """Store backed by one JSON document on disk.

    Every write rewrites the whole file through a temp file and ``os.replace``
    so a crash never leaves a half-written document behind.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("client_store_corrupt", extra={"path": str(self.path)})
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    async def get(self, key: str, default: Any = None) -> Any:
        data = await asyncio.to_thread(self._read)
        return data.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            data[key] = value
            await asyncio.to_thread(self._write, data)

    async def clear(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write, {})
