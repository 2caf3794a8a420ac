"""Upload a local bookmark tree to the sync server over REST.

Two bulk modes mirror the browser extension:

* ``full_sync`` clears the server, forgets every id mapping and re-uploads
  the whole tree.
* ``incremental_sync`` uploads only nodes that have no server id yet.

Both sort nodes by depth so a parent always exists (and is mapped) before
its children are sent, and upload each depth level in batches via
``POST /api/bookmarks/batch``, falling back to one ``POST /api/bookmarks``
per node when a batch request fails. The ``push_*`` methods forward single
live edits.
"""

from __future__ import annotations

import asyncio
import itertools
import random
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from bookmark_sync.client.session import ROOT_LOCAL_ID, SyncSession
from bookmark_sync.core.logging_utils import get_logger
from bookmark_sync.core.time_utils import now_ms

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from typing import Self

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 50

# HTTP status codes that should trigger a retry
RETRYABLE_STATUS_CODES = {408, 429, 502, 503, 504}

DEFAULT_MAX_RETRIES = 2
DEFAULT_BASE_DELAY = 0.5  # seconds
DEFAULT_MAX_DELAY = 10.0  # seconds
DEFAULT_JITTER = 0.1


class BookmarkSyncClientError(Exception):
    """Base exception for sync client errors."""


def _is_retryable_error(exc: Exception) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    # Only failures where the request never reached the server; a timed-out
    # create may already have been applied.
    return isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))


def _calculate_delay(attempt: int, base_delay: float, max_delay: float, jitter: float) -> float:
    delay = min(base_delay * (2**attempt), max_delay)
    return delay + delay * jitter * random.random()


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    jitter: float = DEFAULT_JITTER,
    operation_name: str = "operation",
) -> T:
    """Execute an async function with exponential backoff retry.

    Non-retryable errors propagate unchanged.

    Raises:
        BookmarkSyncClientError: If all retries are exhausted
    """
    for attempt in range(max_retries + 1):
        try:
            return await func()
        except Exception as e:
            if not _is_retryable_error(e):
                raise

            if attempt == max_retries:
                logger.error(
                    "client_retry_exhausted",
                    extra={"operation": operation_name, "attempts": attempt + 1, "error": str(e)},
                )
                raise BookmarkSyncClientError(
                    f"{operation_name} failed after {attempt + 1} attempts: {e}"
                ) from e

            delay = _calculate_delay(attempt, base_delay, max_delay, jitter)
            logger.warning(
                "client_retry_attempt",
                extra={
                    "operation": operation_name,
                    "attempt": attempt + 1,
                    "max_retries": max_retries,
                    "delay_seconds": round(delay, 2),
                    "error": str(e),
                },
            )
            await asyncio.sleep(delay)

    raise BookmarkSyncClientError(f"{operation_name} failed")


# ---------------------------------------------------------------------------
# Local tree
# ---------------------------------------------------------------------------


@dataclass
class LocalNode:
    """A node of the browser's bookmark tree; folders have no ``url``."""

    id: str
    title: str = ""
    url: str | None = None
    parent_id: str | None = None
    index: int = 0
    children: list[LocalNode] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LocalNode:
        """Build from the browser API's camelCase node shape."""
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            url=data.get("url") or None,
            parent_id=data.get("parentId"),
            index=data.get("index") or 0,
            children=[cls.from_dict(child) for child in data.get("children") or []],
        )


@dataclass(frozen=True)
class FlatNode:
    id: str
    parent_id: str | None
    title: str
    url: str | None
    index: int
    depth: int


def flatten_local_tree(nodes: Iterable[LocalNode], depth: int = 0) -> list[FlatNode]:
    """Pre-order walk annotating each node with its depth.

    The synthetic root (id ``"0"``) is not emitted but still counts as a level,
    so top-level folders come out at depth 1.
    """
    result: list[FlatNode] = []
    for node in nodes:
        if node.id != ROOT_LOCAL_ID:
            result.append(
                FlatNode(
                    id=node.id,
                    parent_id=node.parent_id,
                    title=node.title,
                    url=node.url,
                    index=node.index,
                    depth=depth,
                )
            )
        if node.children:
            result.extend(flatten_local_tree(node.children, depth + 1))
    return result


@dataclass
class UploadReport:
    attempted: int = 0
    uploaded: int = 0

    @property
    def failed(self) -> int:
        return self.attempted - self.uploaded


# ---------------------------------------------------------------------------
# Uploader
# ---------------------------------------------------------------------------


class BookmarkUploader:
    """Async REST client pushing local bookmarks to the server.

    Use as an async context manager; entering restores the session so the
    base URL and token reflect storage.
    """

    def __init__(
        self,
        session: SyncSession,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        timeout: float = 30.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_BASE_DELAY,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.session = session
        self.batch_size = batch_size
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.is_syncing = False

    async def __aenter__(self) -> Self:
        await self.session.restore()
        self._client = httpx.AsyncClient(
            base_url=self.session.api_url,
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise BookmarkSyncClientError("Client not initialized. Use async context manager.")
        return self._client

    # ------------------------------------------------------------------
    # Bulk sync
    # ------------------------------------------------------------------

    async def full_sync(self, tree: Sequence[LocalNode]) -> UploadReport | None:
        """Replace everything on the server with ``tree``.

        Returns ``None`` when skipped (not logged in, or a run is in progress).
        """
        if not await self._begin("full"):
            return None
        try:
            await self._request("POST", "/api/bookmarks/clear", operation_name="clear_bookmarks")
            self.session.reset_id_map()

            nodes = flatten_local_tree(tree)
            report = await self._upload_by_depth(nodes)

            await self.session.persist_id_map()
            await self.session.mark_synced(now_ms())
            logger.info(
                "client_full_sync_completed",
                extra={"attempted": report.attempted, "uploaded": report.uploaded},
            )
            return report
        finally:
            self.is_syncing = False

    async def incremental_sync(self, tree: Sequence[LocalNode]) -> UploadReport | None:
        """Upload nodes that have no server id yet."""
        if not await self._begin("incremental"):
            return None
        try:
            pending = [
                node
                for node in flatten_local_tree(tree)
                if node.id not in self.session.local_to_remote
            ]
            report = await self._upload_by_depth(pending) if pending else UploadReport()
            if pending:
                await self.session.persist_id_map()
            await self.session.mark_synced(now_ms())
            logger.info(
                "client_incremental_sync_completed",
                extra={"attempted": report.attempted, "uploaded": report.uploaded},
            )
            return report
        finally:
            self.is_syncing = False

    async def _begin(self, kind: str) -> bool:
        if self.is_syncing:
            logger.info("client_sync_already_running", extra={"kind": kind})
            return False
        await self.session.restore()
        if not self.session.is_authenticated:
            logger.info("client_sync_skipped_unauthenticated", extra={"kind": kind})
            return False
        self.is_syncing = True
        return True

    async def _upload_by_depth(self, nodes: list[FlatNode]) -> UploadReport:
        report = UploadReport()
        ordered = sorted(nodes, key=lambda node: node.depth)
        for _depth, group in itertools.groupby(ordered, key=lambda node: node.depth):
            level = list(group)
            for start in range(0, len(level), self.batch_size):
                batch = level[start : start + self.batch_size]
                report.attempted += len(batch)
                report.uploaded += await self._upload_batch(batch)
        return report

    async def _upload_batch(self, batch: list[FlatNode]) -> int:
        payload = {"bookmarks": [self._create_payload(node) for node in batch]}
        try:
            response = await self._request(
                "POST", "/api/bookmarks/batch", json=payload, operation_name="create_batch"
            )
        except (httpx.HTTPError, BookmarkSyncClientError) as exc:
            logger.warning(
                "client_batch_upload_failed",
                extra={"batch_size": len(batch), "error": str(exc)},
            )
            uploaded = 0
            for node in batch:
                if await self._upload_single(node):
                    uploaded += 1
            return uploaded

        uploaded = 0
        for item in response.json().get("bookmarks") or []:
            remote_id, local_id = item.get("id"), item.get("localId")
            if remote_id and local_id:
                self.session.map_id(local_id, remote_id)
                uploaded += 1
        return uploaded

    async def _upload_single(self, node: FlatNode) -> bool:
        try:
            response = await self._request(
                "POST",
                "/api/bookmarks",
                json=self._create_payload(node),
                operation_name="create_bookmark",
            )
        except (httpx.HTTPError, BookmarkSyncClientError) as exc:
            logger.warning(
                "client_bookmark_upload_failed",
                extra={"local_id": node.id, "title": node.title, "error": str(exc)},
            )
            return False
        remote_id = self._remote_id(response)
        if remote_id:
            self.session.map_id(node.id, remote_id)
        return remote_id is not None

    def _create_payload(self, node: FlatNode) -> dict[str, Any]:
        return {
            "localId": node.id,
            "parentId": self.session.remote_parent_id(node.parent_id),
            "title": node.title,
            "url": node.url or None,
            "isFolder": not node.url,
            "sortOrder": node.index,
        }

    # ------------------------------------------------------------------
    # Live changes
    # ------------------------------------------------------------------

    async def push_created(self, node: LocalNode) -> str | None:
        """Forward a bookmark created locally; returns its server id."""
        if not await self._can_push():
            return None
        flat = FlatNode(node.id, node.parent_id, node.title, node.url, node.index, 0)
        try:
            response = await self._request(
                "POST",
                "/api/bookmarks",
                json=self._create_payload(flat),
                operation_name="push_created",
            )
        except (httpx.HTTPError, BookmarkSyncClientError) as exc:
            logger.warning("client_push_failed", extra={"op": "create", "error": str(exc)})
            return None
        remote_id = self._remote_id(response)
        if remote_id:
            self.session.map_id(node.id, remote_id)
            await self.session.persist_id_map()
        return remote_id

    async def push_changed(
        self, local_id: str, *, title: str | None = None, url: str | None = None
    ) -> bool:
        if not await self._can_push():
            return False
        remote_id = self.session.local_to_remote.get(local_id)
        if remote_id is None:
            return False
        body = {key: value for key, value in (("title", title), ("url", url)) if value is not None}
        return await self._push("PUT", f"/api/bookmarks/{remote_id}", body, "update")

    async def push_removed(self, local_id: str) -> bool:
        if not await self._can_push():
            return False
        remote_id = self.session.local_to_remote.get(local_id)
        if remote_id is None:
            return False
        if not await self._push("DELETE", f"/api/bookmarks/{remote_id}", None, "delete"):
            return False
        self.session.unmap_id(local_id)
        await self.session.persist_id_map()
        return True

    async def push_moved(self, local_id: str, *, parent_id: str | None, index: int) -> bool:
        if not await self._can_push():
            return False
        remote_id = self.session.local_to_remote.get(local_id)
        if remote_id is None:
            return False
        body = {"parentId": self.session.remote_parent_id(parent_id), "sortOrder": index}
        return await self._push("PUT", f"/api/bookmarks/{remote_id}/move", body, "move")

    async def _can_push(self) -> bool:
        # Bulk runs own the id map; live edits during one are picked up later.
        if self.is_syncing:
            return False
        return await self.session.restore()

    async def _push(self, method: str, path: str, body: dict[str, Any] | None, op: str) -> bool:
        try:
            await self._request(method, path, json=body, operation_name=f"push_{op}")
        except (httpx.HTTPError, BookmarkSyncClientError) as exc:
            logger.warning("client_push_failed", extra={"op": op, "path": path, "error": str(exc)})
            return False
        return True

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        operation_name: str,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.session.auth_token}"}

        async def _send() -> httpx.Response:
            response = await self.client.request(method, path, json=json, headers=headers)
            response.raise_for_status()
            return response

        return await retry_with_backoff(
            _send,
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            operation_name=operation_name,
        )

    @staticmethod
    def _remote_id(response: httpx.Response) -> str | None:
        data = response.json()
        if not isinstance(data, dict):
            return None
        remote_id = (data.get("bookmark") or {}).get("id") or data.get("id")
        return str(remote_id) if remote_id else None
