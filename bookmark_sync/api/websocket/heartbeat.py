"""Application-level liveness checks for registered sockets."""

from __future__ import annotations

import asyncio
import contextlib
import time

from bookmark_sync.api.exceptions import CloseCode
from bookmark_sync.api.models.messages import HeartbeatPingMessage
from bookmark_sync.api.websocket.registry import ConnectionRegistry
from bookmark_sync.core.logging_utils import get_logger

logger = get_logger(__name__)


class HeartbeatMonitor:
    """Every ``interval`` seconds, drop silent connections and probe the rest.

    Any inbound frame refreshes a connection's ``last_activity``, so a client
    answering the ``ping`` probe (or doing anything else) stays registered.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        *,
        interval: float = 30.0,
        client_timeout: float = 60.0,
    ) -> None:
        self._registry = registry
        self._interval = interval
        self._client_timeout = client_timeout
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="ws-heartbeat")
        logger.info(
            "ws_heartbeat_started",
            extra={"interval": self._interval, "client_timeout": self._client_timeout},
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.check_once()
            except Exception:
                logger.exception("ws_heartbeat_check_failed")

    async def check_once(self, now: float | None = None) -> tuple[int, int]:
        """Run one sweep. Returns ``(probed, closed)``."""
        now = time.monotonic() if now is None else now
        closed = 0
        alive = []
        for conn in self._registry.all_connections():
            if conn.idle_seconds(now) > self._client_timeout or not conn.is_open:
                logger.info(
                    "ws_client_timed_out",
                    extra={
                        "connection_id": conn.connection_id,
                        "user_id": conn.user_id,
                        "idle_seconds": round(conn.idle_seconds(now), 1),
                    },
                )
                if conn.user_id is not None:
                    self._registry.unregister(conn.user_id, conn)
                await conn.close(CloseCode.GOING_AWAY, "Heartbeat timeout")
                closed += 1
                continue
            alive.append(conn)

        probe = HeartbeatPingMessage().to_wire()
        results = await asyncio.gather(
            *(conn.send(probe) for conn in alive), return_exceptions=True
        )
        probed = 0
        for conn, result in zip(alive, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning(
                    "ws_heartbeat_send_failed",
                    extra={"connection_id": conn.connection_id, "error": str(result)},
                )
                continue
            probed += 1
        return probed, closed
