"""
Authenticated WebSocket connections grouped by user.

The registry is created per application and stored on ``app.state``; the
sync engine holds a reference to push committed changes to a user's other
devices.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any

from bookmark_sync.api.websocket.connection import ClientConnection
from bookmark_sync.core.logging_utils import get_logger

logger = get_logger(__name__)


class ConnectionRegistry:
    def __init__(self) -> None:
        self._by_user: dict[str, set[ClientConnection]] = defaultdict(set)
        self._pending: set[asyncio.Task[int]] = set()

    def register(self, user_id: str, conn: ClientConnection) -> None:
        self._by_user[user_id].add(conn)
        logger.debug(
            "ws_connection_registered",
            extra={
                "user_id": user_id,
                "connection_id": conn.connection_id,
                "user_connections": len(self._by_user[user_id]),
            },
        )

    def unregister(self, user_id: str, conn: ClientConnection) -> None:
        conns = self._by_user.get(user_id)
        if not conns:
            return
        conns.discard(conn)
        if not conns:
            del self._by_user[user_id]

    def connections(self, user_id: str) -> list[ClientConnection]:
        return list(self._by_user.get(user_id, ()))

    def all_connections(self) -> list[ClientConnection]:
        return [conn for conns in self._by_user.values() for conn in conns]

    def __len__(self) -> int:
        return sum(len(conns) for conns in self._by_user.values())

    async def broadcast(
        self,
        user_id: str,
        message: dict[str, Any],
        exclude: ClientConnection | None = None,
    ) -> int:
        """Send ``message`` to every open connection of ``user_id`` except ``exclude``.

        Returns the number of connections the frame was delivered to. A failed
        send is logged and does not stop delivery to the remaining sockets.
        """
        targets = [
            conn for conn in self.connections(user_id) if conn is not exclude and conn.is_open
        ]
        if not targets:
            return 0

        results = await asyncio.gather(
            *(conn.send(message) for conn in targets), return_exceptions=True
        )
        delivered = 0
        for conn, result in zip(targets, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning(
                    "ws_broadcast_send_failed",
                    extra={
                        "user_id": user_id,
                        "connection_id": conn.connection_id,
                        "error_type": type(result).__name__,
                        "error": str(result),
                    },
                )
                continue
            delivered += 1

        logger.debug(
            "ws_broadcast_sent",
            extra={
                "user_id": user_id,
                "message_type": message.get("type"),
                "delivered": delivered,
                "targets": len(targets),
            },
        )
        return delivered

    def publish(
        self,
        user_id: str,
        message: dict[str, Any],
        exclude: ClientConnection | None = None,
    ) -> asyncio.Task[int]:
        """Run ``broadcast`` in the background so the caller never waits on peers.

        Tasks start in creation order and each connection sends under a FIFO
        lock, so a peer still sees frames in the order they were published.
        """
        task = asyncio.create_task(
            self.broadcast(user_id, message, exclude), name=f"ws-broadcast-{user_id}"
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every published broadcast to finish."""
        while self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def close_all(self, code: int, reason: str | None = None) -> int:
        """Close every registered socket; used on shutdown."""
        for task in list(self._pending):
            task.cancel()
        await self.drain()
        conns = self.all_connections()
        for conn in conns:
            await conn.close(code, reason)
        self._by_user.clear()
        if conns:
            logger.info("ws_connections_closed", extra={"count": len(conns), "code": code})
        return len(conns)
