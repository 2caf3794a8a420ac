"""Per-socket state for the ``/ws`` endpoint."""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from bookmark_sync.core.logging_utils import generate_correlation_id, get_logger

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class ClientConnection:
    """One accepted WebSocket plus what we learned about it during auth.

    Sends are serialised with a lock so the heartbeat probe and a broadcast
    can never interleave frames on the same socket.
    """

    def __init__(self, websocket: WebSocket, *, send_timeout: float = 10.0) -> None:
        self.websocket = websocket
        self.connection_id = generate_correlation_id()
        self.user_id: str | None = None
        self.client_id: str | None = None
        self.state = ConnectionState.CONNECTED
        self.last_activity = time.monotonic()
        self._send_timeout = send_timeout
        self._send_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return (
            f"ClientConnection(id={self.connection_id!r}, user={self.user_id!r}, "
            f"client={self.client_id!r}, state={self.state.value})"
        )

    @property
    def is_authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED

    @property
    def is_open(self) -> bool:
        return (
            self.state is not ConnectionState.CLOSED
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def idle_seconds(self, now: float | None = None) -> float:
        return (now if now is not None else time.monotonic()) - self.last_activity

    def authenticate(self, user_id: str, client_id: str) -> None:
        self.user_id = user_id
        self.client_id = client_id
        self.state = ConnectionState.AUTHENTICATED

    async def send(self, message: dict[str, Any]) -> None:
        """Send one JSON frame.

        Raises:
            asyncio.TimeoutError: The peer did not drain the frame in time.
        """
        async with self._send_lock:
            await asyncio.wait_for(self.websocket.send_json(message), timeout=self._send_timeout)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        if self.websocket.application_state != WebSocketState.CONNECTED:
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except RuntimeError as exc:
            # Socket already torn down by the peer.
            logger.debug(
                "ws_close_skipped",
                extra={"connection_id": self.connection_id, "error": str(exc)},
            )
