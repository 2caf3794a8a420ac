"""Connection registry fan-out and heartbeat sweeps, without a real socket."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from starlette.websockets import WebSocketState

from bookmark_sync.api.exceptions import AuthenticationError, CloseCode
from bookmark_sync.api.routers.auth.tokens import TokenVerifier
from bookmark_sync.api.services.sync_engine import SyncEngine
from bookmark_sync.api.websocket.connection import ClientConnection, ConnectionState
from bookmark_sync.api.websocket.heartbeat import HeartbeatMonitor
from bookmark_sync.api.websocket.registry import ConnectionRegistry
from bookmark_sync.api.websocket.router import WebSocketSession


class FakeWebSocket:
    def __init__(self, *, fail_send: bool = False, hang: bool = False) -> None:
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self.closed_with: tuple[int, str | None] | None = None
        self.fail_send = fail_send
        self.hang = hang

    async def send_json(self, message: dict[str, Any]) -> None:
        if self.fail_send:
            raise RuntimeError("socket gone")
        if self.hang:
            await asyncio.sleep(10)
        self.sent.append(message)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed_with = (code, reason)
        self.application_state = WebSocketState.DISCONNECTED


def _conn(
    user_id: str, send_timeout: float = 0.05, **ws_kwargs: Any
) -> tuple[ClientConnection, FakeWebSocket]:
    ws = FakeWebSocket(**ws_kwargs)
    conn = ClientConnection(ws, send_timeout=send_timeout)  # type: ignore[arg-type]
    conn.authenticate(user_id, f"{user_id}-device")
    return conn, ws


class TestClientConnection:
    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        conn, ws = _conn("u1")

        await conn.close(CloseCode.AUTH_FAILED, "bye")
        await conn.close(CloseCode.NORMAL)

        assert ws.closed_with == (4001, "bye")
        assert conn.state is ConnectionState.CLOSED
        assert not conn.is_open

    @pytest.mark.asyncio
    async def test_send_times_out(self):
        conn, _ = _conn("u1", hang=True)
        with pytest.raises(asyncio.TimeoutError):
            await conn.send({"type": "ping"})

    def test_idle_seconds(self):
        conn, _ = _conn("u1")
        conn.last_activity = 100.0
        assert conn.idle_seconds(now=130.0) == 30.0


class TestRegistry:
    @pytest.mark.asyncio
    async def test_broadcast_tolerates_failed_send(self):
        registry = ConnectionRegistry()
        good, good_ws = _conn("u1")
        broken, _ = _conn("u1", fail_send=True)
        origin, origin_ws = _conn("u1")
        for conn in (good, broken, origin):
            registry.register("u1", conn)

        delivered = await registry.broadcast("u1", {"type": "x"}, exclude=origin)

        assert delivered == 1
        assert good_ws.sent == [{"type": "x"}]
        assert origin_ws.sent == []

    def test_unregister_drops_empty_users(self):
        registry = ConnectionRegistry()
        conn, _ = _conn("u1")
        registry.register("u1", conn)
        assert len(registry) == 1

        registry.unregister("u1", conn)
        registry.unregister("u1", conn)

        assert len(registry) == 0
        assert registry.connections("u1") == []

    @pytest.mark.asyncio
    async def test_close_all_uses_given_code(self):
        registry = ConnectionRegistry()
        sockets = []
        for user in ("a", "b"):
            conn, ws = _conn(user)
            registry.register(user, conn)
            sockets.append(ws)

        closed = await registry.close_all(CloseCode.MAINTENANCE, "Server shutting down")

        assert closed == 2
        assert len(registry) == 0
        assert [ws.closed_with for ws in sockets] == [(4004, "Server shutting down")] * 2

    @pytest.mark.asyncio
    async def test_publish_returns_before_slow_peer_drains(self):
        registry = ConnectionRegistry()
        slow, slow_ws = _conn("u1", send_timeout=5.0, hang=True)
        fast, fast_ws = _conn("u1")
        registry.register("u1", slow)
        registry.register("u1", fast)

        task = registry.publish("u1", {"type": "x"})
        assert not task.done()

        await asyncio.sleep(0.05)
        assert fast_ws.sent == [{"type": "x"}]
        assert slow_ws.sent == []

        await registry.close_all(CloseCode.MAINTENANCE)
        assert task.cancelled()
        await registry.drain()


class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_probes_live_and_drops_silent_connections(self):
        registry = ConnectionRegistry()
        live, live_ws = _conn("u1")
        silent, silent_ws = _conn("u1")
        live.last_activity = 95.0
        silent.last_activity = 10.0
        registry.register("u1", live)
        registry.register("u1", silent)
        monitor = HeartbeatMonitor(registry, interval=30, client_timeout=60)

        probed, closed = await monitor.check_once(now=100.0)

        assert (probed, closed) == (1, 1)
        assert live_ws.sent[0]["type"] == "ping"
        assert silent_ws.closed_with == (CloseCode.GOING_AWAY, "Heartbeat timeout")
        assert registry.connections("u1") == [live]

    @pytest.mark.asyncio
    async def test_peer_closed_socket_is_reaped(self):
        registry = ConnectionRegistry()
        conn, ws = _conn("u1")
        ws.client_state = WebSocketState.DISCONNECTED
        registry.register("u1", conn)

        probed, closed = await HeartbeatMonitor(registry).check_once()

        assert (probed, closed) == (0, 1)
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_stuck_sockets_do_not_delay_others_heartbeat(self):
        registry = ConnectionRegistry()
        live, live_ws = _conn("u1")
        registry.register("u1", live)
        for _ in range(3):
            stuck, _ = _conn("u1", send_timeout=0.3, hang=True)
            registry.register("u1", stuck)
        monitor = HeartbeatMonitor(registry, interval=30, client_timeout=60)

        probed, closed = await asyncio.wait_for(monitor.check_once(), timeout=0.8)

        assert (probed, closed) == (1, 0)
        assert live_ws.sent[0]["type"] == "ping"

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        monitor = HeartbeatMonitor(ConnectionRegistry(), interval=0.01, client_timeout=1)

        monitor.start()
        assert monitor.running
        await asyncio.sleep(0.03)
        await monitor.stop()

        assert not monitor.running


class TestSession:
    @pytest.mark.asyncio
    async def test_stalled_peer_does_not_delay_originator(self, session_manager, auth_config):
        registry = ConnectionRegistry()
        session = WebSocketSession(
            _conn("u1")[0],
            engine=SyncEngine(session_manager, registry=registry),
            verifier=TokenVerifier(auth_config),
            registry=registry,
        )
        origin_ws = session.conn.websocket
        stalled, stalled_ws = _conn("u1", send_timeout=5.0, hang=True)
        registry.register("u1", session.conn)
        registry.register("u1", stalled)
        create = {
            "type": "bookmark_create",
            "requestId": "r1",
            "data": {"title": "x", "url": "https://x.example"},
        }

        await asyncio.wait_for(session.handle(json.dumps(create)), timeout=1.0)
        await asyncio.wait_for(session.handle(json.dumps({"type": "ping"})), timeout=0.5)

        assert [m["type"] for m in origin_ws.sent] == ["bookmark_ack", "pong"]
        assert stalled_ws.sent == []
        await registry.close_all(CloseCode.MAINTENANCE)

    def test_identity_is_required_after_auth_only(self, session_manager, auth_config):
        ws = FakeWebSocket()
        conn = ClientConnection(ws)  # type: ignore[arg-type]
        registry = ConnectionRegistry()
        session = WebSocketSession(
            conn,
            engine=SyncEngine(session_manager, registry=registry),
            verifier=TokenVerifier(auth_config),
            registry=registry,
        )

        with pytest.raises(AuthenticationError):
            _ = session.user_id
        with pytest.raises(AuthenticationError):
            _ = session.client_id

        conn.authenticate("u1", "laptop")
        assert (session.user_id, session.client_id) == ("u1", "laptop")
