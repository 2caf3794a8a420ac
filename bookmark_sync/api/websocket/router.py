"""
``/ws`` endpoint: authentication handshake, sync requests and live mutations.

Each socket is served by its own task. Frames are processed in arrival order;
errors are reported as ``error`` messages and never close the socket, except a
failed ``auth`` which closes with 4001.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from bookmark_sync.api.exceptions import AuthenticationError, CloseCode, ErrorCode
from bookmark_sync.api.models.messages import (
    PRE_AUTH_TYPES,
    AuthErrorMessage,
    AuthMessage,
    AuthRequiredMessage,
    AuthSuccessMessage,
    BookmarkAckMessage,
    BookmarkCreateMessage,
    BookmarkDeleteMessage,
    BookmarkMoveMessage,
    BookmarkUpdateMessage,
    ConflictMessage,
    ErrorMessage,
    MessageParseError,
    PingMessage,
    PongMessage,
    SyncClearMessage,
    SyncRequestMessage,
    parse_client_message,
)
from bookmark_sync.api.routers.auth.tokens import TokenVerifier
from bookmark_sync.api.services.sync_engine import MutationResult, SyncEngine
from bookmark_sync.api.websocket.connection import ClientConnection, ConnectionState
from bookmark_sync.api.websocket.registry import ConnectionRegistry
from bookmark_sync.core.logging_utils import get_logger
from bookmark_sync.domain.exceptions.domain_exceptions import (
    BookmarkNotFoundError,
    DomainException,
)

logger = get_logger(__name__)

router = APIRouter()


class WebSocketSession:
    """Dispatches the parsed frames of one connection."""

    def __init__(
        self,
        conn: ClientConnection,
        *,
        engine: SyncEngine,
        verifier: TokenVerifier,
        registry: ConnectionRegistry,
    ) -> None:
        self.conn = conn
        self.engine = engine
        self.verifier = verifier
        self.registry = registry
        self._handlers: dict[str, Callable[[Any], Awaitable[None]]] = {
            "auth": self._on_auth,
            "ping": self._on_ping,
            "sync_request": self._on_sync_request,
            "sync_clear": self._on_sync_clear,
            "bookmark_create": self._on_create,
            "bookmark_update": self._on_update,
            "bookmark_delete": self._on_delete,
            "bookmark_move": self._on_move,
        }

    @property
    def user_id(self) -> str:
        if self.conn.user_id is None:
            raise AuthenticationError("Not authenticated", missing=True)
        return self.conn.user_id

    @property
    def client_id(self) -> str:
        if self.conn.client_id is None:
            raise AuthenticationError("Not authenticated", missing=True)
        return self.conn.client_id

    async def handle(self, raw: str) -> None:
        try:
            message = parse_client_message(raw)
        except MessageParseError as exc:
            await self._send_error(ErrorCode.INVALID_REQUEST, exc.message, exc.request_id)
            return

        request_id = getattr(message, "request_id", None)
        if not self.conn.is_authenticated and message.type not in PRE_AUTH_TYPES:
            await self._send_error(ErrorCode.AUTH_REQUIRED, "Not authenticated", request_id)
            return

        try:
            await self._handlers[message.type](message)
        except WebSocketDisconnect:
            raise
        except AuthenticationError as exc:
            await self._send_error(exc.error_code, exc.message, request_id)
        except BookmarkNotFoundError as exc:
            await self._send_error(ErrorCode.NOT_FOUND, exc.message, request_id)
        except DomainException as exc:
            await self._send_error(ErrorCode.INVALID_REQUEST, exc.message, request_id)
        except Exception:
            logger.exception(
                "ws_message_failed",
                extra={
                    "connection_id": self.conn.connection_id,
                    "user_id": self.conn.user_id,
                    "message_type": message.type,
                    "request_id": request_id,
                },
            )
            await self._send_error(ErrorCode.SERVER_ERROR, "Internal server error", request_id)

    async def close(self) -> None:
        if self.conn.user_id is not None:
            self.registry.unregister(self.conn.user_id, self.conn)
        self.conn.state = ConnectionState.CLOSED

    async def close_with(self, code: int, reason: str) -> None:
        if self.conn.user_id is not None:
            self.registry.unregister(self.conn.user_id, self.conn)
        await self.conn.close(code, reason)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _on_auth(self, message: AuthMessage) -> None:
        try:
            user_id = self.verifier.verify(message.token)
        except AuthenticationError as exc:
            logger.info(
                "ws_auth_failed",
                extra={"connection_id": self.conn.connection_id, "reason": exc.message},
            )
            await self.conn.send(AuthErrorMessage(message="Invalid token").to_wire())
            await self.close_with(CloseCode.AUTH_FAILED, "Authentication failed")
            return

        # Re-auth on the same socket replaces the previous identity.
        if self.conn.user_id is not None:
            self.registry.unregister(self.conn.user_id, self.conn)
        self.conn.authenticate(user_id, message.client_id)
        self.registry.register(user_id, self.conn)
        await self.conn.send(AuthSuccessMessage(user_id=user_id).to_wire())
        logger.info(
            "ws_client_authenticated",
            extra={
                "connection_id": self.conn.connection_id,
                "user_id": user_id,
                "client_id": message.client_id,
            },
        )

    async def _on_ping(self, message: PingMessage) -> None:
        await self.conn.send(PongMessage().to_wire())

    async def _on_sync_request(self, message: SyncRequestMessage) -> None:
        payload = await self.engine.sync(self.user_id, message.last_sync_version)
        await self.conn.send(payload.to_message().to_wire())
        logger.info(
            f"sync_{payload.kind}_sent",
            extra={
                "user_id": self.user_id,
                "client_id": self.client_id,
                "last_sync_version": message.last_sync_version,
                "current_version": payload.current_version,
                "bookmarks": len(payload.bookmarks),
                "events": len(payload.events),
            },
        )

    async def _on_sync_clear(self, message: SyncClearMessage) -> None:
        await self.engine.clear(self.user_id)

    async def _on_create(self, message: BookmarkCreateMessage) -> None:
        result = await self.engine.create(self.user_id, message.data, self.client_id)
        await self._finish(message.request_id, result, message.data.model_dump(by_alias=True))

    async def _on_update(self, message: BookmarkUpdateMessage) -> None:
        result = await self.engine.update(
            self.user_id, message.id, message.data, message.expected_version, self.client_id
        )
        await self._finish(message.request_id, result, message.data.changes(by_alias=True))

    async def _on_delete(self, message: BookmarkDeleteMessage) -> None:
        result = await self.engine.delete(
            self.user_id, message.id, message.expected_version, self.client_id
        )
        await self._finish(message.request_id, result, {})

    async def _on_move(self, message: BookmarkMoveMessage) -> None:
        result = await self.engine.move(
            self.user_id,
            message.id,
            message.new_parent_id,
            message.new_index,
            message.expected_version,
            self.client_id,
        )
        await self._finish(
            message.request_id,
            result,
            {"parentId": message.new_parent_id, "sortOrder": message.new_index},
        )

    # ------------------------------------------------------------------
    # Replies
    # ------------------------------------------------------------------

    async def _finish(
        self, request_id: str, result: MutationResult, client_version: dict[str, Any]
    ) -> None:
        """Ack (or report the conflict to) the originator, then fan out."""
        if result.conflict is not None:
            await self.conn.send(
                ConflictMessage(
                    request_id=request_id,
                    id=result.bookmark_id,
                    server_version=result.conflict,
                    client_version=client_version,
                ).to_wire()
            )
            return

        sync_version = result.sync_version
        if sync_version is None:
            sync_version = await self.engine.current_version(self.user_id)
        await self.conn.send(
            BookmarkAckMessage(
                request_id=request_id, id=result.bookmark_id, sync_version=sync_version
            ).to_wire()
        )
        self.engine.publish(self.user_id, result, exclude=self.conn)

    async def _send_error(self, code: ErrorCode, message: str, request_id: str | None) -> None:
        await self.conn.send(
            ErrorMessage(request_id=request_id, code=code.value, message=message).to_wire()
        )


async def _receive_text(websocket: WebSocket) -> str:
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", CloseCode.NORMAL))
    text = message.get("text")
    if text is None:
        # Binary frames are decoded and parsed like text.
        text = (message.get("bytes") or b"").decode("utf-8", errors="replace")
    return text


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    state = websocket.app.state
    await websocket.accept()
    conn = ClientConnection(websocket, send_timeout=state.config.realtime.send_timeout)
    session = WebSocketSession(
        conn,
        engine=state.sync_engine,
        verifier=state.token_verifier,
        registry=state.connection_registry,
    )
    logger.debug("ws_client_connected", extra={"connection_id": conn.connection_id})

    try:
        await conn.send(AuthRequiredMessage().to_wire())
        while conn.state is not ConnectionState.CLOSED:
            raw = await _receive_text(websocket)
            conn.touch()
            await session.handle(raw)
    except WebSocketDisconnect as exc:
        logger.info(
            "ws_client_disconnected",
            extra={
                "connection_id": conn.connection_id,
                "user_id": conn.user_id,
                "code": exc.code,
            },
        )
    except Exception:
        logger.exception(
            "ws_connection_error",
            extra={"connection_id": conn.connection_id, "user_id": conn.user_id},
        )
        await conn.close(CloseCode.GOING_AWAY)
    finally:
        await session.close()
