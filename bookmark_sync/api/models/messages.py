"""WebSocket wire messages.

Each direction is a tagged union on ``type``. Parsing rejects unknown tags
instead of coercing them, so the router can answer ``INVALID_REQUEST``.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, ClassVar, Literal

from pydantic import Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from bookmark_sync.api.models.requests import BookmarkPatch, CreateBookmarkRequest
from bookmark_sync.api.models.responses import CamelModel
from bookmark_sync.core.time_utils import now_ms

# ---------------------------------------------------------------------------
# Client -> server
# ---------------------------------------------------------------------------


class AuthMessage(CamelModel):
    type: Literal["auth"]
    token: str
    client_id: str


class SyncRequestMessage(CamelModel):
    type: Literal["sync_request"]
    last_sync_version: int = Field(ge=0)


class SyncClearMessage(CamelModel):
    type: Literal["sync_clear"]


class BookmarkCreateMessage(CamelModel):
    type: Literal["bookmark_create"]
    request_id: str
    data: CreateBookmarkRequest


class BookmarkUpdateMessage(CamelModel):
    type: Literal["bookmark_update"]
    request_id: str
    id: str
    data: BookmarkPatch
    expected_version: int


class BookmarkDeleteMessage(CamelModel):
    type: Literal["bookmark_delete"]
    request_id: str
    id: str
    expected_version: int


class BookmarkMoveMessage(CamelModel):
    type: Literal["bookmark_move"]
    request_id: str
    id: str
    new_parent_id: str | None = None
    new_index: int
    expected_version: int


class PingMessage(CamelModel):
    type: Literal["ping"]
    timestamp: int | None = None


ClientMessage = Annotated[
    AuthMessage
    | SyncRequestMessage
    | SyncClearMessage
    | BookmarkCreateMessage
    | BookmarkUpdateMessage
    | BookmarkDeleteMessage
    | BookmarkMoveMessage
    | PingMessage,
    Field(discriminator="type"),
]

CLIENT_MESSAGE_ADAPTER: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)

# Messages a connection may send before it has authenticated.
PRE_AUTH_TYPES = frozenset({"auth", "ping"})


class MessageParseError(ValueError):
    """A frame could not be turned into a ``ClientMessage``."""

    def __init__(self, message: str, request_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.request_id = request_id


def parse_client_message(raw: str) -> ClientMessage:
    """Decode one text frame.

    Raises:
        MessageParseError: Malformed JSON, unknown ``type`` or a schema violation.
    """
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MessageParseError("Invalid message format") from exc
    if not isinstance(payload, dict):
        raise MessageParseError("Invalid message format")

    request_id = payload.get("requestId")
    if not isinstance(request_id, str):
        request_id = None

    try:
        return CLIENT_MESSAGE_ADAPTER.validate_python(payload)
    except PydanticValidationError as exc:
        error_types = {error["type"] for error in exc.errors()}
        if error_types & {"union_tag_invalid", "union_tag_not_found"}:
            raise MessageParseError("Unknown message type", request_id) from exc
        raise MessageParseError("Invalid message format", request_id) from exc


# ---------------------------------------------------------------------------
# Server -> client
# ---------------------------------------------------------------------------


class ServerMessageBase(CamelModel):
    # Wire keys dropped from the frame when their value is None.
    omit_when_none: ClassVar[tuple[str, ...]] = ()

    def to_wire(self) -> dict[str, Any]:
        data = self.model_dump(by_alias=True)
        for key in self.omit_when_none:
            if data.get(key) is None:
                data.pop(key, None)
        return data


class AuthRequiredMessage(ServerMessageBase):
    type: Literal["auth_required"] = "auth_required"


class AuthSuccessMessage(ServerMessageBase):
    type: Literal["auth_success"] = "auth_success"
    user_id: str
    server_time: int = Field(default_factory=now_ms)


class AuthErrorMessage(ServerMessageBase):
    type: Literal["auth_error"] = "auth_error"
    message: str


class SyncFullMessage(ServerMessageBase):
    type: Literal["sync_full"] = "sync_full"
    bookmarks: list[dict[str, Any]]
    sync_version: int


class SyncIncrementalMessage(ServerMessageBase):
    type: Literal["sync_incremental"] = "sync_incremental"
    events: list[dict[str, Any]]
    current_version: int


class BookmarkAckMessage(ServerMessageBase):
    type: Literal["bookmark_ack"] = "bookmark_ack"
    request_id: str
    id: str
    sync_version: int


class ConflictMessage(ServerMessageBase):
    type: Literal["conflict"] = "conflict"
    request_id: str
    id: str
    server_version: dict[str, Any]
    client_version: dict[str, Any]


class PongMessage(ServerMessageBase):
    type: Literal["pong"] = "pong"
    timestamp: int = Field(default_factory=now_ms)


class HeartbeatPingMessage(ServerMessageBase):
    """Liveness probe; any frame from the client counts as the answer."""

    type: Literal["ping"] = "ping"
    timestamp: int = Field(default_factory=now_ms)


class ErrorMessage(ServerMessageBase):
    omit_when_none: ClassVar[tuple[str, ...]] = ("requestId",)

    type: Literal["error"] = "error"
    request_id: str | None = None
    code: str
    message: str
