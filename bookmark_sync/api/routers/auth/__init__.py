"""Bearer-token authentication for REST routes and WebSocket handshakes."""

from bookmark_sync.api.routers.auth.dependencies import (
    get_current_user,
    get_sync_engine,
    get_token_verifier,
)
from bookmark_sync.api.routers.auth.tokens import TokenVerifier, create_access_token

__all__ = [
    "TokenVerifier",
    "create_access_token",
    "get_current_user",
    "get_sync_engine",
    "get_token_verifier",
]
