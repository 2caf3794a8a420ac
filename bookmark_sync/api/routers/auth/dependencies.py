"""
FastAPI dependencies resolving the caller and the app-scoped services.
"""

from __future__ import annotations

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from bookmark_sync.api.exceptions import AuthenticationError
from bookmark_sync.api.routers.auth.tokens import TokenVerifier
from bookmark_sync.api.services.sync_engine import SyncEngine

# auto_error=False so a missing header goes through our 401 envelope.
security = HTTPBearer(auto_error=False)


def get_token_verifier(request: Request) -> TokenVerifier:
    return request.app.state.token_verifier


def get_sync_engine(request: Request) -> SyncEngine:
    return request.app.state.sync_engine


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> str:
    """Resolve the bearer token to a user id.

    Raises:
        AuthenticationError: Missing, expired or invalid token (401).
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authorization header required", missing=True)
    return verifier.verify(credentials.credentials)
