"""
JWT verification.

Tokens are minted by the external auth issuer; this service only checks the
signature and expiry and reads the user id claim.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import jwt

from bookmark_sync.api.exceptions import AuthenticationError
from bookmark_sync.config import AuthConfig
from bookmark_sync.core.logging_utils import get_logger
from bookmark_sync.core.time_utils import UTC

logger = get_logger(__name__)

# Claims tried, in order, after the configured one.
_FALLBACK_USER_CLAIMS = ("userId", "user_id", "sub")


class TokenVerifier:
    """Maps a bearer token to a user id, or raises ``AuthenticationError``."""

    def __init__(self, config: AuthConfig) -> None:
        if not config.jwt_secret_key:
            raise RuntimeError(
                "JWT_SECRET_KEY environment variable must be set to the issuer's signing secret"
            )
        self._secret = config.jwt_secret_key
        self._algorithm = config.jwt_algorithm
        self._claims = (config.user_claim,) + tuple(
            claim for claim in _FALLBACK_USER_CLAIMS if claim != config.user_claim
        )

    def decode(self, token: str) -> dict[str, Any]:
        """Decode and validate a JWT.

        Raises:
            AuthenticationError: Token expired, malformed, or signed with another key.
        """
        try:
            return jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token expired") from None
        except jwt.InvalidTokenError as err:
            raise AuthenticationError("Invalid token") from err

    def verify(self, token: str) -> str:
        """Return the user id carried by ``token``."""
        payload = self.decode(token)
        for claim in self._claims:
            value = payload.get(claim)
            if value not in (None, ""):
                return str(value)
        logger.warning("token_missing_user_claim", extra={"claims": sorted(payload)})
        raise AuthenticationError("Invalid token")


def create_access_token(
    user_id: str,
    config: AuthConfig,
    *,
    expires_in: timedelta = timedelta(minutes=15),
) -> str:
    """Mint a token the way the external issuer does; used by tests and local tooling."""
    now = datetime.now(UTC)
    payload = {
        config.user_claim: user_id,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, config.jwt_secret_key, algorithm=config.jwt_algorithm)
