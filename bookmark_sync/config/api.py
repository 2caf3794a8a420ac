from __future__ import annotations

import logging
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)


class AuthConfig(BaseModel):
    """Bearer token verification settings.

    Tokens are issued elsewhere; this service only checks their signature and
    reads the user id claim.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    jwt_secret_key: str = Field(
        default="", validation_alias=AliasChoices("JWT_SECRET_KEY", "JWT_SECRET")
    )
    jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
    user_claim: str = Field(default="userId", validation_alias="JWT_USER_CLAIM")

    @field_validator("jwt_secret_key", mode="before")
    @classmethod
    def _validate_jwt_secret_key(cls, value: Any) -> str:
        if value in (None, ""):
            return ""
        secret = str(value).strip()
        if len(secret) < 32:
            logger.warning(
                "JWT secret key is shorter than 32 characters - this is insecure for production"
            )
        if len(secret) > 500:
            msg = "JWT secret key appears to be too long"
            raise ValueError(msg)
        return secret

    @field_validator("jwt_algorithm", mode="before")
    @classmethod
    def _validate_algorithm(cls, value: Any) -> str:
        algorithm = str(value or "HS256").upper()
        if algorithm not in {"HS256", "HS384", "HS512"}:
            msg = f"Unsupported JWT algorithm: {algorithm}"
            raise ValueError(msg)
        return algorithm


class SyncConfig(BaseModel):
    """Limits applied by the sync engine and the upload client."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    events_page_limit: int = Field(default=1000, validation_alias="SYNC_EVENTS_PAGE_LIMIT")
    search_limit: int = Field(default=100, validation_alias="SYNC_SEARCH_LIMIT")
    batch_max_items: int = Field(default=1000, validation_alias="SYNC_BATCH_MAX_ITEMS")
    upload_batch_size: int = Field(default=50, validation_alias="SYNC_UPLOAD_BATCH_SIZE")

    @field_validator(
        "events_page_limit",
        "search_limit",
        "batch_max_items",
        "upload_batch_size",
        mode="before",
    )
    @classmethod
    def _validate_limits(cls, value: Any, info: ValidationInfo) -> int:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = int(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a valid integer"
            raise ValueError(msg) from exc
        if parsed <= 0 or parsed > 10000:
            msg = f"{info.field_name.replace('_', ' ').capitalize()} must be between 1 and 10000"
            raise ValueError(msg)
        return parsed


class RealtimeConfig(BaseModel):
    """WebSocket liveness settings, in seconds."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    heartbeat_interval: float = Field(default=30.0, validation_alias="WS_HEARTBEAT_INTERVAL")
    client_timeout: float = Field(default=60.0, validation_alias="WS_CLIENT_TIMEOUT")
    send_timeout: float = Field(default=10.0, validation_alias="WS_SEND_TIMEOUT")

    @field_validator("heartbeat_interval", "client_timeout", "send_timeout", mode="before")
    @classmethod
    def _validate_seconds(cls, value: Any, info: ValidationInfo) -> float:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = float(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a valid number"
            raise ValueError(msg) from exc
        if parsed <= 0 or parsed > 3600:
            msg = f"{info.field_name.replace('_', ' ').capitalize()} must be between 0 and 3600"
            raise ValueError(msg)
        return parsed

    @model_validator(mode="after")
    def _validate_window(self) -> RealtimeConfig:
        if self.client_timeout < self.heartbeat_interval:
            raise ValueError("client_timeout must not be shorter than heartbeat_interval")
        return self
