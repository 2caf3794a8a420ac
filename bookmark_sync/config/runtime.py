from __future__ import annotations

import logging
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

_DEFAULT_DEV_ORIGINS = (
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
)


class RuntimeConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    db_path: str = Field(
        default="./data/bookmarks.db", validation_alias=AliasChoices("DB_PATH", "DATABASE_PATH")
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(default=True, validation_alias="LOG_JSON")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")
    host: str = Field(default="0.0.0.0", validation_alias="HOST")  # nosec B104
    port: int = Field(default=3000, validation_alias="PORT")
    allowed_origins_raw: str = Field(default="", validation_alias="ALLOWED_ORIGINS")

    @field_validator("log_level", mode="before")
    @classmethod
    def _validate_log_level(cls, value: Any) -> str:
        log_level = str(value or "INFO").upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if log_level not in valid_levels:
            msg = f"Invalid log level: {value}. Must be one of {valid_levels}"
            raise ValueError(msg)
        return log_level

    @field_validator("port", mode="before")
    @classmethod
    def _validate_port(cls, value: Any) -> int:
        try:
            parsed = int(str(value if value not in (None, "") else 3000))
        except ValueError as exc:
            msg = "Port must be a valid integer"
            raise ValueError(msg) from exc
        if parsed <= 0 or parsed > 65535:
            msg = "Port must be between 1 and 65535"
            raise ValueError(msg)
        return parsed

    @field_validator("db_path", mode="before")
    @classmethod
    def _validate_db_path(cls, value: Any) -> str:
        raw = str(value or "./data/bookmarks.db").strip()
        if "\x00" in raw:
            msg = "DB path contains invalid characters"
            raise ValueError(msg)
        return raw

    @property
    def allowed_origins(self) -> list[str]:
        origins = [item.strip() for item in self.allowed_origins_raw.split(",") if item.strip()]
        if not origins:
            return list(_DEFAULT_DEV_ORIGINS)
        return origins
