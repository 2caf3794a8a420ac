from __future__ import annotations

from .api import AuthConfig, RealtimeConfig, SyncConfig
from .database import DatabaseConfig
from .runtime import RuntimeConfig
from .settings import AppConfig, Settings, load_config

__all__ = [
    "AppConfig",
    "AuthConfig",
    "DatabaseConfig",
    "RealtimeConfig",
    "RuntimeConfig",
    "Settings",
    "SyncConfig",
    "load_config",
]
