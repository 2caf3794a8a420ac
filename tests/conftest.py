"""Pytest configuration and shared fixtures.

Every test gets its own on-disk SQLite database under ``tmp_path``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from bookmark_sync.api.main import create_app
from bookmark_sync.api.routers.auth import create_access_token
from bookmark_sync.api.services.sync_engine import SyncEngine
from bookmark_sync.config import AppConfig, AuthConfig, load_config
from bookmark_sync.db.session import DatabaseSessionManager

TEST_JWT_SECRET = "test-secret-key-with-at-least-thirty-two-chars"


@pytest.fixture
def session_manager(tmp_path) -> Iterator[DatabaseSessionManager]:
    manager = DatabaseSessionManager(path=str(tmp_path / "bookmarks.db"))
    manager.migrate()
    yield manager
    manager.close()


@pytest.fixture
def engine(session_manager: DatabaseSessionManager) -> SyncEngine:
    return SyncEngine(session_manager)


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(jwt_secret_key=TEST_JWT_SECRET)


@pytest.fixture
def make_token(auth_config: AuthConfig) -> Callable[..., str]:
    def _make(user_id: str = "user-1", expires_in: timedelta = timedelta(minutes=15)) -> str:
        return create_access_token(user_id, auth_config, expires_in=expires_in)

    return _make


@pytest.fixture
def auth_headers(make_token: Callable[..., str]) -> Callable[..., dict[str, str]]:
    def _headers(user_id: str = "user-1") -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id)}"}

    return _headers


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    return load_config(
        runtime={"db_path": str(tmp_path / "api.db"), "log_level": "INFO"},
        auth={"jwt_secret_key": TEST_JWT_SECRET},
        realtime={"heartbeat_interval": 30, "client_timeout": 60, "send_timeout": 5},
    )


@pytest.fixture
def client(app_config: AppConfig) -> Iterator[TestClient]:
    app = create_app(app_config)
    with TestClient(app) as test_client:
        yield test_client
