"""
FastAPI application for the bookmark sync server.

Usage:
    uvicorn bookmark_sync.api.main:app --host 0.0.0.0 --port 3000
    bookmark-sync-server
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import peewee
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from bookmark_sync.api.error_handlers import (
    api_exception_handler,
    database_exception_handler,
    domain_exception_handler,
    global_exception_handler,
    validation_exception_handler,
)
from bookmark_sync.api.exceptions import APIException, CloseCode
from bookmark_sync.api.middleware import correlation_id_middleware
from bookmark_sync.api.routers import bookmarks
from bookmark_sync.api.routers.auth import TokenVerifier
from bookmark_sync.api.services import SyncEngine
from bookmark_sync.api.websocket import router as websocket_router
from bookmark_sync.api.websocket.heartbeat import HeartbeatMonitor
from bookmark_sync.api.websocket.registry import ConnectionRegistry
from bookmark_sync.config import AppConfig, load_config
from bookmark_sync.core.logging_utils import get_logger, setup_json_logging
from bookmark_sync.core.time_utils import now_ms
from bookmark_sync.db.session import DatabaseSessionManager
from bookmark_sync.domain.exceptions.domain_exceptions import DomainException

logger = get_logger(__name__)

APP_TITLE = "Bookmark Sync API"


def create_app(
    config: AppConfig | None = None,
    session_manager: DatabaseSessionManager | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        config: Resolved configuration; loaded from the environment when omitted.
        session_manager: Pre-built database manager (tests); created from
            ``config.runtime.db_path`` when omitted. Either way the app closes
            it on shutdown.
    """
    config = config or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = session_manager or DatabaseSessionManager(
            path=config.runtime.db_path,
            operation_timeout=config.database.operation_timeout,
            max_retries=config.database.max_retries,
        )
        db.migrate()

        registry = ConnectionRegistry()
        engine = SyncEngine(
            db,
            registry=registry,
            events_page_limit=config.sync.events_page_limit,
            search_limit=config.sync.search_limit,
            batch_max_items=config.sync.batch_max_items,
        )
        heartbeat = HeartbeatMonitor(
            registry,
            interval=config.realtime.heartbeat_interval,
            client_timeout=config.realtime.client_timeout,
        )

        app.state.db = db
        app.state.connection_registry = registry
        app.state.sync_engine = engine
        app.state.token_verifier = TokenVerifier(config.auth)
        app.state.heartbeat = heartbeat

        heartbeat.start()
        logger.info(
            "server_started",
            extra={"host": config.runtime.host, "port": config.runtime.port},
        )
        try:
            yield
        finally:
            await heartbeat.stop()
            await registry.close_all(CloseCode.MAINTENANCE, "Server shutting down")
            db.close()
            logger.info("server_stopped")

    app = FastAPI(
        title=APP_TITLE,
        description="Bookmark synchronisation over REST and WebSocket",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.runtime.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
        max_age=3600,
    )
    app.middleware("http")(correlation_id_middleware)

    app.include_router(bookmarks.router, prefix="/api/bookmarks", tags=["Bookmarks"])
    app.include_router(websocket_router.router)

    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint."""
        return {"status": "ok", "timestamp": now_ms()}

    app.add_exception_handler(APIException, api_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(DomainException, domain_exception_handler)
    app.add_exception_handler(peewee.DatabaseError, database_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    return app


def run() -> None:
    """Console entry point: configure logging and serve with uvicorn."""
    import uvicorn

    config = load_config()
    setup_json_logging(
        level=config.runtime.log_level,
        use_loguru=config.runtime.log_json,
        log_file=config.runtime.log_file,
    )
    uvicorn.run(
        create_app(config),
        host=config.runtime.host,
        port=config.runtime.port,
        log_level=config.runtime.log_level.lower(),
        log_config=None,
        ws_ping_interval=config.realtime.heartbeat_interval,
        ws_ping_timeout=config.realtime.client_timeout,
    )


# FastAPI app instance; the JWT secret is only required once the lifespan starts.
app = create_app()


if __name__ == "__main__":
    run()
