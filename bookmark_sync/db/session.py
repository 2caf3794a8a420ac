"""Database session management.

``DatabaseSessionManager`` owns the SQLite connection and is the only way
repositories touch the database. It provides:
- WAL-mode SQLite with a row factory for dict-like access
- a process-wide write lock so every mutation runs alone
- async wrappers with timeout and retry on transient ``database is locked`` errors
- table creation and light maintenance
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import peewee
from playhouse.sqlite_ext import SqliteExtDatabase

from bookmark_sync.db.models import ALL_MODELS, database_proxy
from bookmark_sync.db.rw_lock import AsyncRWLock
from bookmark_sync.domain.exceptions.domain_exceptions import DomainException

DB_OPERATION_TIMEOUT = 30.0
DB_MAX_RETRIES = 3


class RowSqliteDatabase(SqliteExtDatabase):
    """SQLite database subclass that configures the row factory for dict-like access."""

    def _connect(self) -> sqlite3.Connection:
        conn = super()._connect()
        conn.row_factory = sqlite3.Row
        return conn


@dataclass
class DatabaseSessionManager:
    """Peewee-backed database session manager.

    Attributes:
        path: Path to the SQLite database file
        operation_timeout: Default timeout for database operations in seconds
        max_retries: Maximum retries for transient database errors
    """

    path: str
    operation_timeout: float = field(default=DB_OPERATION_TIMEOUT)
    max_retries: int = field(default=DB_MAX_RETRIES)
    _logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    _database: peewee.SqliteDatabase = field(init=False)
    _rw_lock: AsyncRWLock = field(init=False)

    def __post_init__(self) -> None:
        if self.path == ":memory:":
            # Every worker thread would get its own empty in-memory database.
            raise ValueError("An on-disk database path is required")
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        self._database = RowSqliteDatabase(
            self.path,
            pragmas={
                "journal_mode": "wal",
                "synchronous": "normal",
                "foreign_keys": 1,
                "busy_timeout": 5000,
            },
            check_same_thread=False,
        )
        database_proxy.initialize(self._database)
        self._rw_lock = AsyncRWLock()

    @property
    def database(self) -> peewee.SqliteDatabase:
        """Access the underlying Peewee database instance."""
        return self._database

    def connection_context(self) -> Any:
        """Return a connection context manager."""
        return self._database.connection_context()

    def migrate(self) -> None:
        """Create tables and refresh planner statistics."""
        with self._database.connection_context():
            self._database.create_tables(ALL_MODELS, safe=True)
            try:
                self._database.execute_sql("ANALYZE")
            except peewee.DatabaseError as exc:
                self._logger.warning(
                    "db_maintenance_failed",
                    extra={"path": self._mask_path(self.path), "error": str(exc)},
                )
        self._logger.info("db_migrated", extra={"path": self._mask_path(self.path)})

    def close(self) -> None:
        if not self._database.is_closed():
            self._database.close()
        self._logger.info("database_closed", extra={"path": self._mask_path(self.path)})

    async def _safe_db_operation(
        self,
        operation: Callable[..., Any],
        *args: Any,
        timeout: float | None = None,
        operation_name: str = "database_operation",
        read_only: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Run ``operation`` in a worker thread inside a connection context.

        Reads rely on WAL for isolation and only wait for an in-flight writer;
        writes take the exclusive lock.

        Raises:
            TimeoutError: If the operation does not finish within ``timeout``
            peewee.OperationalError: If the database stays locked after retries
            DomainException: Propagated unchanged from the operation
        """

        def _op_wrapper() -> Any:
            with self._database.connection_context():
                return operation(*args, **kwargs)

        async def _run() -> Any:
            if read_only:
                async with self._rw_lock.read_lock():
                    return await asyncio.to_thread(_op_wrapper)
            async with self._rw_lock.write_lock():
                return await asyncio.to_thread(_op_wrapper)

        return await self._with_retries(_run, timeout=timeout, operation_name=operation_name)

    async def _safe_db_transaction(
        self,
        operation: Callable[..., Any],
        *args: Any,
        timeout: float | None = None,
        operation_name: str = "database_transaction",
        **kwargs: Any,
    ) -> Any:
        """Run ``operation`` atomically under the write lock.

        Everything the operation writes is committed together or rolled back
        together, including when it raises a ``DomainException``.
        """

        def _execute_in_transaction() -> Any:
            with self._database.connection_context(), self._database.atomic():
                return operation(*args, **kwargs)

        async def _run() -> Any:
            async with self._rw_lock.write_lock():
                return await asyncio.to_thread(_execute_in_transaction)

        return await self._with_retries(_run, timeout=timeout, operation_name=operation_name)

    async def _with_retries(
        self,
        run: Callable[[], Any],
        *,
        timeout: float | None,
        operation_name: str,
    ) -> Any:
        if timeout is None:
            timeout = self.operation_timeout

        retries = 0
        while True:
            try:
                return await asyncio.wait_for(run(), timeout=timeout)

            except DomainException:
                raise

            except TimeoutError:
                self._logger.exception(
                    "db_operation_timeout",
                    extra={"operation": operation_name, "timeout": timeout, "retries": retries},
                )
                raise

            except peewee.OperationalError as e:
                error_msg = str(e).lower()
                if ("locked" in error_msg or "busy" in error_msg) and retries < self.max_retries:
                    retries += 1
                    wait_time = 0.1 * (2**retries)
                    self._logger.warning(
                        "db_locked_retrying",
                        extra={
                            "operation": operation_name,
                            "retry": retries,
                            "max_retries": self.max_retries,
                            "wait_time": wait_time,
                            "error": str(e),
                        },
                    )
                    await asyncio.sleep(wait_time)
                    continue

                self._logger.exception(
                    "db_operational_error",
                    extra={"operation": operation_name, "retries": retries, "error": str(e)},
                )
                raise

            except peewee.IntegrityError as e:
                self._logger.exception(
                    "db_integrity_error",
                    extra={"operation": operation_name, "error": str(e)},
                )
                raise

    @staticmethod
    def _mask_path(path: str) -> str:
        """Mask a path for logging (show only parent/filename)."""
        p = Path(path)
        if p.parent.name:
            return f".../{p.parent.name}/{p.name}"
        return p.name
