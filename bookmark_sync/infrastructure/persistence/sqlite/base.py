from collections.abc import Callable
from typing import Any

from bookmark_sync.db.session import DatabaseSessionManager


class SqliteBaseRepository:
    """Base repository for SQLite implementations.

    Subclasses expose plain synchronous methods that assume an open connection
    (so the sync engine can compose several of them in one transaction) and
    ``async_*`` wrappers that run a single call through the session manager.
    """

    def __init__(self, session_manager: DatabaseSessionManager) -> None:
        self._session = session_manager

    async def _execute(
        self,
        operation: Callable[..., Any],
        *args: Any,
        timeout: float | None = None,
        operation_name: str = "repository_operation",
        read_only: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Execute a database operation safely using the session manager."""
        return await self._session._safe_db_operation(
            operation,
            *args,
            timeout=timeout,
            operation_name=operation_name,
            read_only=read_only,
            **kwargs,
        )
