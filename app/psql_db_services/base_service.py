"""
Base Database Service
--------------------
Shared plumbing for the identity repositories: unit-of-work scoping,
raw SQL helpers over ``text()`` and argument checks.

Every read and write method of a repository accepts an optional ``session``.
Passing one makes the call part of the caller's unit of work; omitting it
runs the call in a session of its own.
"""

import json
from typing import Optional, List, Dict, Any, AsyncGenerator
from contextlib import asynccontextmanager
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from app.core.database_connection import DatabaseManager


class BaseDatabaseService:
    def __init__(self, database_manager: Optional[DatabaseManager] = None):
        """
        Args:
            database_manager: Manager to open sessions from. Defaults to the
                process-wide singleton.
        """
        self.database_manager = database_manager or DatabaseManager()
        self._service_name = self.__class__.__name__

    @asynccontextmanager
    async def transaction(
        self, session: Optional[AsyncSession] = None
    ) -> AsyncGenerator[AsyncSession, None]:
        """
        Unit-of-work scope.

        Yields ``session`` untouched when the caller already owns one, so the
        caller decides when it commits. Opens (and commits or rolls back) a
        new session otherwise.

        Example:
            async with users_service.transaction() as uow:
                await users_service.add_membership(..., session=uow)
                await subscriptions_service.create_subscription(..., session=uow)
        """
        if session is not None:
            yield session
            return

        async with self.database_manager.get_session() as new_session:
            yield new_session

    # ========================================================================
    # QUERY HELPERS
    # ========================================================================

    async def fetch_rows(
        self,
        sql_query: str,
        params: Optional[Dict[str, Any]] = None,
        session: Optional[AsyncSession] = None,
    ) -> List[Dict[str, Any]]:
        """Run a SELECT and return every row as a dict."""
        try:
            async with self.transaction(session) as active_session:
                result = await active_session.execute(text(sql_query), params or {})
                return [dict(row) for row in result.mappings().all()]
        except Exception as error:
            logger.error(f"{self._service_name}: query failed: {error}")
            raise

    async def fetch_row(
        self,
        sql_query: str,
        params: Optional[Dict[str, Any]] = None,
        session: Optional[AsyncSession] = None,
    ) -> Optional[Dict[str, Any]]:
        rows = await self.fetch_rows(sql_query, params, session=session)
        return rows[0] if rows else None

    async def row_exists(
        self,
        sql_query: str,
        params: Optional[Dict[str, Any]] = None,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        return await self.fetch_row(sql_query, params, session=session) is not None

    async def execute_write(
        self,
        sql_query: str,
        params: Optional[Dict[str, Any]] = None,
        session: Optional[AsyncSession] = None,
    ) -> int:
        """Run an INSERT, UPDATE or DELETE; returns the affected row count."""
        try:
            async with self.transaction(session) as active_session:
                result = await active_session.execute(text(sql_query), params or {})
                return result.rowcount
        except Exception as error:
            logger.error(f"{self._service_name}: write failed: {error}")
            raise

    # ========================================================================
    # ARGUMENT CHECKS
    # ========================================================================

    def require_uuid(self, value: UUID, parameter_name: str = "id") -> None:
        """
        Raises:
            ValueError: If ``value`` is not a UUID instance
        """
        if not isinstance(value, UUID):
            raise ValueError(f"{parameter_name} must be a valid UUID instance")

    def require_text(self, value: str, parameter_name: str = "value") -> None:
        """
        Raises:
            ValueError: If ``value`` is not a string with visible characters
        """
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"{parameter_name} must be a non-empty string")

    # ========================================================================
    # UTILITY METHODS
    # ========================================================================

    @staticmethod
    def decode_jsonb(value: Any, default: Any = None) -> Any:
        """JSONB columns arrive decoded from asyncpg but as text from other drivers."""
        if value is None:
            return default
        if isinstance(value, (str, bytes)):
            return json.loads(value)
        return value

    def log_write(
        self,
        action: str,
        entity_id: Any,
        success: bool = True,
        detail: Optional[str] = None,
    ) -> None:
        message = f"{self._service_name}: {action} {entity_id}"
        if detail:
            message += f" ({detail})"

        if success:
            logger.info(message)
        else:
            logger.warning(f"{message} matched no rows")
