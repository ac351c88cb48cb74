"""
Database Connection Manager
---------------------------
Async PostgreSQL access for the identity services.

A session handed out by ``get_session()`` is a unit of work: every statement
executed inside the block commits together, or the whole block rolls back.
Repository methods take an optional session so that a flow such as
registration (user row, membership row, subscription row, audit row) can run
inside one of them.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config_manager import settings

logger = logging.getLogger(__name__)


def _settings_config() -> Dict[str, Any]:
    return {
        "host": settings.database_host,
        "port": settings.database_port,
        "dbname": settings.database_name,
        "user": settings.database_user,
        "password": settings.database_password,
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
    }


class DatabaseManager:
    """
    Process-wide owner of the SQLAlchemy async engine (asyncpg driver).

    Services receive the manager through their constructor, so tests pass an
    ``AsyncMock(spec=DatabaseManager)`` instead of a live pool.
    """

    _instance = None
    _engine: Optional[AsyncEngine] = None
    _sessionmaker: Optional[async_sessionmaker] = None

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super(DatabaseManager, cls).__new__(cls)
        return cls._instance

    @property
    def is_initialized(self) -> bool:
        return self._sessionmaker is not None

    @staticmethod
    def build_url(config: Dict[str, Any]) -> URL:
        """Connection URL; credentials are escaped by SQLAlchemy."""
        return URL.create(
            "postgresql+asyncpg",
            username=config["user"],
            password=config["password"],
            host=config["host"],
            port=int(config["port"]),
            database=config["dbname"],
        )

    async def initialize(self, config: Optional[Dict[str, Any]] = None) -> None:
        """
        Create the engine and the session factory.

        Args:
            config: Connection keys (host, port, dbname, user, password,
                pool_size, max_overflow). Defaults to the global settings.
        """
        if self._engine is not None:
            logger.warning("Database engine already initialized")
            return

        config = {**_settings_config(), **(config or {})}
        logger.info(
            f"Initializing identity store connection to {config['host']}:{config['port']}/{config['dbname']}"
        )

        try:
            self._engine = create_async_engine(
                self.build_url(config),
                pool_size=config["pool_size"],
                max_overflow=config["max_overflow"],
                pool_pre_ping=True,
                pool_recycle=3600,
                pool_timeout=30,
                echo=False,
            )
            self._sessionmaker = async_sessionmaker(
                bind=self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
        except Exception as e:
            logger.error(f"Error initializing SQLAlchemy engine: {e}")
            self._engine = None
            self._sessionmaker = None
            raise

        logger.info("Identity store engine ready")

    async def close(self) -> None:
        """Dispose the engine and its pooled connections."""
        if self._engine is None:
            return
        logger.info("Disposing SQLAlchemy engine")
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Open a unit of work.

        Commits when the block exits normally, rolls back and re-raises when
        it raises. The session is always closed.

        Raises:
            RuntimeError: If the manager has not been initialized
        """
        if self._sessionmaker is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")

        session = self._sessionmaker()
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.warning(f"Unit of work rolled back: {e}")
            raise
        finally:
            await session.close()

    async def ping(self) -> bool:
        """Run ``SELECT 1``; True when the server answers with 1."""
        async with self.get_session() as session:
            result = await session.execute(text("SELECT 1"))
            return result.scalar() == 1


db_manager = DatabaseManager()
