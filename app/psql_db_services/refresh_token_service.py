"""
PostgreSQL Storage for Refresh Token Families
---------------------------------------------
One family row per user plus one row per live refresh token.

Rotation locks the family row with SELECT ... FOR UPDATE for the whole unit
of work, so concurrent rotations of the same family run one after another.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from app.core.database_connection import DatabaseManager
from app.models.identity_models import RefreshTokenEntry
from app.psql_db_services.base_service import BaseDatabaseService


class LockedRefreshFamily:
    """Family row held under FOR UPDATE inside an open session."""

    def __init__(
        self,
        session: AsyncSession,
        family_id: UUID,
        user_id: UUID,
        entries: List[RefreshTokenEntry],
    ):
        self._session = session
        self.family_id = family_id
        self.user_id = user_id
        self.entries = entries

    async def remove(self, entry_id: UUID) -> None:
        await self._session.execute(
            text("DELETE FROM refresh_tokens WHERE id = :id AND family_id = :family_id"),
            {"id": entry_id, "family_id": self.family_id},
        )
        self.entries = [entry for entry in self.entries if entry.id != entry_id]

    async def append(self, hashed_token: str, expire_at: datetime) -> None:
        entry = RefreshTokenEntry(
            id=uuid4(), hashed_token=hashed_token, expire_at=expire_at
        )
        await self._session.execute(
            text(
                """
                INSERT INTO refresh_tokens (id, family_id, hashed_token, expire_at)
                VALUES (:id, :family_id, :hashed_token, :expire_at)
                """
            ),
            {
                "id": entry.id,
                "family_id": self.family_id,
                "hashed_token": entry.hashed_token,
                "expire_at": entry.expire_at,
            },
        )
        self.entries = [*self.entries, entry]

    async def clear(self) -> int:
        result = await self._session.execute(
            text("DELETE FROM refresh_tokens WHERE family_id = :family_id"),
            {"family_id": self.family_id},
        )
        self.entries = []
        return result.rowcount


class RefreshTokenService(BaseDatabaseService):
    """Token family repository used by the refresh session store."""

    def __init__(self, database_manager: Optional[DatabaseManager] = None):
        super().__init__(database_manager)

    async def get_or_create_family(self, user_id: UUID) -> UUID:
        """Return the user's family id, creating the row on first login."""
        self.require_uuid(user_id, "user_id")
        async with self.transaction() as session:
            result = await session.execute(
                text(
                    """
                    INSERT INTO refresh_token_families (id, user_id)
                    VALUES (:id, :user_id)
                    ON CONFLICT (user_id) DO UPDATE SET user_id = EXCLUDED.user_id
                    RETURNING id
                    """
                ),
                {"id": uuid4(), "user_id": user_id},
            )
            return result.scalar_one()

    @asynccontextmanager
    async def lock_family(
        self, family_id: UUID
    ) -> AsyncGenerator[Optional[LockedRefreshFamily], None]:
        """
        Lock a family row and yield a handle over its entries.

        Yields None when the family does not exist. All changes made through
        the handle commit when the block exits normally.
        """
        async with self.transaction() as session:
            result = await session.execute(
                text(
                    "SELECT id, user_id FROM refresh_token_families "
                    "WHERE id = :id FOR UPDATE"
                ),
                {"id": family_id},
            )
            family_row = result.mappings().one_or_none()
            if family_row is None:
                yield None
                return

            entries_result = await session.execute(
                text(
                    """
                    SELECT id, hashed_token, expire_at
                    FROM refresh_tokens
                    WHERE family_id = :family_id
                    ORDER BY created_at
                    """
                ),
                {"family_id": family_id},
            )
            entries = [
                RefreshTokenEntry(**dict(row)) for row in entries_result.mappings().all()
            ]
            yield LockedRefreshFamily(
                session, family_row["id"], family_row["user_id"], entries
            )

    async def clear_user_families(self, user_id: UUID) -> int:
        """Delete every refresh token belonging to ``user_id``."""
        removed = await self.execute_write(
            """
            DELETE FROM refresh_tokens
            WHERE family_id IN (
                SELECT id FROM refresh_token_families WHERE user_id = :user_id
            )
            """,
            {"user_id": user_id},
        )
        logger.debug(f"Cleared {removed} refresh token(s) for {user_id}")
        return removed
