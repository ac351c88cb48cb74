"""
PostgreSQL Operations for Principals and Memberships
----------------------------------------------------
Loads principals together with their fully resolved memberships (each joined
with its organization) and pending owner invitations, and performs the
membership state changes used by invitations and user management.

Sensitive columns arrive already protected: this service only ever sees
ciphertext and search hashes.
"""

from typing import Optional, List, Dict, Any
from uuid import UUID, uuid4
from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from app.core.database_connection import DatabaseManager
from app.models.identity_models import (
    InvitationStatus,
    Membership,
    Organization,
    PendingMembership,
    Principal,
    ProtectedField,
    RolePermission,
)
from app.psql_db_services.base_service import BaseDatabaseService


USER_COLUMNS = """
    id, email_encrypted, email_hash, full_name_encrypted, full_name_hash,
    password, subscription_id, email_verified_at, last_logged_in_at, archived_at
"""

MEMBERSHIPS_QUERY = """
    SELECT
        m.id, m.roles, m.is_owner, m.status, m.approved_at, m.blocked_at,
        m.pending_at, m.accepted_at, m.declined_at,
        o.id AS organization_id, o.name_encrypted, o.name_hash,
        o.slug_encrypted, o.slug_hash, o.code, o.permissions,
        o.subscription_id AS organization_subscription_id
    FROM user_memberships m
    JOIN organizations o ON o.id = m.organization_id
    WHERE m.user_id = :user_id
    ORDER BY m.position
"""

PENDING_MEMBERSHIPS_QUERY = """
    SELECT id, name_encrypted, name_hash, status, pending_at, accepted_at, declined_at
    FROM pending_memberships
    WHERE user_id = :user_id
    ORDER BY pending_at NULLS LAST
"""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UsersService(BaseDatabaseService):
    """
    Principal repository.

    Every read returns a Principal whose memberships already embed their
    Organization, so authorization needs no further queries.
    """

    def __init__(self, database_manager: Optional[DatabaseManager] = None):
        super().__init__(database_manager)

    # ========================================================================
    # ROW MAPPING
    # ========================================================================

    def _build_organization(self, row: Dict[str, Any]) -> Organization:
        permissions = self.decode_jsonb(row["permissions"], default=[])
        return Organization(
            id=row["organization_id"],
            name=ProtectedField(encrypted=row["name_encrypted"], hash=row["name_hash"]),
            slug=ProtectedField(encrypted=row["slug_encrypted"], hash=row["slug_hash"]),
            code=row["code"],
            permissions=[RolePermission(**entry) for entry in permissions],
            subscription_id=row.get("organization_subscription_id"),
        )

    def _build_principal(
        self,
        user_row: Dict[str, Any],
        membership_rows: List[Dict[str, Any]],
        pending_rows: List[Dict[str, Any]],
    ) -> Principal:
        memberships = [
            Membership(
                id=row["id"],
                organization=self._build_organization(row),
                roles=list(row["roles"] or []),
                is_owner=row["is_owner"],
                status=InvitationStatus(row["status"]),
                approved_at=row["approved_at"],
                blocked_at=row["blocked_at"],
                pending_at=row["pending_at"],
                accepted_at=row["accepted_at"],
                declined_at=row["declined_at"],
            )
            for row in membership_rows
        ]
        pending = [
            PendingMembership(
                id=row["id"],
                name=ProtectedField(
                    encrypted=row["name_encrypted"], hash=row["name_hash"]
                ),
                status=InvitationStatus(row["status"]),
                pending_at=row["pending_at"],
                accepted_at=row["accepted_at"],
                declined_at=row["declined_at"],
            )
            for row in pending_rows
        ]
        return Principal(
            id=user_row["id"],
            email=ProtectedField(
                encrypted=user_row["email_encrypted"], hash=user_row["email_hash"]
            ),
            full_name=ProtectedField(
                encrypted=user_row["full_name_encrypted"],
                hash=user_row["full_name_hash"],
            ),
            password=user_row["password"],
            subscription_id=user_row["subscription_id"],
            email_verified_at=user_row["email_verified_at"],
            last_logged_in_at=user_row["last_logged_in_at"],
            archived_at=user_row["archived_at"],
            memberships=memberships,
            pending_memberships=pending,
        )

    async def _load_principal(
        self, session: AsyncSession, where_clause: str, params: Dict[str, Any]
    ) -> Optional[Principal]:
        result = await session.execute(
            text(f"SELECT {USER_COLUMNS} FROM users WHERE {where_clause} LIMIT 1"),
            params,
        )
        user_row = result.mappings().one_or_none()
        if user_row is None:
            return None

        user_row = dict(user_row)
        memberships_result = await session.execute(
            text(MEMBERSHIPS_QUERY), {"user_id": user_row["id"]}
        )
        membership_rows = [dict(row) for row in memberships_result.mappings().all()]

        pending_result = await session.execute(
            text(PENDING_MEMBERSHIPS_QUERY), {"user_id": user_row["id"]}
        )
        pending_rows = [dict(row) for row in pending_result.mappings().all()]

        return self._build_principal(user_row, membership_rows, pending_rows)

    # ========================================================================
    # READ OPERATIONS
    # ========================================================================

    async def get_user_by_id(
        self, user_id: UUID, session: Optional[AsyncSession] = None
    ) -> Optional[Principal]:
        """Load a principal (archived or not) with resolved memberships."""
        self.require_uuid(user_id, "user_id")
        try:
            async with self.transaction(session) as active_session:
                return await self._load_principal(
                    active_session, "id = :user_id", {"user_id": user_id}
                )
        except Exception as e:
            logger.error(f"Error loading user {user_id}: {e}")
            raise

    async def get_active_user_by_email(
        self, email_hash: str, session: Optional[AsyncSession] = None
    ) -> Optional[Principal]:
        """Load the non-archived principal whose email hashes to ``email_hash``."""
        self.require_text(email_hash, "email_hash")
        async with self.transaction(session) as active_session:
            return await self._load_principal(
                active_session,
                "email_hash = :email_hash AND archived_at IS NULL",
                {"email_hash": email_hash},
            )

    async def check_email_exists(self, email_hash: str) -> bool:
        """Check whether a live account already uses this email."""
        return await self.row_exists(
            "SELECT 1 FROM users WHERE email_hash = :email_hash "
            "AND archived_at IS NULL LIMIT 1",
            {"email_hash": email_hash},
        )

    # ========================================================================
    # CREATE OPERATIONS
    # ========================================================================

    async def create_user(
        self,
        email: ProtectedField,
        full_name: ProtectedField,
        password_hash: str,
        subscription_id: Optional[UUID] = None,
        email_verified_at: Optional[datetime] = None,
        session: Optional[AsyncSession] = None,
    ) -> UUID:
        user_id = uuid4()
        async with self.transaction(session) as active_session:
            await active_session.execute(
                text(
                    """
                    INSERT INTO users (
                        id, email_encrypted, email_hash, full_name_encrypted,
                        full_name_hash, password, subscription_id, email_verified_at
                    )
                    VALUES (
                        :id, :email_encrypted, :email_hash, :full_name_encrypted,
                        :full_name_hash, :password, :subscription_id, :email_verified_at
                    )
                    """
                ),
                {
                    "id": user_id,
                    "email_encrypted": email.encrypted,
                    "email_hash": email.hash,
                    "full_name_encrypted": full_name.encrypted,
                    "full_name_hash": full_name.hash,
                    "password": password_hash,
                    "subscription_id": subscription_id,
                    "email_verified_at": email_verified_at,
                },
            )
        self.log_write("Created user", user_id)
        return user_id

    async def add_membership(
        self,
        user_id: UUID,
        organization_id: UUID,
        roles: List[str],
        is_owner: bool = False,
        status: InvitationStatus = InvitationStatus.PENDING,
        approved_at: Optional[datetime] = None,
        session: Optional[AsyncSession] = None,
    ) -> UUID:
        membership_id = uuid4()
        now = _utc_now()
        async with self.transaction(session) as active_session:
            await active_session.execute(
                text(
                    """
                    INSERT INTO user_memberships (
                        id, user_id, organization_id, roles, is_owner, status,
                        approved_at, pending_at, accepted_at
                    )
                    VALUES (
                        :id, :user_id, :organization_id, :roles, :is_owner, :status,
                        :approved_at, :pending_at, :accepted_at
                    )
                    """
                ),
                {
                    "id": membership_id,
                    "user_id": user_id,
                    "organization_id": organization_id,
                    "roles": list(roles),
                    "is_owner": is_owner,
                    "status": status.value,
                    "approved_at": approved_at,
                    "pending_at": now if status == InvitationStatus.PENDING else None,
                    "accepted_at": now if status == InvitationStatus.ACCEPTED else None,
                },
            )
        self.log_write("Created membership", membership_id, detail=status.value)
        return membership_id

    async def add_pending_membership(
        self,
        user_id: UUID,
        name: ProtectedField,
        session: Optional[AsyncSession] = None,
    ) -> UUID:
        """Record an invitation for ``user_id`` to own the organization ``name``."""
        pending_id = uuid4()
        async with self.transaction(session) as active_session:
            await active_session.execute(
                text(
                    """
                    INSERT INTO pending_memberships (
                        id, user_id, name_encrypted, name_hash, status, pending_at
                    )
                    VALUES (
                        :id, :user_id, :name_encrypted, :name_hash, 'Pending', :pending_at
                    )
                    """
                ),
                {
                    "id": pending_id,
                    "user_id": user_id,
                    "name_encrypted": name.encrypted,
                    "name_hash": name.hash,
                    "pending_at": _utc_now(),
                },
            )
        self.log_write("Created pending membership", pending_id)
        return pending_id

    # ========================================================================
    # UPDATE OPERATIONS
    # ========================================================================

    async def update_membership_status(
        self,
        membership_id: UUID,
        status: InvitationStatus,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        """Move a pending membership to Accepted or Declined."""
        timestamp_column = (
            "accepted_at" if status == InvitationStatus.ACCEPTED else "declined_at"
        )
        async with self.transaction(session) as active_session:
            result = await active_session.execute(
                text(
                    f"""
                    UPDATE user_memberships
                    SET status = :status, {timestamp_column} = :now
                    WHERE id = :id AND status = 'Pending'
                    """
                ),
                {"status": status.value, "now": _utc_now(), "id": membership_id},
            )
            return result.rowcount > 0

    async def update_pending_membership_status(
        self,
        pending_id: UUID,
        status: InvitationStatus,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        timestamp_column = (
            "accepted_at" if status == InvitationStatus.ACCEPTED else "declined_at"
        )
        async with self.transaction(session) as active_session:
            result = await active_session.execute(
                text(
                    f"""
                    UPDATE pending_memberships
                    SET status = :status, {timestamp_column} = :now
                    WHERE id = :id AND status = 'Pending'
                    """
                ),
                {"status": status.value, "now": _utc_now(), "id": pending_id},
            )
            return result.rowcount > 0

    async def reopen_membership(
        self, membership_id: UUID, session: Optional[AsyncSession] = None
    ) -> bool:
        """Put a declined membership back to Pending for a fresh invitation."""
        async with self.transaction(session) as active_session:
            result = await active_session.execute(
                text(
                    """
                    UPDATE user_memberships
                    SET status = 'Pending', pending_at = :now, declined_at = NULL
                    WHERE id = :id AND status = 'Declined'
                    """
                ),
                {"now": _utc_now(), "id": membership_id},
            )
            return result.rowcount > 0

    async def reopen_pending_membership(
        self, pending_id: UUID, session: Optional[AsyncSession] = None
    ) -> bool:
        """Put an answered owner invitation back to Pending."""
        async with self.transaction(session) as active_session:
            result = await active_session.execute(
                text(
                    """
                    UPDATE pending_memberships
                    SET status = 'Pending', pending_at = :now,
                        accepted_at = NULL, declined_at = NULL
                    WHERE id = :id AND status <> 'Pending'
                    """
                ),
                {"now": _utc_now(), "id": pending_id},
            )
            return result.rowcount > 0

    async def set_membership_flag(
        self,
        user_id: UUID,
        organization_id: UUID,
        column: str,
        value: Optional[datetime],
        session: Optional[AsyncSession] = None,
    ) -> bool:
        """Set approved_at or blocked_at on a user's membership in an organization."""
        if column not in ("approved_at", "blocked_at"):
            raise ValueError(f"Unsupported membership column: {column}")

        async with self.transaction(session) as active_session:
            result = await active_session.execute(
                text(
                    f"""
                    UPDATE user_memberships SET {column} = :value
                    WHERE user_id = :user_id AND organization_id = :organization_id
                    """
                ),
                {
                    "value": value,
                    "user_id": user_id,
                    "organization_id": organization_id,
                },
            )
            return result.rowcount > 0

    async def approve_membership(
        self, user_id: UUID, organization_id: UUID, session: Optional[AsyncSession] = None
    ) -> bool:
        return await self.set_membership_flag(
            user_id, organization_id, "approved_at", _utc_now(), session=session
        )

    async def block_membership(
        self, user_id: UUID, organization_id: UUID, session: Optional[AsyncSession] = None
    ) -> bool:
        return await self.set_membership_flag(
            user_id, organization_id, "blocked_at", _utc_now(), session=session
        )

    async def unblock_membership(
        self, user_id: UUID, organization_id: UUID, session: Optional[AsyncSession] = None
    ) -> bool:
        return await self.set_membership_flag(
            user_id, organization_id, "blocked_at", None, session=session
        )

    async def set_user_subscription(
        self,
        user_id: UUID,
        subscription_id: UUID,
        session: Optional[AsyncSession] = None,
    ) -> None:
        await self.execute_write(
            "UPDATE users SET subscription_id = :subscription_id, "
            "updated_at = CURRENT_TIMESTAMP WHERE id = :user_id",
            {"subscription_id": subscription_id, "user_id": user_id},
            session=session,
        )

    async def update_password(self, user_id: UUID, password_hash: str) -> bool:
        updated = await self.execute_write(
            "UPDATE users SET password = :password, "
            "updated_at = CURRENT_TIMESTAMP WHERE id = :user_id",
            {"password": password_hash, "user_id": user_id},
        )
        self.log_write("Updated password of", user_id, success=updated > 0)
        return updated > 0

    async def update_last_login(self, user_id: UUID) -> None:
        await self.execute_write(
            "UPDATE users SET last_logged_in_at = :now WHERE id = :user_id",
            {"now": _utc_now(), "user_id": user_id},
        )
