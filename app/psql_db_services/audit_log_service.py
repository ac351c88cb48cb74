"""
PostgreSQL Operations for Audit Logs
------------------------------------
Append-only activity log per organization. Snapshots and activity text are
encrypted by the caller before they reach this service.
"""

from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database_connection import DatabaseManager
from app.models.identity_models import ProtectedField
from app.psql_db_services.base_service import BaseDatabaseService


class UserLogType:
    LOGIN = "Login"
    APPROVE = "Approve User"
    BLOCK = "Block User"
    UNBLOCK = "Unblock User"
    PASSWORD_CHANGE = "Change Password"


class InvitationLogType:
    ACCEPT_INVITATION = "Accept Invitation"
    DECLINE_INVITATION = "Decline Invitation"
    ACCEPT_OWNER_INVITATION = "Accept Owner Invitation"
    DECLINE_OWNER_INVITATION = "Decline Owner Invitation"
    INVITE_OWNER = "Invite Owner"
    INVITE_EXISTING_AS_OWNER = "Invite Existing User As Owner"


class AuditLogService(BaseDatabaseService):
    def __init__(self, database_manager: Optional[DatabaseManager] = None):
        super().__init__(database_manager)

    async def create_log(
        self,
        organization_id: UUID,
        payload_snapshot: str,
        log_type: str,
        activity: ProtectedField,
        session: Optional[AsyncSession] = None,
    ) -> UUID:
        """
        Append an audit entry.

        Args:
            organization_id: Organization the activity belongs to
            payload_snapshot: Encrypted JSON snapshot of the request payload
            log_type: One of the *LogType constants
            activity: Protected human readable description
            session: Optional unit of work to join
        """
        log_id = uuid4()
        await self.execute_write(
            """
            INSERT INTO audit_logs (
                id, organization_id, type, payload_snapshot,
                activity_encrypted, activity_hash
            )
            VALUES (
                :id, :organization_id, :type, :payload_snapshot,
                :activity_encrypted, :activity_hash
            )
            """,
            {
                "id": log_id,
                "organization_id": organization_id,
                "type": log_type,
                "payload_snapshot": payload_snapshot,
                "activity_encrypted": activity.encrypted,
                "activity_hash": activity.hash,
            },
            session=session,
        )
        return log_id
