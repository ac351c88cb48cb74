"""
PostgreSQL Operations for Subscriptions
---------------------------------------
Minimal subscription records created alongside memberships and
organizations. Billing itself lives outside this service.
"""

from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database_connection import DatabaseManager
from app.psql_db_services.base_service import BaseDatabaseService

BASIC_ORGANIZATION_PLAN = "basic-organization"
ORGANIZATION_MEMBER_PLAN = "organization-member"
PUBLIC_LEARNER_PLAN = "public-learner"
PUBLIC_STAFF_PLAN = "public-staff"


def plan_for_member(role: str, is_public: bool) -> str:
    """Plan assigned to a user joining an organization with ``role``."""
    if not is_public:
        return ORGANIZATION_MEMBER_PLAN
    if role == "Learner":
        return PUBLIC_LEARNER_PLAN
    return PUBLIC_STAFF_PLAN


class SubscriptionsService(BaseDatabaseService):
    def __init__(self, database_manager: Optional[DatabaseManager] = None):
        super().__init__(database_manager)

    async def create_subscription(
        self,
        plan: str,
        status: str = "active",
        session: Optional[AsyncSession] = None,
    ) -> UUID:
        self.require_text(plan, "plan")
        subscription_id = uuid4()
        await self.execute_write(
            "INSERT INTO subscriptions (id, plan, status) VALUES (:id, :plan, :status)",
            {"id": subscription_id, "plan": plan, "status": status},
            session=session,
        )
        self.log_write("Created subscription", subscription_id, detail=plan)
        return subscription_id

    async def create_user_subscription(
        self, role: str, is_public: bool, session: Optional[AsyncSession] = None
    ) -> UUID:
        return await self.create_subscription(
            plan_for_member(role, is_public), session=session
        )
