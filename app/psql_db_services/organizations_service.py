"""
PostgreSQL Operations for Organizations
---------------------------------------
Tenants with protected name/slug, an immutable random code and the
materialized permission matrix stored as JSONB.
"""

import json
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from app.core.database_connection import DatabaseManager
from app.models.identity_models import Organization, ProtectedField, RolePermission
from app.psql_db_services.base_service import BaseDatabaseService

ORGANIZATION_COLUMNS = """
    id AS organization_id, name_encrypted, name_hash, slug_encrypted, slug_hash,
    code, permissions, subscription_id
"""


def _serialize_permissions(permissions: List[RolePermission]) -> str:
    return json.dumps([row.model_dump() for row in permissions])


class OrganizationsService(BaseDatabaseService):
    def __init__(self, database_manager: Optional[DatabaseManager] = None):
        super().__init__(database_manager)

    def _build_organization(self, row: Dict[str, Any]) -> Organization:
        permissions = self.decode_jsonb(row["permissions"], default=[])
        return Organization(
            id=row["organization_id"],
            name=ProtectedField(encrypted=row["name_encrypted"], hash=row["name_hash"]),
            slug=ProtectedField(encrypted=row["slug_encrypted"], hash=row["slug_hash"]),
            code=row["code"],
            permissions=[RolePermission(**entry) for entry in permissions],
            subscription_id=row["subscription_id"],
        )

    async def _fetch_one(
        self,
        where_clause: str,
        params: Dict[str, Any],
        session: Optional[AsyncSession] = None,
    ) -> Optional[Organization]:
        row = await self.fetch_row(
            f"SELECT {ORGANIZATION_COLUMNS} FROM organizations WHERE {where_clause} LIMIT 1",
            params,
            session=session,
        )
        return self._build_organization(row) if row else None

    async def get_organization_by_id(
        self, organization_id: UUID, session: Optional[AsyncSession] = None
    ) -> Optional[Organization]:
        self.require_uuid(organization_id, "organization_id")
        return await self._fetch_one(
            "id = :id", {"id": organization_id}, session=session
        )

    async def get_organization_by_name_hash(
        self, name_hash: str, session: Optional[AsyncSession] = None
    ) -> Optional[Organization]:
        return await self._fetch_one(
            "name_hash = :name_hash", {"name_hash": name_hash}, session=session
        )

    async def slug_or_name_exists(
        self, name_hash: str, slug_hash: str, session: Optional[AsyncSession] = None
    ) -> bool:
        return await self.row_exists(
            "SELECT 1 FROM organizations WHERE name_hash = :name_hash "
            "OR slug_hash = :slug_hash LIMIT 1",
            {"name_hash": name_hash, "slug_hash": slug_hash},
            session=session,
        )

    async def code_exists(
        self, code: str, session: Optional[AsyncSession] = None
    ) -> bool:
        return await self.row_exists(
            "SELECT 1 FROM organizations WHERE code = :code LIMIT 1",
            {"code": code},
            session=session,
        )

    async def create_organization(
        self,
        name: ProtectedField,
        slug: ProtectedField,
        code: str,
        permissions: List[RolePermission],
        subscription_id: Optional[UUID] = None,
        session: Optional[AsyncSession] = None,
    ) -> Organization:
        organization_id = uuid4()
        await self.execute_write(
            """
            INSERT INTO organizations (
                id, name_encrypted, name_hash, slug_encrypted, slug_hash,
                code, permissions, subscription_id
            )
            VALUES (
                :id, :name_encrypted, :name_hash, :slug_encrypted, :slug_hash,
                :code, CAST(:permissions AS JSONB), :subscription_id
            )
            """,
            {
                "id": organization_id,
                "name_encrypted": name.encrypted,
                "name_hash": name.hash,
                "slug_encrypted": slug.encrypted,
                "slug_hash": slug.hash,
                "code": code,
                "permissions": _serialize_permissions(permissions),
                "subscription_id": subscription_id,
            },
            session=session,
        )
        self.log_write("Created organization", organization_id)
        return Organization(
            id=organization_id,
            name=name,
            slug=slug,
            code=code,
            permissions=permissions,
            subscription_id=subscription_id,
        )

    async def list_organization_name_hashes(self) -> List[Dict[str, Any]]:
        """Every organization id with its name hash."""
        return await self.fetch_rows(
            "SELECT id, name_hash FROM organizations ORDER BY created_at"
        )

    async def update_permissions(
        self,
        organization_id: UUID,
        permissions: List[RolePermission],
        session: Optional[AsyncSession] = None,
    ) -> None:
        await self.execute_write(
            """
            UPDATE organizations
            SET permissions = CAST(:permissions AS JSONB), updated_at = CURRENT_TIMESTAMP
            WHERE id = :id
            """,
            {"permissions": _serialize_permissions(permissions), "id": organization_id},
            session=session,
        )
        logger.debug(f"Permissions reseeded for organization {organization_id}")
