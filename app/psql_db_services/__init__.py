"""
Database Services Package
-------------------------
PostgreSQL repositories for the identity and access layer.

This package provides:
- Base service class with session management and unit-of-work scopes
- Principal repository returning fully resolved memberships
- Refresh token family storage with row-level locking
- Organization, subscription and audit log storage

Sensitive values reach these services already protected; no service holds
encryption keys.
"""

from app.psql_db_services.base_service import BaseDatabaseService
from app.psql_db_services.users_service import UsersService
from app.psql_db_services.refresh_token_service import RefreshTokenService
from app.psql_db_services.organizations_service import OrganizationsService
from app.psql_db_services.subscriptions_service import SubscriptionsService
from app.psql_db_services.audit_log_service import AuditLogService

__all__ = [
    "BaseDatabaseService",
    "UsersService",
    "RefreshTokenService",
    "OrganizationsService",
    "SubscriptionsService",
    "AuditLogService",
]
