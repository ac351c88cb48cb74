"""
Component Providers
-------------------
Builds each auth component once from the global settings and hands it to
FastAPI through ``Depends``. Tests swap any of them via
``app.dependency_overrides``.
"""

from functools import lru_cache

from app.auth.auth_service import AuthService
from app.auth.field_cipher import FieldCipher
from app.auth.jwt_utils import TokenCodec
from app.auth.membership import MembershipResolver
from app.auth.notifications import EmailDispatcher, LoggingEmailDispatcher
from app.auth.permissions import PermissionEngine
from app.auth.refresh_sessions import RefreshSessionStore
from app.auth.tenancy_service import TenancyService
from app.core.config_manager import SecurityConfig, settings
from app.psql_db_services import (
    AuditLogService,
    OrganizationsService,
    RefreshTokenService,
    SubscriptionsService,
    UsersService,
)
from app.utils.password_hashing import PasswordHasher


@lru_cache()
def get_security_config() -> SecurityConfig:
    return settings.security_config()


@lru_cache()
def get_field_cipher() -> FieldCipher:
    return FieldCipher(get_security_config())


@lru_cache()
def get_password_hasher() -> PasswordHasher:
    return PasswordHasher(salt_rounds=get_security_config().bcrypt_salt_rounds)


@lru_cache()
def get_token_codec() -> TokenCodec:
    return TokenCodec(get_security_config())


@lru_cache()
def get_membership_resolver() -> MembershipResolver:
    return MembershipResolver(
        get_field_cipher(), get_security_config().public_organization_name
    )


@lru_cache()
def get_permission_engine() -> PermissionEngine:
    return PermissionEngine(get_membership_resolver())


# Database services share the DatabaseManager singleton
@lru_cache()
def get_users_service() -> UsersService:
    return UsersService()


@lru_cache()
def get_organizations_service() -> OrganizationsService:
    return OrganizationsService()


@lru_cache()
def get_subscriptions_service() -> SubscriptionsService:
    return SubscriptionsService()


@lru_cache()
def get_audit_log_service() -> AuditLogService:
    return AuditLogService()


@lru_cache()
def get_refresh_session_store() -> RefreshSessionStore:
    return RefreshSessionStore(
        token_codec=get_token_codec(),
        password_hasher=get_password_hasher(),
        repository=RefreshTokenService(),
    )


@lru_cache()
def get_email_dispatcher() -> EmailDispatcher:
    return LoggingEmailDispatcher()


@lru_cache()
def get_tenancy_service() -> TenancyService:
    return TenancyService(
        field_cipher=get_field_cipher(),
        token_codec=get_token_codec(),
        resolver=get_membership_resolver(),
        users=get_users_service(),
        organizations=get_organizations_service(),
        subscriptions=get_subscriptions_service(),
        audit_logs=get_audit_log_service(),
        email_dispatcher=get_email_dispatcher(),
        public_organization_name=settings.public_organization_name,
        organization_code_length=settings.organization_code_length,
        frontend_url=settings.frontend_url,
    )


@lru_cache()
def get_auth_service() -> AuthService:
    return AuthService(
        field_cipher=get_field_cipher(),
        password_hasher=get_password_hasher(),
        token_codec=get_token_codec(),
        resolver=get_membership_resolver(),
        session_store=get_refresh_session_store(),
        users=get_users_service(),
        organizations=get_organizations_service(),
        subscriptions=get_subscriptions_service(),
        audit_logs=get_audit_log_service(),
        tenancy=get_tenancy_service(),
        email_dispatcher=get_email_dispatcher(),
        public_organization_name=settings.public_organization_name,
        frontend_url=settings.frontend_url,
    )
