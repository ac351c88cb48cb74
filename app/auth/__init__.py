"""
Identity and Access Module
--------------------------
Authentication and tenant authorization for the platform.

Core Components:
- field_cipher: searchable AES-256-GCM encryption of sensitive fields
- jwt_utils: TokenCodec for access, refresh, invitation and reset tokens
- refresh_sessions: refresh token rotation with reuse detection
- membership / permissions: tenant membership lookup and permission checks
- dependencies: AuthenticationGate and PermissionChecker for FastAPI
- endpoints: /api/auth routes

Usage:
    from app.auth import PermissionChecker, Permission, RequestAuth

    require_service_view = PermissionChecker([Permission.SERVICE_VIEW])

    @router.get("/{org}/services")
    async def list_services(auth: RequestAuth = Depends(require_service_view)):
        return {"role": auth.role}
"""

from app.auth.dependencies import (
    AuthenticationGate,
    PermissionChecker,
    authenticate_request,
    get_current_user,
)
from app.auth.field_cipher import FieldCipher
from app.auth.jwt_utils import TokenCodec
from app.auth.membership import MembershipResolver
from app.auth.permission_matrix import Permission
from app.auth.permissions import PermissionEngine, RequestAuth
from app.auth.refresh_sessions import RefreshSessionStore

__all__ = [
    # Dependencies
    "AuthenticationGate",
    "PermissionChecker",
    "authenticate_request",
    "get_current_user",
    # Components
    "FieldCipher",
    "TokenCodec",
    "MembershipResolver",
    "PermissionEngine",
    "RefreshSessionStore",
    # Models
    "Permission",
    "RequestAuth",
]
