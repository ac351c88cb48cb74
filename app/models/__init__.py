"""
Identity Models Package
-----------------------
Pydantic models for the identity and access layer.

Value objects for principals, organizations and resolved memberships.
Request and response bodies of the HTTP API live in ``app.auth.models``;
health responses in ``app.models.health_models``.
"""

from app.models.identity_models import (
    Role,
    InvitationStatus,
    ProtectedField,
    RolePermission,
    Organization,
    Membership,
    PendingMembership,
    Principal,
    RefreshTokenEntry,
)

__all__ = [
    "Role",
    "InvitationStatus",
    "ProtectedField",
    "RolePermission",
    "Organization",
    "Membership",
    "PendingMembership",
    "Principal",
    "RefreshTokenEntry",
]
