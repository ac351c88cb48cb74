"""
Permission Engine
-----------------
Decides whether a principal may act inside a tenant and which role
authorized the decision.

Evaluation order:
1. Optional public-admin short circuit (platform operators acting on any tenant)
2. Membership lookup by tenant slug
3. Expansion of the tenant's permission rows into a set of held permissions
4. Every required permission must be held
5. The first row that matches the membership and shares a required
   permission names the authorizing role
"""

from typing import FrozenSet, Iterable, Optional, Sequence

from loguru import logger
from pydantic import BaseModel, ConfigDict

from app.auth.membership import MembershipResolver, is_usable
from app.core.exceptions import ForbiddenError
from app.models.identity_models import InvitationStatus, Membership, Principal, Role


class RequestAuth(BaseModel):
    """Membership and role that authorized the current request."""

    model_config = ConfigDict(frozen=True)

    membership: Membership
    role: str
    permissions: FrozenSet[str] = frozenset()


def _row_matches(role: str, membership: Membership) -> bool:
    if role == Role.OWNER.value:
        return membership.is_owner
    return role in membership.roles


def expand_permissions(membership: Membership) -> FrozenSet[str]:
    """All permissions the membership holds in its organization."""
    held = set()
    for row in membership.organization.permissions:
        if _row_matches(row.role, membership):
            held.update(row.permissions)
    return frozenset(held)


def find_authorizing_role(
    required: Iterable[str], membership: Membership
) -> Optional[str]:
    """
    First matching row sharing a required permission.

    Owner rows are reported as "Admin", the role owners are stored with.
    """
    required_set = set(required)
    for row in membership.organization.permissions:
        if not _row_matches(row.role, membership):
            continue
        if required_set.isdisjoint(row.permissions):
            continue
        if row.role == Role.OWNER.value:
            return Role.ADMIN.value
        return row.role
    return None


class PermissionEngine:
    def __init__(self, resolver: MembershipResolver):
        self.resolver = resolver

    def authorize(
        self,
        principal: Principal,
        required: Sequence[str],
        tenant_slug: str,
        allow_public_admins: bool = False,
        allow_pending_invitation: bool = False,
    ) -> RequestAuth:
        """
        Grant or deny ``required`` for ``principal`` inside ``tenant_slug``.

        ``allow_pending_invitation`` also admits a membership that is still
        Pending (and not blocked), so the invitee can answer the invitation.

        Raises:
            ForbiddenError: On any denial
        """
        required = [getattr(p, "value", p) for p in required]

        if allow_public_admins:
            public_membership = self.resolver.find_public_admin_membership(principal)
            if public_membership is not None and is_usable(public_membership):
                logger.debug(
                    f"User {principal.id} authorized as public {public_membership.roles[0]}"
                )
                return RequestAuth(
                    membership=public_membership,
                    role=public_membership.roles[0],
                    permissions=expand_permissions(public_membership),
                )

        membership = self.resolver.find_membership(principal, tenant_slug)
        if membership is None or not self._admits(membership, allow_pending_invitation):
            logger.info(f"User {principal.id} is not a member of '{tenant_slug}'")
            raise ForbiddenError("Not a member of this organization")

        held = expand_permissions(membership)
        missing = [p for p in required if p not in held]
        if missing:
            logger.info(
                f"User {principal.id} denied in '{tenant_slug}', missing: {', '.join(missing)}"
            )
            raise ForbiddenError("Insufficient permissions")

        role = find_authorizing_role(required, membership)
        if role is None:
            logger.bind(security_event="permission_matrix_divergence").error(
                f"No row authorizes {required} for membership {membership.id} "
                f"of organization {membership.organization.id}"
            )
            raise ForbiddenError("Role not found")

        return RequestAuth(membership=membership, role=role, permissions=held)

    @staticmethod
    def _admits(membership: Membership, allow_pending_invitation: bool) -> bool:
        if is_usable(membership):
            return True
        return (
            allow_pending_invitation
            and membership.status == InvitationStatus.PENDING
            and membership.blocked_at is None
        )
