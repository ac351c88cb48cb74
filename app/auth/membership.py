"""
Membership Resolver
-------------------
Locates a principal's membership in a tenant by comparing search hashes of
the tenant slug or name against the principal's resolved membership list.
Membership counts per principal are small, so a linear scan is fine.
"""

from typing import Optional

from app.auth.field_cipher import FieldCipher
from app.models.identity_models import (
    InvitationStatus,
    Membership,
    Principal,
    Role,
)

PUBLIC_ADMIN_ROLES = (Role.ADMIN.value, Role.SUPER_ADMIN.value)


def is_usable(membership: Membership) -> bool:
    """Accepted, approved and not blocked."""
    return (
        membership.status == InvitationStatus.ACCEPTED
        and membership.approved_at is not None
        and membership.blocked_at is None
    )


class MembershipResolver:
    def __init__(self, field_cipher: FieldCipher, public_organization_name: str):
        self.field_cipher = field_cipher
        self.public_organization_name = public_organization_name

    def find_membership(
        self, principal: Principal, tenant_slug: str
    ) -> Optional[Membership]:
        """Membership whose organization slug matches, in any state."""
        slug_hash = self.field_cipher.hash_only(tenant_slug)
        for membership in principal.memberships:
            if membership.organization.slug.hash == slug_hash:
                return membership
        return None

    def find_membership_by_name(
        self, principal: Principal, organization_name: str
    ) -> Optional[Membership]:
        name_hash = self.field_cipher.hash_only(organization_name)
        for membership in principal.memberships:
            if membership.organization.name.hash == name_hash:
                return membership
        return None

    def default_membership(self, principal: Principal) -> Optional[Membership]:
        """First usable membership, or None when the principal is locked out."""
        for membership in principal.memberships:
            if is_usable(membership):
                return membership
        return None

    def find_public_admin_membership(
        self, principal: Principal
    ) -> Optional[Membership]:
        """Admin or Super Admin membership in the public organization."""
        public_hash = self.field_cipher.hash_only(self.public_organization_name)
        for membership in principal.memberships:
            if membership.organization.name.hash != public_hash:
                continue
            if any(role in PUBLIC_ADMIN_ROLES for role in membership.roles):
                return membership
        return None

    def is_public_organization(self, membership: Membership) -> bool:
        return membership.organization.name.hash == self.field_cipher.hash_only(
            self.public_organization_name
        )

    @staticmethod
    def is_usable(membership: Membership) -> bool:
        return is_usable(membership)
