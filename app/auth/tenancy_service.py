"""
Tenancy Service
---------------
Organization lifecycle and membership state changes:

- organization creation with kebab-case slug, random code and seeded permissions
- permission reseeding from the static matrix
- member invitations and their acceptance or refusal
- owner invitations for organizations that do not exist yet
  and their acceptance, which creates the organization
- approve / block / unblock of members by administrators

Every change touching more than one record runs inside a single unit of work.
"""

import re
import secrets
import string
from datetime import datetime, timezone
from typing import Literal, Optional
from urllib.parse import urlencode
from uuid import UUID

from loguru import logger

from app.auth.field_cipher import FieldCipher, canonical_email
from app.auth.jwt_utils import TokenCodec
from app.auth.membership import MembershipResolver
from app.auth.notifications import EmailDispatcher
from app.auth.permission_matrix import default_permission_rows
from app.auth.permissions import RequestAuth
from app.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
)
from app.models.identity_models import (
    InvitationStatus,
    Organization,
    Principal,
    Role,
)
from app.psql_db_services.audit_log_service import (
    AuditLogService,
    InvitationLogType,
    UserLogType,
)
from app.psql_db_services.organizations_service import OrganizationsService
from app.psql_db_services.subscriptions_service import (
    BASIC_ORGANIZATION_PLAN,
    SubscriptionsService,
)
from app.psql_db_services.users_service import UsersService

InvitationAction = Literal["accept", "decline"]
MemberAction = Literal["approve", "block", "unblock"]

CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 5

INVITABLE_ROLES = (Role.LEARNER.value, Role.TRAINER.value, Role.ADMIN.value)
OWNER_INVITATION_TYPE = "basic-organization-owner"


def kebab_case(value: str) -> str:
    """'Acme Training Co.' -> 'acme-training-co'; 'camelCase' -> 'camel-case'."""
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", value)
    words = re.findall(r"[A-Za-z0-9]+", spaced)
    return "-".join(word.lower() for word in words)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TenancyService:
    def __init__(
        self,
        field_cipher: FieldCipher,
        token_codec: TokenCodec,
        resolver: MembershipResolver,
        users: UsersService,
        organizations: OrganizationsService,
        subscriptions: SubscriptionsService,
        audit_logs: AuditLogService,
        email_dispatcher: EmailDispatcher,
        public_organization_name: str,
        organization_code_length: int,
        frontend_url: str,
    ):
        self.field_cipher = field_cipher
        self.token_codec = token_codec
        self.resolver = resolver
        self.users = users
        self.organizations = organizations
        self.subscriptions = subscriptions
        self.audit_logs = audit_logs
        self.email_dispatcher = email_dispatcher
        self.public_organization_name = public_organization_name
        self.organization_code_length = organization_code_length
        self.frontend_url = frontend_url.rstrip("/")

    # ========================================================================
    # ORGANIZATIONS
    # ========================================================================

    async def _generate_code(self, session=None) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = "".join(
                secrets.choice(CODE_ALPHABET)
                for _ in range(self.organization_code_length)
            )
            if not await self.organizations.code_exists(code, session=session):
                return code
        raise ConflictError("Unable to allocate an organization code")

    async def create_organization(
        self,
        name: str,
        subscription_id: Optional[UUID] = None,
        session=None,
    ) -> Organization:
        """
        Create an organization with seeded permissions.

        Raises:
            BadRequestError: If the name yields an empty slug
            ConflictError: If the name or slug is already used
        """
        slug = kebab_case(name)
        if not slug:
            raise BadRequestError("Organization name must contain letters or digits")

        name_field = self.field_cipher.protect(name)
        slug_field = self.field_cipher.protect(slug)
        if await self.organizations.slug_or_name_exists(
            name_field.hash, slug_field.hash, session=session
        ):
            raise ConflictError("Organization name is already taken")

        code = await self._generate_code(session=session)
        is_public = name == self.public_organization_name
        organization = await self.organizations.create_organization(
            name=name_field,
            slug=slug_field,
            code=code,
            permissions=default_permission_rows(is_public),
            subscription_id=subscription_id,
            session=session,
        )
        logger.info(f"Organization {organization.id} created with slug '{slug}'")
        return organization

    async def reseed_permissions(self) -> int:
        """Overwrite every organization's permission rows from the static matrix."""
        public_hash = self.field_cipher.hash_only(self.public_organization_name)
        rows = await self.organizations.list_organization_name_hashes()

        async with self.organizations.transaction() as session:
            for row in rows:
                await self.organizations.update_permissions(
                    row["id"],
                    default_permission_rows(row["name_hash"] == public_hash),
                    session=session,
                )

        logger.info(f"Reseeded permissions for {len(rows)} organization(s)")
        return len(rows)

    # ========================================================================
    # INVITATIONS
    # ========================================================================

    async def invite_user(
        self, actor: Principal, auth: RequestAuth, email: str, role: str
    ) -> Literal["existing-user", "new-user"]:
        """
        Invite ``email`` into the organization that authorized ``auth``.

        Existing users get a pending membership; new users get a signed
        invitation link for registration.
        """
        organization = auth.membership.organization
        is_public = self.resolver.is_public_organization(auth.membership)
        allowed = INVITABLE_ROLES + ((Role.SUPER_ADMIN.value,) if is_public else ())
        if role not in allowed:
            raise BadRequestError("Unsupported role")

        email = canonical_email(email)
        org_name = self.field_cipher.reveal(organization.name)
        actor_name = self.field_cipher.reveal(actor.full_name)
        existing = await self.users.get_active_user_by_email(
            self.field_cipher.hash_only(email)
        )

        if existing is None:
            token = self.token_codec.create_invitation_token(
                email=email, role=role, organization_id=organization.id
            )
            query = urlencode({"invitation_token": token, "email": email})
            url = f"{self.frontend_url}/sign-up?{query}"
            await self.email_dispatcher.send_invitation(email, org_name, role, url)
            outcome = "new-user"
        else:
            current = next(
                (
                    m
                    for m in existing.memberships
                    if m.organization.id == organization.id
                ),
                None,
            )
            if current is not None:
                if current.status == InvitationStatus.ACCEPTED:
                    raise ConflictError("User is already member of given organization")
                if current.status == InvitationStatus.PENDING:
                    raise ConflictError("User is already invited to this organization")
                await self.users.reopen_membership(current.id)
            else:
                await self.users.add_membership(
                    existing.id,
                    organization.id,
                    [role],
                    status=InvitationStatus.PENDING,
                    approved_at=_utc_now(),
                )
            slug = self.field_cipher.reveal(organization.slug)
            url = f"{self.frontend_url}/{slug}/{role.lower()}/account"
            await self.email_dispatcher.send_invitation(email, org_name, role, url)
            outcome = "existing-user"

        logger.info(f"{actor_name} ({auth.role}) invited a {role} to {org_name}")
        return outcome

    async def invite_owner(
        self, actor: Principal, auth: RequestAuth, email: str, organization_name: str
    ) -> Literal["existing-user", "new-user"]:
        """
        Invite ``email`` to own the not-yet-created organization ``organization_name``.

        New users get a signed owner invitation link for registration; existing
        users get a pending membership they answer from their account.

        Raises:
            ForbiddenError: If the actor is not an administrator of the public organization
            BadRequestError: If the name yields an empty slug or the user already
                has a pending invitation for it
            ConflictError: If the organization name or slug is already used
        """
        if self.resolver.find_public_admin_membership(actor) is None:
            raise ForbiddenError("Cannot invite new owners")

        slug = kebab_case(organization_name)
        if not slug:
            raise BadRequestError("Organization name must contain letters or digits")

        name_field = self.field_cipher.protect(organization_name)
        if await self.organizations.slug_or_name_exists(
            name_field.hash, self.field_cipher.hash_only(slug)
        ):
            raise ConflictError("Organization already exists")

        email = canonical_email(email)
        role = Role.ADMIN.value
        actor_name = self.field_cipher.reveal(actor.full_name)
        actor_org_name = self.field_cipher.reveal(auth.membership.organization.name)
        existing = await self.users.get_active_user_by_email(
            self.field_cipher.hash_only(email)
        )

        if existing is None:
            token = self.token_codec.create_invitation_token(
                email=email,
                role=role,
                organization_id=auth.membership.organization.id,
                invitation_type=OWNER_INVITATION_TYPE,
            )
            query = urlencode(
                {
                    "invitation_token": token,
                    "type": OWNER_INVITATION_TYPE,
                    "email": email,
                    "role": role,
                    "organization": organization_name,
                }
            )
            url = f"{self.frontend_url}/sign-up?{query}"
            log_type = InvitationLogType.INVITE_OWNER
            outcome = "new-user"
        else:
            pending = next(
                (
                    p
                    for p in existing.pending_memberships
                    if p.name.hash == name_field.hash
                ),
                None,
            )
            if pending is not None and pending.status == InvitationStatus.PENDING:
                raise BadRequestError("User has a pending invite to this organization")

            first = existing.memberships[0] if existing.memberships else None
            if first is None or not first.roles:
                raise ConflictError("User has no organization role")

            async with self.users.transaction() as session:
                if pending is not None:
                    await self.users.reopen_pending_membership(
                        pending.id, session=session
                    )
                else:
                    await self.users.add_pending_membership(
                        existing.id, name_field, session=session
                    )
            first_slug = self.field_cipher.reveal(first.organization.slug)
            url = f"{self.frontend_url}/{first_slug}/{first.roles[0].lower()}/account"
            log_type = InvitationLogType.INVITE_EXISTING_AS_OWNER
            outcome = "existing-user"

        await self.email_dispatcher.send_invitation(email, organization_name, role, url)
        await self.audit_logs.create_log(
            organization_id=auth.membership.organization.id,
            payload_snapshot=self.field_cipher.encrypt_payload_snapshot(
                {"user": str(actor.id), "email": email}
            ),
            log_type=log_type,
            activity=self.field_cipher.protect(
                f"{actor_name} ({actor_org_name} {auth.role}) invited {email}"
            ),
        )
        logger.info(f"{actor_name} invited an owner for '{slug}' ({outcome})")
        return outcome

    async def update_invitation(
        self,
        principal: Principal,
        action: InvitationAction,
        org_slug: str,
        membership_id: UUID,
    ) -> None:
        """
        Accept or decline a membership invitation.

        Acceptance creates the member's subscription, flips the membership to
        Accepted and writes the audit entry in one unit of work.
        """
        membership = next(
            (m for m in principal.memberships if m.id == membership_id), None
        )
        if membership is None:
            raise NotFoundError("Invitation not found")
        if membership.organization.slug.hash != self.field_cipher.hash_only(org_slug):
            raise UnauthorizedError("Invalid invitation")
        if membership.status != InvitationStatus.PENDING:
            raise ConflictError("Invitation already acted upon")

        user_name = self.field_cipher.reveal(principal.full_name)
        org_name = self.field_cipher.reveal(membership.organization.name)
        first_role = membership.roles[0] if membership.roles else Role.LEARNER.value
        is_public = self.resolver.is_public_organization(membership)

        async with self.users.transaction() as session:
            if action == "accept":
                subscription_id = await self.subscriptions.create_user_subscription(
                    first_role, is_public, session=session
                )
                await self.users.set_user_subscription(
                    principal.id, subscription_id, session=session
                )
                new_status = InvitationStatus.ACCEPTED
                log_type = InvitationLogType.ACCEPT_INVITATION
                verb = "accepted"
            else:
                new_status = InvitationStatus.DECLINED
                log_type = InvitationLogType.DECLINE_INVITATION
                verb = "declined"

            updated = await self.users.update_membership_status(
                membership.id, new_status, session=session
            )
            if not updated:
                raise ConflictError("Invitation already acted upon")

            await self.audit_logs.create_log(
                organization_id=membership.organization.id,
                payload_snapshot=self.field_cipher.encrypt_payload_snapshot(
                    {"userName": user_name, "orgName": org_name}
                ),
                log_type=log_type,
                activity=self.field_cipher.protect(
                    f"{user_name} ({first_role}) {verb} invite to {org_name}"
                ),
                session=session,
            )

    async def update_owner_invitation(
        self,
        principal: Principal,
        action: InvitationAction,
        pending_id: UUID,
        organization_name: Optional[str] = None,
    ) -> Optional[Organization]:
        """
        Accept or decline an invitation to own a new organization.

        Acceptance creates the subscription, the organization and the owner
        membership in one unit of work and returns the new organization.
        """
        pending = next(
            (p for p in principal.pending_memberships if p.id == pending_id), None
        )
        if pending is None:
            raise NotFoundError("Pending organization not found")
        if pending.status != InvitationStatus.PENDING:
            raise BadRequestError("Invitation already acted upon")

        public_org = await self.organizations.get_organization_by_name_hash(
            self.field_cipher.hash_only(self.public_organization_name)
        )
        if public_org is None:
            raise NotFoundError("Public organization not found")

        user_name = self.field_cipher.reveal(principal.full_name)
        initial_name = self.field_cipher.reveal(pending.name)
        final_name = organization_name or initial_name

        async with self.users.transaction() as session:
            if action == "decline":
                await self.users.update_pending_membership_status(
                    pending.id, InvitationStatus.DECLINED, session=session
                )
                await self.audit_logs.create_log(
                    organization_id=public_org.id,
                    payload_snapshot=self.field_cipher.encrypt_payload_snapshot(
                        {"userName": user_name, "initialOrgName": initial_name}
                    ),
                    log_type=InvitationLogType.DECLINE_OWNER_INVITATION,
                    activity=self.field_cipher.protect(
                        f"{user_name} declined invite as owner of {initial_name}"
                    ),
                    session=session,
                )
                return None

            subscription_id = await self.subscriptions.create_subscription(
                BASIC_ORGANIZATION_PLAN, session=session
            )
            organization = await self.create_organization(
                final_name, subscription_id=subscription_id, session=session
            )
            await self.users.add_membership(
                principal.id,
                organization.id,
                [Role.ADMIN.value],
                is_owner=True,
                status=InvitationStatus.ACCEPTED,
                approved_at=_utc_now(),
                session=session,
            )
            await self.users.update_pending_membership_status(
                pending.id, InvitationStatus.ACCEPTED, session=session
            )
            await self.audit_logs.create_log(
                organization_id=public_org.id,
                payload_snapshot=self.field_cipher.encrypt_payload_snapshot(
                    {
                        "userName": user_name,
                        "initialOrgName": initial_name,
                        "finalOrgName": final_name,
                    }
                ),
                log_type=InvitationLogType.ACCEPT_OWNER_INVITATION,
                activity=self.field_cipher.protect(
                    f'{user_name} accepted invite as owner of {final_name} '
                    f'(initially "{initial_name}")'
                ),
                session=session,
            )
            return organization

    # ========================================================================
    # MEMBER MANAGEMENT
    # ========================================================================

    async def update_member(
        self,
        actor: Principal,
        auth: RequestAuth,
        org_slug: str,
        user_id: UUID,
        action: MemberAction,
    ) -> None:
        """
        Approve, block or unblock ``user_id`` in the organization ``org_slug``.

        Public admins may act on any organization; everyone else only on the
        organization that authorized them.
        """
        if user_id == actor.id:
            raise BadRequestError("Cannot change your own membership")

        target = await self.users.get_user_by_id(user_id)
        if target is None or target.is_archived:
            raise NotFoundError("User not found")

        membership = self.resolver.find_membership(target, org_slug)
        if membership is None:
            raise NotFoundError("User is not a member of this organization")
        if membership.is_owner:
            raise BadRequestError("Organization owners cannot be modified")

        organization_id = membership.organization.id
        if action == "approve":
            if membership.approved_at is not None:
                raise ConflictError("User is already approved")
            handler = self.users.approve_membership
            log_type, verb = UserLogType.APPROVE, "approved"
        elif action == "block":
            if membership.blocked_at is not None:
                raise ConflictError("User is already blocked")
            handler = self.users.block_membership
            log_type, verb = UserLogType.BLOCK, "blocked"
        else:
            if membership.blocked_at is None:
                raise ConflictError("User is not blocked")
            handler = self.users.unblock_membership
            log_type, verb = UserLogType.UNBLOCK, "unblocked"

        actor_name = self.field_cipher.reveal(actor.full_name)
        actor_org_name = self.field_cipher.reveal(auth.membership.organization.name)
        target_name = self.field_cipher.reveal(target.full_name)

        async with self.users.transaction() as session:
            await handler(user_id, organization_id, session=session)
            await self.audit_logs.create_log(
                organization_id=organization_id,
                payload_snapshot=self.field_cipher.encrypt_payload_snapshot(
                    {"user": str(user_id), "action": action}
                ),
                log_type=log_type,
                activity=self.field_cipher.protect(
                    f"{actor_name} ({actor_org_name} {auth.role}) {verb} {target_name}"
                ),
                session=session,
            )
