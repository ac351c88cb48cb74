"""
Authentication Service
----------------------
Credential flows built on top of the security primitives:

- login and refresh
- invited-only registration
- forgotten / reset / changed passwords
- logout everywhere
- client-facing representation of a principal

bcrypt work is pushed to a worker thread so the event loop stays responsive.
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote, urlencode

from loguru import logger
from pydantic import BaseModel

from app.auth.field_cipher import FieldCipher, canonical_email
from app.auth.jwt_utils import TokenCodec
from app.auth.membership import MembershipResolver
from app.auth.models import MembershipView, RegisterRequest, SanitizedUser
from app.auth.notifications import EmailDispatcher
from app.auth.refresh_sessions import IssuedTokens, RefreshSessionStore
from app.auth.tenancy_service import TenancyService
from app.core.exceptions import (
    BadRequestError,
    ForbiddenError,
    NotFoundError,
    UnprocessableEntityError,
)
from app.models.identity_models import InvitationStatus, Membership, Principal, Role
from app.psql_db_services.audit_log_service import AuditLogService, UserLogType
from app.psql_db_services.organizations_service import OrganizationsService
from app.psql_db_services.subscriptions_service import (
    BASIC_ORGANIZATION_PLAN,
    SubscriptionsService,
)
from app.psql_db_services.users_service import UsersService
from app.utils.password_hashing import PasswordHasher, PasswordTooLongError

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password."
EMAIL_NOT_FOUND_MESSAGE = "Email not found."
EMAIL_TAKEN_MESSAGE = "This email has already been taken."
NO_ACCESS_MESSAGE = "Your account has no access to this platform."


class LoginResult(BaseModel):
    user: SanitizedUser
    tokens: IssuedTokens
    role: str
    organization_slug: str


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    def __init__(
        self,
        field_cipher: FieldCipher,
        password_hasher: PasswordHasher,
        token_codec: TokenCodec,
        resolver: MembershipResolver,
        session_store: RefreshSessionStore,
        users: UsersService,
        organizations: OrganizationsService,
        subscriptions: SubscriptionsService,
        audit_logs: AuditLogService,
        tenancy: TenancyService,
        email_dispatcher: EmailDispatcher,
        public_organization_name: str,
        frontend_url: str,
    ):
        self.field_cipher = field_cipher
        self.password_hasher = password_hasher
        self.token_codec = token_codec
        self.resolver = resolver
        self.session_store = session_store
        self.users = users
        self.organizations = organizations
        self.subscriptions = subscriptions
        self.audit_logs = audit_logs
        self.tenancy = tenancy
        self.email_dispatcher = email_dispatcher
        self.public_organization_name = public_organization_name
        self.frontend_url = frontend_url.rstrip("/")

    # ========================================================================
    # HELPERS
    # ========================================================================

    async def get_active_user_by_email(self, email: str) -> Optional[Principal]:
        email_hash = self.field_cipher.hash_only(canonical_email(email))
        return await self.users.get_active_user_by_email(email_hash)

    async def _hash_password(self, password: str) -> str:
        try:
            return await asyncio.to_thread(self.password_hasher.hash_password, password)
        except PasswordTooLongError as e:
            raise BadRequestError(str(e))

    async def _verify_password(self, password: str, hashed_password: str) -> bool:
        return await asyncio.to_thread(
            self.password_hasher.verify_password, password, hashed_password
        )

    def sanitize_user(self, principal: Principal) -> SanitizedUser:
        """Decrypt the principal for clients. The password hash never leaves."""
        return SanitizedUser(
            id=principal.id,
            email=self.field_cipher.reveal(principal.email),
            full_name=self.field_cipher.reveal(principal.full_name),
            email_verified_at=principal.email_verified_at,
            last_logged_in_at=principal.last_logged_in_at,
            memberships=[self._membership_view(m) for m in principal.memberships],
        )

    def _membership_view(self, membership: Membership) -> MembershipView:
        return MembershipView(
            id=membership.id,
            organization_id=membership.organization.id,
            organization_name=self.field_cipher.reveal(membership.organization.name),
            organization_slug=self.field_cipher.reveal(membership.organization.slug),
            roles=membership.roles,
            is_owner=membership.is_owner,
            status=membership.status.value,
            approved_at=membership.approved_at,
            blocked_at=membership.blocked_at,
        )

    # ========================================================================
    # LOGIN / REFRESH
    # ========================================================================

    async def login_user(self, email: str, password: str) -> LoginResult:
        """
        Authenticate by email and password and start a refresh session.

        Raises:
            BadRequestError: Unknown or archived email
            ForbiddenError: No usable membership, unverified email, or wrong password
        """
        email = canonical_email(email)
        principal = await self.get_active_user_by_email(email)
        if principal is None:
            raise BadRequestError(INVALID_CREDENTIALS_MESSAGE)

        membership = self.resolver.default_membership(principal)
        if membership is None:
            raise ForbiddenError(NO_ACCESS_MESSAGE)

        if principal.email_verified_at is None:
            raise ForbiddenError("Your account is not yet verified.")

        if not await self._verify_password(password, principal.password):
            logger.info(f"Failed login attempt for user {principal.id}")
            raise ForbiddenError(INVALID_CREDENTIALS_MESSAGE)

        await self.users.update_last_login(principal.id)
        tokens = await self.session_store.issue(principal.id)

        role = membership.roles[0] if membership.roles else Role.LEARNER.value
        user_name = self.field_cipher.reveal(principal.full_name)
        org_name = self.field_cipher.reveal(membership.organization.name)
        await self.audit_logs.create_log(
            organization_id=membership.organization.id,
            payload_snapshot=self.field_cipher.encrypt_payload_snapshot({"email": email}),
            log_type=UserLogType.LOGIN,
            activity=self.field_cipher.protect(
                f"{user_name} ({org_name} {role}) logged in"
            ),
        )

        logger.info(f"User {principal.id} logged in")
        return LoginResult(
            user=self.sanitize_user(principal),
            tokens=tokens,
            role=role,
            organization_slug=self.field_cipher.reveal(membership.organization.slug),
        )

    async def refresh(self, raw_refresh_token: str) -> IssuedTokens:
        return await self.session_store.rotate(raw_refresh_token)

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    async def register_user(self, data: RegisterRequest) -> LoginResult:
        """
        Register an invited user and log them in.

        The invitation token must name the same email and role as the form.
        Member invitations must also name the inviting organization; owner
        invitations may rename the organization they are about to create.
        """
        if not data.invitation_token:
            raise ForbiddenError("Invalid invitation link")

        payload = self.token_codec.decode_invitation_token(data.invitation_token)
        email = canonical_email(data.email)

        if await self.users.check_email_exists(self.field_cipher.hash_only(email)):
            raise UnprocessableEntityError(EMAIL_TAKEN_MESSAGE)

        inviting_org = await self.organizations.get_organization_by_id(
            payload.organization_id
        )
        if inviting_org is None:
            raise NotFoundError("Inviting organization does not exist")

        is_owner_invite = payload.type == "basic-organization-owner"
        organization_name = data.organization_name or self.public_organization_name
        if (
            not is_owner_invite
            and self.field_cipher.reveal(inviting_org.name) != organization_name
        ):
            raise BadRequestError("The invitation link is invalid.")

        if canonical_email(payload.email) != email or payload.role != data.role:
            raise BadRequestError("The invitation link is invalid.")

        password_hash = await self._hash_password(data.password)
        is_public = organization_name == self.public_organization_name
        now = _utc_now()

        async with self.users.transaction() as session:
            subscription_id = await self.subscriptions.create_user_subscription(
                data.role, is_public, session=session
            )

            if is_owner_invite:
                org_subscription_id = await self.subscriptions.create_subscription(
                    BASIC_ORGANIZATION_PLAN, session=session
                )
                organization = await self.tenancy.create_organization(
                    organization_name,
                    subscription_id=org_subscription_id,
                    session=session,
                )
                organization_id = organization.id
                roles, is_owner = [Role.ADMIN.value], True
            else:
                organization_id = inviting_org.id
                roles, is_owner = [data.role], False

            user_id = await self.users.create_user(
                email=self.field_cipher.protect(email),
                full_name=self.field_cipher.protect(data.full_name),
                password_hash=password_hash,
                subscription_id=subscription_id,
                email_verified_at=now,
                session=session,
            )
            await self.users.add_membership(
                user_id,
                organization_id,
                roles,
                is_owner=is_owner,
                status=InvitationStatus.ACCEPTED,
                approved_at=now,
                session=session,
            )

        logger.info(f"Invited user {user_id} registered")
        return await self.login_user(email, data.password)

    # ========================================================================
    # PASSWORDS
    # ========================================================================

    async def forgot_password(self, email: str) -> None:
        """Send a password reset link. The link is handed only to the dispatcher."""
        email = canonical_email(email)
        principal = await self.get_active_user_by_email(email)
        if principal is None:
            raise NotFoundError(EMAIL_NOT_FOUND_MESSAGE)

        token = self.token_codec.create_password_reset_token(email)
        url = (
            f"{self.frontend_url}/password-reset/{quote(token, safe='')}"
            f"?{urlencode({'email': email})}"
        )
        recipient = self.field_cipher.reveal(principal.full_name)
        await self.email_dispatcher.send_password_reset(email, recipient, url)
        logger.info(f"Password reset requested for user {principal.id}")

    async def reset_password(self, token: str, password: str) -> None:
        """Set a new password from a reset token and revoke every session."""
        payload = self.token_codec.decode_password_reset_token(token)
        principal = await self.get_active_user_by_email(payload.email)
        if principal is None:
            raise NotFoundError(EMAIL_NOT_FOUND_MESSAGE)

        password_hash = await self._hash_password(password)
        await self.users.update_password(principal.id, password_hash)
        await self.session_store.revoke_all(principal.id)
        logger.info(f"Password reset for user {principal.id}")

    async def update_password(
        self, principal: Principal, current_password: str, new_password: str
    ) -> IssuedTokens:
        """
        Change the password of a signed-in principal.

        Every other session is revoked; the caller receives a fresh session.
        """
        if not await self._verify_password(current_password, principal.password):
            raise BadRequestError("Incorrect password")

        password_hash = await self._hash_password(new_password)
        await self.users.update_password(principal.id, password_hash)
        await self.session_store.revoke_all(principal.id)

        membership = self.resolver.default_membership(principal)
        if membership is not None:
            user_name = self.field_cipher.reveal(principal.full_name)
            await self.audit_logs.create_log(
                organization_id=membership.organization.id,
                payload_snapshot=self.field_cipher.encrypt_payload_snapshot(
                    {"user": str(principal.id)}
                ),
                log_type=UserLogType.PASSWORD_CHANGE,
                activity=self.field_cipher.protect(f"{user_name} changed password"),
            )

        return await self.session_store.issue(principal.id)

    async def logout_everywhere(self, principal: Principal) -> int:
        return await self.session_store.revoke_all(principal.id)
