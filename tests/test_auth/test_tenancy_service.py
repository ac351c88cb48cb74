"""
Tenancy Service Tests
--------------------
Test organization creation, permission reseeding, invitations and member
management with mocked repositories.
"""

import pytest
from contextlib import asynccontextmanager
from unittest.mock import ANY, AsyncMock
from urllib.parse import parse_qs, urlparse
from uuid import uuid4

from app.auth.permissions import RequestAuth
from app.auth.tenancy_service import MAX_CODE_ATTEMPTS, TenancyService, kebab_case
from app.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
)
from app.models.identity_models import InvitationStatus, PendingMembership
from app.psql_db_services.audit_log_service import InvitationLogType, UserLogType
from app.psql_db_services.subscriptions_service import BASIC_ORGANIZATION_PLAN


@asynccontextmanager
async def fake_transaction(session=None):
    yield "uow"


@pytest.fixture
def users():
    mock = AsyncMock()
    mock.transaction = fake_transaction
    return mock


@pytest.fixture
def organizations():
    mock = AsyncMock()
    mock.transaction = fake_transaction
    mock.slug_or_name_exists.return_value = False
    mock.code_exists.return_value = False
    return mock


@pytest.fixture
def subscriptions():
    return AsyncMock()


@pytest.fixture
def audit_logs():
    return AsyncMock()


@pytest.fixture
def email_dispatcher():
    return AsyncMock()


@pytest.fixture
def tenancy(field_cipher, token_codec, membership_resolver, users, organizations, subscriptions, audit_logs, email_dispatcher):
    return TenancyService(
        field_cipher=field_cipher,
        token_codec=token_codec,
        resolver=membership_resolver,
        users=users,
        organizations=organizations,
        subscriptions=subscriptions,
        audit_logs=audit_logs,
        email_dispatcher=email_dispatcher,
        public_organization_name="Public",
        organization_code_length=6,
        frontend_url="https://app.example.com",
    )


@pytest.fixture
def acme(make_organization):
    return make_organization("Acme")


@pytest.fixture
def admin_auth(acme, make_membership, make_principal):
    """An Acme admin and the RequestAuth that authorized them."""
    membership = make_membership(acme, ["Admin"])
    principal = make_principal([membership])
    return principal, RequestAuth(membership=membership, role="Admin")


class TestKebabCase:
    """Test slug derivation."""

    @pytest.mark.parametrize(
        "name,slug",
        [
            ("Acme Training Co.", "acme-training-co"),
            ("camelCase", "camel-case"),
            ("  Multiple   Spaces ", "multiple-spaces"),
            ("Team 42", "team-42"),
            ("!!!", ""),
        ],
    )
    def test_kebab_case(self, name, slug):
        assert kebab_case(name) == slug


# ============================================================================
# ORGANIZATIONS
# ============================================================================


class TestCreateOrganization:
    """Test organization creation."""

    @pytest.mark.asyncio
    async def test_create(self, tenancy, organizations, field_cipher):
        """Test slug, code and seeded rows of a new organization."""
        subscription_id = uuid4()

        await tenancy.create_organization("Acme Training", subscription_id=subscription_id)

        kwargs = organizations.create_organization.await_args.kwargs
        assert field_cipher.reveal(kwargs["name"]) == "Acme Training"
        assert field_cipher.reveal(kwargs["slug"]) == "acme-training"
        assert len(kwargs["code"]) == 6 and kwargs["code"].isalnum()
        assert kwargs["code"] == kwargs["code"].upper()
        assert [row.role for row in kwargs["permissions"]] == ["Learner", "Trainer", "Admin", "Owner"]
        assert kwargs["subscription_id"] == subscription_id

    @pytest.mark.asyncio
    async def test_create_public(self, tenancy, organizations):
        await tenancy.create_organization("Public")

        rows = organizations.create_organization.await_args.kwargs["permissions"]
        assert [row.role for row in rows] == ["Learner", "Trainer", "Admin", "Super Admin"]

    @pytest.mark.asyncio
    async def test_name_taken(self, tenancy, organizations):
        organizations.slug_or_name_exists.return_value = True

        with pytest.raises(ConflictError, match="already taken"):
            await tenancy.create_organization("Acme")
        organizations.create_organization.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_slug(self, tenancy):
        with pytest.raises(BadRequestError):
            await tenancy.create_organization("???")

    @pytest.mark.asyncio
    async def test_code_exhaustion(self, tenancy, organizations):
        """Test that code allocation gives up after a bounded number of tries."""
        organizations.code_exists.return_value = True

        with pytest.raises(ConflictError):
            await tenancy.create_organization("Acme")
        assert organizations.code_exists.await_count == MAX_CODE_ATTEMPTS

    @pytest.mark.asyncio
    async def test_reseed_permissions(self, tenancy, organizations, field_cipher):
        """Test that every organization is rewritten with its kind's rows."""
        public_id, acme_id = uuid4(), uuid4()
        organizations.list_organization_name_hashes.return_value = [
            {"id": public_id, "name_hash": field_cipher.hash_only("Public")},
            {"id": acme_id, "name_hash": field_cipher.hash_only("Acme")},
        ]

        assert await tenancy.reseed_permissions() == 2

        calls = {c.args[0]: c.args[1] for c in organizations.update_permissions.await_args_list}
        assert calls[public_id][-1].role == "Super Admin"
        assert calls[acme_id][-1].role == "Owner"


# ============================================================================
# INVITATIONS
# ============================================================================


class TestInviteUser:
    """Test invite_user."""

    @pytest.mark.asyncio
    async def test_invite_new_user(self, tenancy, users, email_dispatcher, token_codec, acme, admin_auth):
        """Test that an unknown email receives a sign-up link."""
        actor, auth = admin_auth
        users.get_active_user_by_email.return_value = None

        outcome = await tenancy.invite_user(actor, auth, "New@Example.com", "Trainer")

        assert outcome == "new-user"
        email, org_name, role, url = email_dispatcher.send_invitation.await_args.args
        assert (email, org_name, role) == ("new@example.com", "Acme", "Trainer")
        parsed = urlparse(url)
        assert url.startswith("https://app.example.com/sign-up?")
        query = parse_qs(parsed.query)
        assert query["email"] == ["new@example.com"]
        payload = token_codec.decode_invitation_token(query["invitation_token"][0])
        assert payload.role == "Trainer"
        assert payload.organization_id == acme.id

    @pytest.mark.asyncio
    async def test_invite_existing_user(self, tenancy, users, email_dispatcher, acme, admin_auth, make_principal):
        """Test that a known user gets a pending, pre-approved membership."""
        actor, auth = admin_auth
        existing = make_principal(email="bob@example.com", full_name="Bob Smith")
        users.get_active_user_by_email.return_value = existing

        outcome = await tenancy.invite_user(actor, auth, "bob@example.com", "Learner")

        assert outcome == "existing-user"
        users.add_membership.assert_awaited_once_with(
            existing.id,
            acme.id,
            ["Learner"],
            status=InvitationStatus.PENDING,
            approved_at=ANY,
        )
        assert email_dispatcher.send_invitation.await_args.args[3] == (
            "https://app.example.com/acme/learner/account"
        )

    @pytest.mark.asyncio
    async def test_invite_existing_member(self, tenancy, users, acme, admin_auth, make_membership, make_principal):
        actor, auth = admin_auth
        users.get_active_user_by_email.return_value = make_principal(
            [make_membership(acme, ["Learner"])]
        )
        with pytest.raises(ConflictError, match="already member"):
            await tenancy.invite_user(actor, auth, "bob@example.com", "Learner")

    @pytest.mark.asyncio
    async def test_invite_already_invited(self, tenancy, users, acme, admin_auth, make_membership, make_principal):
        actor, auth = admin_auth
        users.get_active_user_by_email.return_value = make_principal(
            [make_membership(acme, ["Learner"], status=InvitationStatus.PENDING)]
        )
        with pytest.raises(ConflictError, match="already invited"):
            await tenancy.invite_user(actor, auth, "bob@example.com", "Learner")

    @pytest.mark.asyncio
    async def test_invite_reopens_declined(self, tenancy, users, acme, admin_auth, make_membership, make_principal):
        """Test that a declined invitation is reopened instead of duplicated."""
        actor, auth = admin_auth
        declined = make_membership(acme, ["Learner"], status=InvitationStatus.DECLINED)
        users.get_active_user_by_email.return_value = make_principal([declined])

        await tenancy.invite_user(actor, auth, "bob@example.com", "Learner")

        users.reopen_membership.assert_awaited_once_with(declined.id)
        users.add_membership.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_super_admin_only_in_public(self, tenancy, users, admin_auth, make_organization, make_membership):
        """Test that Super Admin can only be granted inside the public organization."""
        actor, auth = admin_auth
        users.get_active_user_by_email.return_value = None

        with pytest.raises(BadRequestError, match="Unsupported role"):
            await tenancy.invite_user(actor, auth, "bob@example.com", "Super Admin")

        public_auth = RequestAuth(
            membership=make_membership(make_organization("Public"), ["Super Admin"]),
            role="Super Admin",
        )
        assert await tenancy.invite_user(actor, public_auth, "bob@example.com", "Super Admin") == "new-user"


class TestInviteOwner:
    """Test invite_owner."""

    @pytest.fixture
    def public_admin_auth(self, make_organization, make_membership, make_principal):
        membership = make_membership(make_organization("Public"), ["Admin"])
        principal = make_principal([membership], full_name="Pat Admin")
        return principal, RequestAuth(membership=membership, role="Admin")

    @pytest.mark.asyncio
    async def test_invite_new_owner(self, tenancy, users, audit_logs, email_dispatcher, token_codec, field_cipher, public_admin_auth):
        """Test that an unknown email receives an owner sign-up link."""
        actor, auth = public_admin_auth
        users.get_active_user_by_email.return_value = None

        outcome = await tenancy.invite_owner(actor, auth, "Owner@Example.com", "Future Org")

        assert outcome == "new-user"
        email, org_name, role, url = email_dispatcher.send_invitation.await_args.args
        assert (email, org_name, role) == ("owner@example.com", "Future Org", "Admin")
        query = parse_qs(urlparse(url).query)
        assert query["type"] == ["basic-organization-owner"]
        assert query["organization"] == ["Future Org"]
        payload = token_codec.decode_invitation_token(query["invitation_token"][0])
        assert payload.type == "basic-organization-owner"
        assert payload.role == "Admin"
        assert payload.organization_id == auth.membership.organization.id

        audit = audit_logs.create_log.await_args.kwargs
        assert audit["organization_id"] == auth.membership.organization.id
        assert audit["log_type"] == InvitationLogType.INVITE_OWNER
        assert field_cipher.reveal(audit["activity"]) == (
            "Pat Admin (Public Admin) invited owner@example.com"
        )
        users.add_pending_membership.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invite_existing_user_as_owner(self, tenancy, users, audit_logs, email_dispatcher, field_cipher, acme, make_membership, make_principal, public_admin_auth):
        """Test that a known user gets a pending owner invitation."""
        actor, auth = public_admin_auth
        existing = make_principal([make_membership(acme, ["Trainer"])], email="bob@example.com")
        users.get_active_user_by_email.return_value = existing

        outcome = await tenancy.invite_owner(actor, auth, "bob@example.com", "Future Org")

        assert outcome == "existing-user"
        user_id, name = users.add_pending_membership.await_args.args
        assert user_id == existing.id
        assert field_cipher.reveal(name) == "Future Org"
        assert users.add_pending_membership.await_args.kwargs == {"session": "uow"}
        assert email_dispatcher.send_invitation.await_args.args[3] == (
            "https://app.example.com/acme/trainer/account"
        )
        assert audit_logs.create_log.await_args.kwargs["log_type"] == (
            InvitationLogType.INVITE_EXISTING_AS_OWNER
        )

    @pytest.mark.asyncio
    async def test_reopens_declined_owner_invitation(self, tenancy, users, field_cipher, acme, make_membership, make_principal, public_admin_auth):
        actor, auth = public_admin_auth
        declined = PendingMembership(
            id=uuid4(), name=field_cipher.protect("Future Org"), status=InvitationStatus.DECLINED
        )
        users.get_active_user_by_email.return_value = make_principal(
            [make_membership(acme, ["Learner"])], pending_memberships=[declined]
        )

        await tenancy.invite_owner(actor, auth, "bob@example.com", "Future Org")

        users.reopen_pending_membership.assert_awaited_once_with(declined.id, session="uow")
        users.add_pending_membership.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_pending_owner_invitation(self, tenancy, users, audit_logs, field_cipher, acme, make_membership, make_principal, public_admin_auth):
        actor, auth = public_admin_auth
        pending = PendingMembership(id=uuid4(), name=field_cipher.protect("Future Org"))
        users.get_active_user_by_email.return_value = make_principal(
            [make_membership(acme, ["Learner"])], pending_memberships=[pending]
        )

        with pytest.raises(BadRequestError, match="pending invite"):
            await tenancy.invite_owner(actor, auth, "bob@example.com", "Future Org")
        audit_logs.create_log.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_existing_organization(self, tenancy, organizations, users, public_admin_auth):
        actor, auth = public_admin_auth
        organizations.slug_or_name_exists.return_value = True

        with pytest.raises(ConflictError, match="already exists"):
            await tenancy.invite_owner(actor, auth, "bob@example.com", "Acme")
        users.get_active_user_by_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tenant_admin_cannot_invite_owners(self, tenancy, organizations, admin_auth):
        """Test that only administrators of the public organization invite owners."""
        actor, auth = admin_auth

        with pytest.raises(ForbiddenError):
            await tenancy.invite_owner(actor, auth, "bob@example.com", "Future Org")
        organizations.slug_or_name_exists.assert_not_awaited()


class TestUpdateInvitation:
    """Test accepting and declining member invitations."""

    @pytest.fixture
    def invitee(self, acme, make_membership, make_principal):
        pending = make_membership(acme, ["Learner"], status=InvitationStatus.PENDING)
        return make_principal([pending]), pending

    @pytest.mark.asyncio
    async def test_accept(self, tenancy, users, subscriptions, audit_logs, field_cipher, invitee):
        """Test subscription, status change and audit entry in one unit of work."""
        principal, pending = invitee
        subscription_id = uuid4()
        subscriptions.create_user_subscription.return_value = subscription_id
        users.update_membership_status.return_value = True

        await tenancy.update_invitation(principal, "accept", "acme", pending.id)

        subscriptions.create_user_subscription.assert_awaited_once_with("Learner", False, session="uow")
        users.set_user_subscription.assert_awaited_once_with(principal.id, subscription_id, session="uow")
        users.update_membership_status.assert_awaited_once_with(
            pending.id, InvitationStatus.ACCEPTED, session="uow"
        )
        audit = audit_logs.create_log.await_args.kwargs
        assert audit["log_type"] == InvitationLogType.ACCEPT_INVITATION
        assert field_cipher.reveal(audit["activity"]) == "Jane Doe (Learner) accepted invite to Acme"

    @pytest.mark.asyncio
    async def test_decline(self, tenancy, users, subscriptions, audit_logs, invitee):
        principal, pending = invitee
        users.update_membership_status.return_value = True

        await tenancy.update_invitation(principal, "decline", "acme", pending.id)

        subscriptions.create_user_subscription.assert_not_awaited()
        users.update_membership_status.assert_awaited_once_with(
            pending.id, InvitationStatus.DECLINED, session="uow"
        )
        assert audit_logs.create_log.await_args.kwargs["log_type"] == InvitationLogType.DECLINE_INVITATION

    @pytest.mark.asyncio
    async def test_unknown_invitation(self, tenancy, invitee):
        principal, _ = invitee
        with pytest.raises(NotFoundError):
            await tenancy.update_invitation(principal, "accept", "acme", uuid4())

    @pytest.mark.asyncio
    async def test_wrong_organization(self, tenancy, invitee):
        principal, pending = invitee
        with pytest.raises(UnauthorizedError, match="Invalid invitation"):
            await tenancy.update_invitation(principal, "accept", "globex", pending.id)

    @pytest.mark.asyncio
    async def test_already_accepted(self, tenancy, acme, make_membership, make_principal):
        accepted = make_membership(acme, ["Learner"])
        with pytest.raises(ConflictError):
            await tenancy.update_invitation(make_principal([accepted]), "decline", "acme", accepted.id)

    @pytest.mark.asyncio
    async def test_concurrent_answer_loses(self, tenancy, users, audit_logs, invitee):
        """Test that a status update matching no pending row is a conflict."""
        principal, pending = invitee
        users.update_membership_status.return_value = False

        with pytest.raises(ConflictError):
            await tenancy.update_invitation(principal, "decline", "acme", pending.id)
        audit_logs.create_log.assert_not_awaited()


class TestUpdateOwnerInvitation:
    """Test owner invitations."""

    @pytest.fixture
    def invitee(self, field_cipher, make_principal):
        pending = PendingMembership(id=uuid4(), name=field_cipher.protect("Future Org"))
        return make_principal(pending_memberships=[pending]), pending

    @pytest.fixture(autouse=True)
    def public_org(self, organizations, make_organization):
        public = make_organization("Public")
        organizations.get_organization_by_name_hash.return_value = public
        return public

    @pytest.mark.asyncio
    async def test_decline(self, tenancy, users, audit_logs, public_org, invitee):
        principal, pending = invitee

        assert await tenancy.update_owner_invitation(principal, "decline", pending.id) is None

        users.update_pending_membership_status.assert_awaited_once_with(
            pending.id, InvitationStatus.DECLINED, session="uow"
        )
        audit = audit_logs.create_log.await_args.kwargs
        assert audit["organization_id"] == public_org.id
        assert audit["log_type"] == InvitationLogType.DECLINE_OWNER_INVITATION

    @pytest.mark.asyncio
    async def test_accept_with_new_name(self, tenancy, users, organizations, subscriptions, audit_logs, field_cipher, make_organization, invitee):
        """Test that acceptance creates the organization under the chosen name."""
        principal, pending = invitee
        created = make_organization("Renamed Org")
        organizations.create_organization.return_value = created

        result = await tenancy.update_owner_invitation(principal, "accept", pending.id, "Renamed Org")

        assert result is created
        subscriptions.create_subscription.assert_awaited_once_with(BASIC_ORGANIZATION_PLAN, session="uow")
        assert field_cipher.reveal(organizations.create_organization.await_args.kwargs["name"]) == "Renamed Org"
        users.add_membership.assert_awaited_once_with(
            principal.id,
            created.id,
            ["Admin"],
            is_owner=True,
            status=InvitationStatus.ACCEPTED,
            approved_at=ANY,
            session="uow",
        )
        activity = field_cipher.reveal(audit_logs.create_log.await_args.kwargs["activity"])
        assert activity == 'Jane Doe accepted invite as owner of Renamed Org (initially "Future Org")'

    @pytest.mark.asyncio
    async def test_not_found(self, tenancy, invitee):
        principal, _ = invitee
        with pytest.raises(NotFoundError):
            await tenancy.update_owner_invitation(principal, "accept", uuid4())

    @pytest.mark.asyncio
    async def test_already_acted(self, tenancy, field_cipher, make_principal):
        declined = PendingMembership(
            id=uuid4(), name=field_cipher.protect("Future Org"), status=InvitationStatus.DECLINED
        )
        with pytest.raises(BadRequestError):
            await tenancy.update_owner_invitation(
                make_principal(pending_memberships=[declined]), "accept", declined.id
            )

    @pytest.mark.asyncio
    async def test_public_organization_missing(self, tenancy, organizations, invitee):
        principal, pending = invitee
        organizations.get_organization_by_name_hash.return_value = None
        with pytest.raises(NotFoundError, match="Public organization"):
            await tenancy.update_owner_invitation(principal, "accept", pending.id)


# ============================================================================
# MEMBER MANAGEMENT
# ============================================================================


class TestUpdateMember:
    """Test approve, block and unblock."""

    def target_with(self, users, make_principal, membership):
        target = make_principal([membership], email="bob@example.com", full_name="Bob Smith")
        users.get_user_by_id.return_value = target
        return target

    @pytest.mark.asyncio
    async def test_approve(self, tenancy, users, audit_logs, field_cipher, acme, admin_auth, make_membership, make_principal):
        """Test the state change and its audit entry."""
        actor, auth = admin_auth
        target = self.target_with(users, make_principal, make_membership(acme, ["Learner"], approved=False))

        await tenancy.update_member(actor, auth, "acme", target.id, "approve")

        users.approve_membership.assert_awaited_once_with(target.id, acme.id, session="uow")
        audit = audit_logs.create_log.await_args.kwargs
        assert audit["log_type"] == UserLogType.APPROVE
        assert field_cipher.reveal(audit["activity"]) == "Jane Doe (Acme Admin) approved Bob Smith"

    @pytest.mark.asyncio
    async def test_block_and_unblock(self, tenancy, users, acme, admin_auth, make_membership, make_principal):
        actor, auth = admin_auth
        target = self.target_with(users, make_principal, make_membership(acme, ["Learner"]))
        await tenancy.update_member(actor, auth, "acme", target.id, "block")
        users.block_membership.assert_awaited_once()

        target = self.target_with(users, make_principal, make_membership(acme, ["Learner"], blocked=True))
        await tenancy.update_member(actor, auth, "acme", target.id, "unblock")
        users.unblock_membership.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "action,state",
        [("approve", {}), ("block", {"blocked": True}), ("unblock", {})],
    )
    async def test_state_conflicts(self, tenancy, users, acme, admin_auth, make_membership, make_principal, action, state):
        """Test that no-op transitions are conflicts."""
        actor, auth = admin_auth
        target = self.target_with(users, make_principal, make_membership(acme, ["Learner"], **state))

        with pytest.raises(ConflictError):
            await tenancy.update_member(actor, auth, "acme", target.id, action)

    @pytest.mark.asyncio
    async def test_cannot_modify_self(self, tenancy, admin_auth):
        actor, auth = admin_auth
        with pytest.raises(BadRequestError):
            await tenancy.update_member(actor, auth, "acme", actor.id, "block")

    @pytest.mark.asyncio
    async def test_cannot_modify_owner(self, tenancy, users, acme, admin_auth, make_membership, make_principal):
        actor, auth = admin_auth
        target = self.target_with(users, make_principal, make_membership(acme, ["Admin"], is_owner=True))
        with pytest.raises(BadRequestError, match="owners"):
            await tenancy.update_member(actor, auth, "acme", target.id, "block")

    @pytest.mark.asyncio
    async def test_unknown_user(self, tenancy, users, admin_auth):
        actor, auth = admin_auth
        users.get_user_by_id.return_value = None
        with pytest.raises(NotFoundError, match="User not found"):
            await tenancy.update_member(actor, auth, "acme", uuid4(), "block")

    @pytest.mark.asyncio
    async def test_not_a_member(self, tenancy, users, admin_auth, make_organization, make_membership, make_principal):
        actor, auth = admin_auth
        target = self.target_with(users, make_principal, make_membership(make_organization("Globex"), ["Learner"]))
        with pytest.raises(NotFoundError, match="not a member"):
            await tenancy.update_member(actor, auth, "acme", target.id, "block")
