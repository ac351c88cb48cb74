"""
Unit Tests for Organization Endpoints
=====================================
Tenant-scoped routes under /api/{org}: access summary, invitations and member
management. The authentication gate is replaced by a stub that loads a fixed
principal; authorization runs for real.
"""

import pytest
from unittest.mock import ANY, AsyncMock
from uuid import uuid4
from fastapi import Request
from fastapi.testclient import TestClient

from app.app import app
from app.auth.dependencies import authenticate_request
from app.auth.providers import get_field_cipher, get_permission_engine, get_tenancy_service
from app.core.exceptions import ConflictError
from app.models.identity_models import InvitationStatus


# ============================================================================
# TEST SETUP
# ============================================================================


@pytest.fixture
def tenancy():
    return AsyncMock()


@pytest.fixture
def login_as(field_cipher, permission_engine, tenancy):
    """Return a function that authenticates every request as ``principal``."""

    def _login_as(principal):
        async def fake_gate(request: Request):
            request.state.user = principal

        app.dependency_overrides[authenticate_request] = fake_gate
        app.dependency_overrides[get_field_cipher] = lambda: field_cipher
        app.dependency_overrides[get_permission_engine] = lambda: permission_engine
        app.dependency_overrides[get_tenancy_service] = lambda: tenancy
        return TestClient(app)

    yield _login_as
    app.dependency_overrides.clear()


@pytest.fixture
def acme(make_organization):
    return make_organization("Acme")


# ============================================================================
# ACCESS
# ============================================================================


class TestAccess:
    """Test GET /api/{org}/access."""

    def test_owner_access(self, login_as, acme, make_membership, make_principal):
        """Test that owners are reported as Admin with owner-only permissions."""
        client = login_as(make_principal([make_membership(acme, ["Admin"], is_owner=True)]))

        response = client.get("/api/acme/access")

        assert response.status_code == 200
        data = response.json()
        assert data["organization_id"] == str(acme.id)
        assert data["role"] == "Admin"
        assert data["is_owner"] is True
        assert "Organization.Settings.Update" in data["permissions"]

    def test_not_a_member(self, login_as, acme, make_membership, make_principal):
        client = login_as(make_principal([make_membership(acme, ["Admin"])]))

        response = client.get("/api/globex/access")

        assert response.status_code == 403
        assert response.json() == {"message": "Not a member of this organization"}


# ============================================================================
# INVITATIONS
# ============================================================================


class TestInvitations:
    """Test invitation routes."""

    def test_admin_invites(self, login_as, tenancy, acme, make_membership, make_principal):
        """Test that an admin can invite and the service receives the request."""
        principal = make_principal([make_membership(acme, ["Admin"])])
        client = login_as(principal)

        response = client.post(
            "/api/acme/invitations", json={"email": "bob@example.com", "role": "Learner"}
        )

        assert response.status_code == 201
        assert response.json() == {"message": "Invitation sent."}
        tenancy.invite_user.assert_awaited_once_with(principal, ANY, "bob@example.com", "Learner")
        assert tenancy.invite_user.await_args.args[1].role == "Admin"

    def test_learner_cannot_invite(self, login_as, tenancy, acme, make_membership, make_principal):
        client = login_as(make_principal([make_membership(acme, ["Learner"])]))

        response = client.post(
            "/api/acme/invitations", json={"email": "bob@example.com", "role": "Learner"}
        )

        assert response.status_code == 403
        tenancy.invite_user.assert_not_awaited()

    def test_service_conflict_is_rendered(self, login_as, tenancy, acme, make_membership, make_principal):
        tenancy.invite_user.side_effect = ConflictError("User is already invited to this organization")
        client = login_as(make_principal([make_membership(acme, ["Admin"])]))

        response = client.post(
            "/api/acme/invitations", json={"email": "bob@example.com", "role": "Learner"}
        )

        assert response.status_code == 409
        assert response.json()["message"] == "User is already invited to this organization"

    def test_pending_invitee_accepts(self, login_as, tenancy, acme, make_membership, make_principal):
        """Test that a still-pending membership may answer its invitation."""
        pending = make_membership(acme, ["Learner"], status=InvitationStatus.PENDING)
        principal = make_principal([pending])
        client = login_as(principal)

        response = client.patch(f"/api/acme/invitations/{pending.id}", json={"action": "accept"})

        assert response.status_code == 200
        assert response.json() == {"message": "Invitation accepted."}
        tenancy.update_invitation.assert_awaited_once_with(principal, "accept", "acme", pending.id)

    def test_invalid_action(self, login_as, acme, make_membership, make_principal):
        pending = make_membership(acme, ["Learner"], status=InvitationStatus.PENDING)
        client = login_as(make_principal([pending]))

        response = client.patch(f"/api/acme/invitations/{pending.id}", json={"action": "maybe"})

        assert response.status_code == 422

    def test_owner_invitation_accepted(self, login_as, tenancy, make_organization, make_membership, make_principal):
        """Test that acceptance returns the new organization in plaintext."""
        principal = make_principal([make_membership(make_organization("Public"), ["Learner"])])
        created = make_organization("New Org")
        tenancy.update_owner_invitation.return_value = created
        client = login_as(principal)
        pending_id = uuid4()

        response = client.patch(
            f"/api/public/invitations/owners/{pending_id}",
            json={"action": "accept", "organization_name": "New Org"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "id": str(created.id),
            "name": "New Org",
            "slug": "new-org",
            "code": "ABC123",
        }
        tenancy.update_owner_invitation.assert_awaited_once_with(
            principal, "accept", pending_id, "New Org"
        )

    def test_owner_invitation_declined(self, login_as, tenancy, make_organization, make_membership, make_principal):
        principal = make_principal([make_membership(make_organization("Public"), ["Learner"])])
        tenancy.update_owner_invitation.return_value = None
        client = login_as(principal)

        response = client.patch(
            f"/api/public/invitations/owners/{uuid4()}", json={"action": "decline"}
        )

        assert response.json() == {"message": "Invitation declined."}

    def test_public_admin_invites_owner(self, login_as, tenancy, make_organization, make_membership, make_principal):
        """Test that a platform admin can invite the owner of a new organization."""
        principal = make_principal([make_membership(make_organization("Public"), ["Admin"])])
        client = login_as(principal)

        response = client.post(
            "/api/public/invitations/owners",
            json={"email": "owner@example.com", "organization_name": "Future Org"},
        )

        assert response.status_code == 201
        assert response.json() == {"message": "Owner invitation sent."}
        tenancy.invite_owner.assert_awaited_once_with(
            principal, ANY, "owner@example.com", "Future Org"
        )
        assert tenancy.invite_owner.await_args.args[1].role == "Admin"

    def test_public_admin_invites_owner_from_any_tenant(self, login_as, tenancy, make_organization, make_membership, make_principal):
        client = login_as(
            make_principal([make_membership(make_organization("Public"), ["Super Admin"])])
        )

        response = client.post(
            "/api/acme/invitations/owners",
            json={"email": "owner@example.com", "organization_name": "Future Org"},
        )

        assert response.status_code == 201
        assert tenancy.invite_owner.await_args.args[1].role == "Super Admin"

    def test_tenant_admin_cannot_invite_owner(self, login_as, tenancy, acme, make_membership, make_principal):
        client = login_as(make_principal([make_membership(acme, ["Admin"], is_owner=True)]))

        response = client.post(
            "/api/acme/invitations/owners",
            json={"email": "owner@example.com", "organization_name": "Future Org"},
        )

        assert response.status_code == 403
        tenancy.invite_owner.assert_not_awaited()

    def test_existing_organization_is_rendered(self, login_as, tenancy, make_organization, make_membership, make_principal):
        tenancy.invite_owner.side_effect = ConflictError("Organization already exists")
        client = login_as(make_principal([make_membership(make_organization("Public"), ["Admin"])]))

        response = client.post(
            "/api/public/invitations/owners",
            json={"email": "owner@example.com", "organization_name": "Acme"},
        )

        assert response.status_code == 409
        assert response.json()["message"] == "Organization already exists"


# ============================================================================
# MEMBER MANAGEMENT
# ============================================================================


class TestMemberManagement:
    """Test approve / block / unblock routes."""

    @pytest.mark.parametrize(
        "action,message",
        [("approve", "User approved."), ("block", "User blocked."), ("unblock", "User unblocked.")],
    )
    def test_admin_updates_member(self, login_as, tenancy, acme, make_membership, make_principal, action, message):
        principal = make_principal([make_membership(acme, ["Admin"])])
        client = login_as(principal)
        user_id = uuid4()

        response = client.patch(f"/api/acme/users/{user_id}/{action}")

        assert response.status_code == 200
        assert response.json() == {"message": message}
        tenancy.update_member.assert_awaited_once_with(principal, ANY, "acme", user_id, action)

    def test_public_admin_acts_on_any_tenant(self, login_as, tenancy, make_organization, make_membership, make_principal):
        """Test that platform admins manage members of tenants they do not belong to."""
        client = login_as(
            make_principal([make_membership(make_organization("Public"), ["Super Admin"])])
        )

        response = client.patch(f"/api/acme/users/{uuid4()}/block")

        assert response.status_code == 200
        assert tenancy.update_member.await_args.args[1].role == "Super Admin"

    def test_trainer_cannot_update_members(self, login_as, tenancy, acme, make_membership, make_principal):
        client = login_as(make_principal([make_membership(acme, ["Trainer"])]))

        response = client.patch(f"/api/acme/users/{uuid4()}/block")

        assert response.status_code == 403
        tenancy.update_member.assert_not_awaited()
