"""
Organization Endpoints
----------------------
Tenant-scoped routes under ``/api/{org}``. Every route is guarded by a
PermissionChecker evaluated against the ``{org}`` slug.
"""

from typing import Union
from uuid import UUID

from fastapi import APIRouter, Depends, status
from loguru import logger

from app.auth.dependencies import PermissionChecker, get_current_user
from app.auth.field_cipher import FieldCipher
from app.auth.models import (
    AccessResponse,
    InvitationDecisionRequest,
    InviteMemberRequest,
    InviteOwnerRequest,
    MessageResponse,
    OrganizationResponse,
    OwnerInvitationDecisionRequest,
)
from app.auth.permission_matrix import Permission
from app.auth.permissions import RequestAuth
from app.auth.providers import get_field_cipher, get_tenancy_service
from app.auth.tenancy_service import TenancyService
from app.models.identity_models import Principal

# ============================================================================
# ROUTER INITIALIZATION
# ============================================================================

router = APIRouter(prefix="/api/{org}", tags=["Organizations"])

require_dashboard_view = PermissionChecker([Permission.DASHBOARD_VIEW])
require_invitation_create = PermissionChecker([Permission.INVITATION_CREATE])
require_invitation_update = PermissionChecker([Permission.INVITATION_UPDATE])
require_owner_invitation_create = PermissionChecker(
    [Permission.ORGANIZATION_CREATE], allow_public_admins=True
)
require_invitation_answer = PermissionChecker(
    [Permission.INVITATION_UPDATE], allow_pending_invitation=True
)
require_user_update = PermissionChecker(
    [Permission.USER_UPDATE], allow_public_admins=True
)

MEMBER_ACTION_VERBS = {"approve": "approved", "block": "blocked", "unblock": "unblocked"}


# ============================================================================
# ACCESS
# ============================================================================


@router.get("/access", response_model=AccessResponse)
async def get_access(
    org: str,
    auth: RequestAuth = Depends(require_dashboard_view),
    field_cipher: FieldCipher = Depends(get_field_cipher),
):
    """Role and permission set the caller holds in ``org``."""
    return AccessResponse(
        organization_id=auth.membership.organization.id,
        organization_slug=field_cipher.reveal(auth.membership.organization.slug),
        role=auth.role,
        is_owner=auth.membership.is_owner,
        permissions=sorted(auth.permissions),
    )


# ============================================================================
# INVITATIONS
# ============================================================================


@router.post(
    "/invitations",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def invite_member(
    org: str,
    body: InviteMemberRequest,
    principal: Principal = Depends(get_current_user),
    auth: RequestAuth = Depends(require_invitation_create),
    tenancy: TenancyService = Depends(get_tenancy_service),
):
    """Invite an email address into ``org`` with the given role."""
    await tenancy.invite_user(principal, auth, body.email, body.role)
    return MessageResponse(message="Invitation sent.")


@router.post(
    "/invitations/owners",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def invite_owner(
    org: str,
    body: InviteOwnerRequest,
    principal: Principal = Depends(get_current_user),
    auth: RequestAuth = Depends(require_owner_invitation_create),
    tenancy: TenancyService = Depends(get_tenancy_service),
):
    """Invite an email address to own a new organization."""
    await tenancy.invite_owner(principal, auth, body.email, body.organization_name)
    return MessageResponse(message="Owner invitation sent.")


@router.patch(
    "/invitations/owners/{pending_id}",
    response_model=Union[OrganizationResponse, MessageResponse],
)
async def answer_owner_invitation(
    org: str,
    pending_id: UUID,
    body: OwnerInvitationDecisionRequest,
    principal: Principal = Depends(get_current_user),
    auth: RequestAuth = Depends(require_invitation_update),
    tenancy: TenancyService = Depends(get_tenancy_service),
    field_cipher: FieldCipher = Depends(get_field_cipher),
):
    """
    Accept or decline an invitation to own a new organization.

    On acceptance the organization is created and returned.
    """
    organization = await tenancy.update_owner_invitation(
        principal, body.action, pending_id, body.organization_name
    )
    if organization is None:
        return MessageResponse(message="Invitation declined.")

    logger.info(f"User {principal.id} now owns organization {organization.id}")
    return OrganizationResponse(
        id=organization.id,
        name=field_cipher.reveal(organization.name),
        slug=field_cipher.reveal(organization.slug),
        code=organization.code,
    )


@router.patch("/invitations/{membership_id}", response_model=MessageResponse)
async def answer_invitation(
    org: str,
    membership_id: UUID,
    body: InvitationDecisionRequest,
    principal: Principal = Depends(get_current_user),
    auth: RequestAuth = Depends(require_invitation_answer),
    tenancy: TenancyService = Depends(get_tenancy_service),
):
    """Accept or decline the pending membership ``membership_id`` of ``org``."""
    await tenancy.update_invitation(principal, body.action, org, membership_id)
    verb = "accepted" if body.action == "accept" else "declined"
    return MessageResponse(message=f"Invitation {verb}.")


# ============================================================================
# MEMBER MANAGEMENT
# ============================================================================


async def _update_member(
    action: str,
    org: str,
    user_id: UUID,
    principal: Principal,
    auth: RequestAuth,
    tenancy: TenancyService,
) -> MessageResponse:
    await tenancy.update_member(principal, auth, org, user_id, action)
    return MessageResponse(message=f"User {MEMBER_ACTION_VERBS[action]}.")


@router.patch("/users/{user_id}/approve", response_model=MessageResponse)
async def approve_member(
    org: str,
    user_id: UUID,
    principal: Principal = Depends(get_current_user),
    auth: RequestAuth = Depends(require_user_update),
    tenancy: TenancyService = Depends(get_tenancy_service),
):
    return await _update_member("approve", org, user_id, principal, auth, tenancy)


@router.patch("/users/{user_id}/block", response_model=MessageResponse)
async def block_member(
    org: str,
    user_id: UUID,
    principal: Principal = Depends(get_current_user),
    auth: RequestAuth = Depends(require_user_update),
    tenancy: TenancyService = Depends(get_tenancy_service),
):
    return await _update_member("block", org, user_id, principal, auth, tenancy)


@router.patch("/users/{user_id}/unblock", response_model=MessageResponse)
async def unblock_member(
    org: str,
    user_id: UUID,
    principal: Principal = Depends(get_current_user),
    auth: RequestAuth = Depends(require_user_update),
    tenancy: TenancyService = Depends(get_tenancy_service),
):
    return await _update_member("unblock", org, user_id, principal, auth, tenancy)
