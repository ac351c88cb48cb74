"""
Authentication Models
---------------------
Pydantic models for token payloads and the auth endpoint bodies.

Token claims keep their wire names (``userId``, ``familyId``) through
aliases; Python code uses snake_case attributes.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


# ============================================================================
# TOKEN PAYLOADS
# ============================================================================


class AccessTokenPayload(BaseModel):
    """Claims of an access token."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: UUID = Field(..., alias="userId", description="Principal identifier")


class RefreshTokenPayload(BaseModel):
    """
    Claims of a refresh token.

    ``jti`` is random per token so two tokens minted for the same family in
    the same second are still distinct.
    """

    model_config = ConfigDict(populate_by_name=True)

    family_id: UUID = Field(..., alias="familyId", description="Refresh token family")
    jti: str = Field(..., min_length=1, description="Unique token identifier")


InvitationType = Literal["member", "basic-organization-owner"]


class InvitationTokenPayload(BaseModel):
    email: EmailStr
    role: str
    organization_id: UUID
    type: InvitationType = "member"


class PasswordResetTokenPayload(BaseModel):
    email: EmailStr


class TokenVerification(BaseModel):
    """Outcome of a non-raising token verification."""

    data: Optional[Dict[str, Any]] = None
    error: Optional[Literal["token expired", "token invalid"]] = None


# ============================================================================
# REQUEST BODIES
# ============================================================================


class LoginRequest(BaseModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {"email": "jane@example.com", "password": "Str0ng-pass"}
        }
    )

    email: EmailStr = Field(..., description="Account email")
    password: str = Field(..., min_length=1, description="Account password")


class RegisterRequest(BaseModel):
    """Registration is only open to invited users."""

    full_name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    password: str = Field(..., min_length=8)
    role: str
    organization_name: Optional[str] = Field(default=None, min_length=1)
    invitation_token: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8)


class UpdatePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8)


class InviteMemberRequest(BaseModel):
    email: EmailStr
    role: str = Field(..., min_length=1)


class InviteOwnerRequest(BaseModel):
    email: EmailStr
    organization_name: str = Field(..., min_length=1)


class InvitationDecisionRequest(BaseModel):
    action: Literal["accept", "decline"]


class OwnerInvitationDecisionRequest(BaseModel):
    action: Literal["accept", "decline"]
    organization_name: Optional[str] = Field(default=None, min_length=1)


# ============================================================================
# RESPONSES
# ============================================================================


class MembershipView(BaseModel):
    id: UUID
    organization_id: UUID
    organization_name: str
    organization_slug: str
    roles: List[str]
    is_owner: bool
    status: str
    approved_at: Optional[datetime] = None
    blocked_at: Optional[datetime] = None


class SanitizedUser(BaseModel):
    """Principal as returned to clients: decrypted, without secrets."""

    id: UUID
    email: str
    full_name: str
    email_verified_at: Optional[datetime] = None
    last_logged_in_at: Optional[datetime] = None
    memberships: List[MembershipView] = Field(default_factory=list)


class AuthTokenResponse(BaseModel):
    """Login and refresh response. The refresh token travels only in the cookie."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "access_token": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...",
                "token_type": "bearer",
                "expires_in": 900,
            }
        }
    )

    access_token: str = Field(..., description="Signed access token")
    token_type: str = Field(default="bearer", description="Token type")
    expires_in: int = Field(..., description="Access token lifetime in seconds")
    user: Optional[SanitizedUser] = None
    role: Optional[str] = Field(default=None, description="Role in the default organization")
    organization_slug: Optional[str] = Field(
        default=None, description="Slug of the default organization"
    )


class MessageResponse(BaseModel):
    message: str


class AccessResponse(BaseModel):
    """Role and permissions the caller holds in an organization."""

    organization_id: UUID
    organization_slug: str
    role: str
    is_owner: bool
    permissions: List[str]


class OrganizationResponse(BaseModel):
    id: UUID
    name: str
    slug: str
    code: str
