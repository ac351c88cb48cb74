"""
Identity Models
---------------
Pydantic value objects for principals, tenants and memberships.

Memberships are always returned fully resolved: each one embeds the
Organization it refers to, so authorization never needs a second query.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """Membership roles. OWNER only appears as a permission matrix row key."""

    SUPER_ADMIN = "Super Admin"
    ADMIN = "Admin"
    TRAINER = "Trainer"
    LEARNER = "Learner"
    OWNER = "Owner"


class InvitationStatus(str, Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    DECLINED = "Declined"


class ProtectedField(BaseModel):
    """
    One encrypted scalar.

    ``hash`` is the hex SHA-256 digest of the plaintext and supports
    exact-match lookups. ``encrypted`` is ``hex(ciphertext):hex(nonce):hex(tag)``
    produced by AES-256-GCM with a fresh nonce, so it differs on every write.
    """

    model_config = ConfigDict(frozen=True)

    encrypted: str = Field(..., description="Packed AES-256-GCM output")
    hash: str = Field(..., description="Hex SHA-256 of the plaintext")


class RolePermission(BaseModel):
    """One row of an organization's materialized permission matrix."""

    model_config = ConfigDict(frozen=True)

    role: str
    permissions: List[str] = Field(default_factory=list)


class Organization(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    name: ProtectedField
    slug: ProtectedField
    code: str
    permissions: List[RolePermission] = Field(default_factory=list)
    subscription_id: Optional[UUID] = None


class Membership(BaseModel):
    """A principal's standing inside one organization."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    organization: Organization
    roles: List[str] = Field(default_factory=list)
    is_owner: bool = False
    status: InvitationStatus = InvitationStatus.PENDING
    approved_at: Optional[datetime] = None
    blocked_at: Optional[datetime] = None
    pending_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None


class PendingMembership(BaseModel):
    """An invitation to become owner of a not-yet-created organization."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    name: ProtectedField
    status: InvitationStatus = InvitationStatus.PENDING
    pending_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None


class Principal(BaseModel):
    """An authenticated user with resolved memberships."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    email: ProtectedField
    full_name: ProtectedField
    password: str = Field(..., repr=False)
    archived_at: Optional[datetime] = None
    email_verified_at: Optional[datetime] = None
    last_logged_in_at: Optional[datetime] = None
    subscription_id: Optional[UUID] = None
    memberships: List[Membership] = Field(default_factory=list)
    pending_memberships: List[PendingMembership] = Field(default_factory=list)

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


class RefreshTokenEntry(BaseModel):
    """One live sibling in a refresh token family."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    hashed_token: str = Field(..., repr=False)
    expire_at: datetime
