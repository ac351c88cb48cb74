"""
Pytest configuration for Nudgyt Identity Core tests.
Shared fixtures: security components built from a test configuration,
factories for principals and organizations, and in-memory repositories.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import UUID, uuid4

import pytest

from app.auth.field_cipher import FieldCipher
from app.auth.jwt_utils import TokenCodec
from app.auth.membership import MembershipResolver
from app.auth.permission_matrix import default_permission_rows
from app.auth.permissions import PermissionEngine
from app.core.config_manager import SecurityConfig, settings
from app.models.identity_models import (
    InvitationStatus,
    Membership,
    Organization,
    PendingMembership,
    Principal,
    RefreshTokenEntry,
)
from app.utils.password_hashing import PasswordHasher

PUBLIC_ORGANIZATION_NAME = settings.public_organization_name


# ============================================================================
# SECURITY COMPONENTS
# ============================================================================


@pytest.fixture
def security_config() -> SecurityConfig:
    """Configuration matching the test environment, with a cheap bcrypt cost."""
    return settings.security_config().model_copy(update={"bcrypt_salt_rounds": 4})


@pytest.fixture
def field_cipher(security_config):
    return FieldCipher(security_config)


@pytest.fixture
def token_codec(security_config):
    return TokenCodec(security_config)


@pytest.fixture
def password_hasher(security_config):
    return PasswordHasher(salt_rounds=security_config.bcrypt_salt_rounds)


@pytest.fixture
def membership_resolver(field_cipher):
    return MembershipResolver(field_cipher, PUBLIC_ORGANIZATION_NAME)


@pytest.fixture
def permission_engine(membership_resolver):
    return PermissionEngine(membership_resolver)


# ============================================================================
# IDENTITY FACTORIES
# ============================================================================


@pytest.fixture
def make_organization(field_cipher):
    """Build an organization with the seeded permission rows."""

    def _make(name: str = "Acme Training", slug: Optional[str] = None) -> Organization:
        is_public = name == PUBLIC_ORGANIZATION_NAME
        return Organization(
            id=uuid4(),
            name=field_cipher.protect(name),
            slug=field_cipher.protect(slug or name.lower().replace(" ", "-")),
            code="ABC123",
            permissions=default_permission_rows(is_public),
        )

    return _make


@pytest.fixture
def make_membership():
    """Build a membership; accepted, approved and unblocked unless told otherwise."""

    def _make(
        organization: Organization,
        roles: List[str],
        is_owner: bool = False,
        status: InvitationStatus = InvitationStatus.ACCEPTED,
        approved: bool = True,
        blocked: bool = False,
    ) -> Membership:
        now = datetime.now(timezone.utc)
        return Membership(
            id=uuid4(),
            organization=organization,
            roles=roles,
            is_owner=is_owner,
            status=status,
            approved_at=now if approved else None,
            blocked_at=now if blocked else None,
        )

    return _make


@pytest.fixture
def make_principal(field_cipher):
    """Build a verified principal holding the given memberships."""

    def _make(
        memberships: Optional[List[Membership]] = None,
        email: str = "jane@example.com",
        full_name: str = "Jane Doe",
        password_hash: str = "not-a-real-hash",
        archived: bool = False,
        verified: bool = True,
        pending_memberships: Optional[List[PendingMembership]] = None,
    ) -> Principal:
        now = datetime.now(timezone.utc)
        return Principal(
            id=uuid4(),
            email=field_cipher.protect(email),
            full_name=field_cipher.protect(full_name),
            password=password_hash,
            archived_at=now if archived else None,
            email_verified_at=now if verified else None,
            memberships=memberships or [],
            pending_memberships=pending_memberships or [],
        )

    return _make


# ============================================================================
# IN-MEMORY REPOSITORIES
# ============================================================================


class InMemoryLockedFamily:
    def __init__(self, store: "InMemoryTokenFamilies", family_id: UUID, user_id: UUID):
        self._store = store
        self.family_id = family_id
        self.user_id = user_id
        self.entries = list(store.entries[family_id])

    async def remove(self, entry_id: UUID) -> None:
        self.entries = [e for e in self.entries if e.id != entry_id]
        self._store.entries[self.family_id] = list(self.entries)

    async def append(self, hashed_token: str, expire_at: datetime) -> None:
        entry = RefreshTokenEntry(id=uuid4(), hashed_token=hashed_token, expire_at=expire_at)
        self.entries = [*self.entries, entry]
        self._store.entries[self.family_id] = list(self.entries)

    async def clear(self) -> int:
        removed = len(self.entries)
        self.entries = []
        self._store.entries[self.family_id] = []
        return removed


class InMemoryTokenFamilies:
    """Token family repository with per-family locks, mirroring row locking."""

    def __init__(self):
        self.families: Dict[UUID, UUID] = {}
        self.entries: Dict[UUID, List[RefreshTokenEntry]] = defaultdict(list)
        self._locks: Dict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get_or_create_family(self, user_id: UUID) -> UUID:
        for family_id, owner in self.families.items():
            if owner == user_id:
                return family_id
        family_id = uuid4()
        self.families[family_id] = user_id
        return family_id

    @asynccontextmanager
    async def lock_family(self, family_id: UUID):
        async with self._locks[family_id]:
            if family_id not in self.families:
                yield None
                return
            yield InMemoryLockedFamily(self, family_id, self.families[family_id])

    async def clear_user_families(self, user_id: UUID) -> int:
        removed = 0
        for family_id, owner in self.families.items():
            if owner == user_id:
                removed += len(self.entries[family_id])
                self.entries[family_id] = []
        return removed


class InMemoryUsers:
    """The subset of UsersService used by the gate and the credential flows."""

    def __init__(self):
        self.principals: Dict[UUID, Principal] = {}
        self.last_logins: List[UUID] = []

    def add(self, principal: Principal) -> Principal:
        self.principals[principal.id] = principal
        return principal

    async def get_user_by_id(self, user_id: UUID, session=None) -> Optional[Principal]:
        return self.principals.get(user_id)

    async def get_active_user_by_email(self, email_hash: str, session=None):
        for principal in self.principals.values():
            if principal.email.hash == email_hash and not principal.is_archived:
                return principal
        return None

    async def check_email_exists(self, email_hash: str) -> bool:
        return await self.get_active_user_by_email(email_hash) is not None

    async def update_last_login(self, user_id: UUID) -> None:
        self.last_logins.append(user_id)

    async def update_password(self, user_id: UUID, password_hash: str) -> bool:
        principal = self.principals[user_id]
        self.principals[user_id] = principal.model_copy(update={"password": password_hash})
        return True


@pytest.fixture
def token_families():
    return InMemoryTokenFamilies()


@pytest.fixture
def users_repository():
    return InMemoryUsers()
