"""
Refresh Session Store
---------------------
Rotation of refresh tokens with reuse detection.

Every principal owns one token family: the list of refresh tokens that are
currently valid (one per signed-in device). Tokens are stored as salted
scrypt hashes, so lookup is a scan that verifies the presented token against
each live entry.

Entry lifecycle: Active -> RotatedOut | Expired | Revoked

- issue:      append a new entry (login, registration)
- rotate:     a matching live entry is removed and replaced by a fresh one;
              a matching expired entry is removed and the request rejected;
              a validly signed token matching no entry means it was already
              rotated out or stolen, so the whole family is wiped
- revoke_all: wipe every entry of the principal (logout everywhere,
              password change)

The family row is locked for the duration of a rotation so concurrent
rotations of siblings are serialized and a wipe can never interleave with a
sibling that is mid-rotation.
"""

import asyncio
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone
from typing import List, Optional, Protocol, Sequence
from uuid import UUID

from loguru import logger
from pydantic import BaseModel

from app.auth.jwt_utils import TokenCodec
from app.core.exceptions import BadRequestError, UnauthorizedError
from app.models.identity_models import RefreshTokenEntry
from app.utils.password_hashing import PasswordHasher

DEFAULT_MAX_FAMILY_SIZE = 20


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_entry_expired(expire_at: datetime, now: datetime) -> bool:
    """
    Same boundary as the JWT ``exp`` check: a token stays valid for the whole
    second named by ``exp``, so an entry expires once that second has passed.
    """
    return int(now.timestamp()) > int(expire_at.timestamp())


class LockedTokenFamily(Protocol):
    """A family row held under an exclusive lock until the context exits."""

    family_id: UUID
    user_id: UUID
    entries: List[RefreshTokenEntry]

    async def remove(self, entry_id: UUID) -> None: ...

    async def append(self, hashed_token: str, expire_at: datetime) -> None: ...

    async def clear(self) -> int: ...


class TokenFamilyRepository(Protocol):
    async def get_or_create_family(self, user_id: UUID) -> UUID: ...

    def lock_family(
        self, family_id: UUID
    ) -> AbstractAsyncContextManager[Optional[LockedTokenFamily]]: ...

    async def clear_user_families(self, user_id: UUID) -> int: ...


class IssuedTokens(BaseModel):
    user_id: UUID
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime


class RefreshSessionStore:
    def __init__(
        self,
        token_codec: TokenCodec,
        password_hasher: PasswordHasher,
        repository: TokenFamilyRepository,
        max_family_size: int = DEFAULT_MAX_FAMILY_SIZE,
    ):
        self.token_codec = token_codec
        self.password_hasher = password_hasher
        self.repository = repository
        self.max_family_size = max_family_size

    async def issue(self, user_id: UUID) -> IssuedTokens:
        """Start a new session for ``user_id`` and return its token pair."""
        family_id = await self.repository.get_or_create_family(user_id)

        async with self.repository.lock_family(family_id) as family:
            if family is None:
                raise UnauthorizedError()
            tokens = await self._append_new_tokens(family)

        logger.info(f"Refresh session issued for user {user_id}")
        return tokens

    async def rotate(self, raw_refresh_token: str) -> IssuedTokens:
        """
        Exchange a refresh token for a new access and refresh token.

        Raises:
            UnauthorizedError: If the token is invalid, expired, unknown, or
                has already been used (in which case the family is wiped)
        """
        payload = self.token_codec.decode_refresh_token(raw_refresh_token)
        family_id = payload.family_id

        reuse_detected = False
        expired_entry = False
        wiped = 0
        async with self.repository.lock_family(family_id) as family:
            if family is None:
                logger.warning(f"Refresh token references unknown family {family_id}")
                raise UnauthorizedError()

            match = await self._find_entry(raw_refresh_token, family.entries)
            if match is None:
                reuse_detected = True
                wiped = await family.clear()
                user_id = family.user_id
            elif is_entry_expired(match.expire_at, _utc_now()):
                expired_entry = True
                await family.remove(match.id)
            else:
                await family.remove(match.id)
                tokens = await self._append_new_tokens(family)

        # The wipe has been committed by now; only then is the request rejected.
        if reuse_detected:
            logger.bind(security_event="refresh_token_reuse").warning(
                f"Refresh token reuse detected for user {user_id}, "
                f"family {family_id}: revoked {wiped} session(s)"
            )
            raise UnauthorizedError()
        if expired_entry:
            logger.info(f"Expired refresh token presented for family {family_id}")
            raise UnauthorizedError()

        logger.debug(f"Refresh token rotated for family {family_id}")
        return tokens

    async def revoke_all(self, user_id: UUID) -> int:
        """Invalidate every refresh token of ``user_id``."""
        revoked = await self.repository.clear_user_families(user_id)
        logger.info(f"Revoked {revoked} refresh session(s) for user {user_id}")
        return revoked

    async def _find_entry(
        self, raw_refresh_token: str, entries: Sequence[RefreshTokenEntry]
    ) -> Optional[RefreshTokenEntry]:
        for entry in entries:
            is_match = await asyncio.to_thread(
                self.password_hasher.verify_opaque_token,
                raw_refresh_token,
                entry.hashed_token,
            )
            if is_match:
                return entry
        return None

    async def _append_new_tokens(self, family: LockedTokenFamily) -> IssuedTokens:
        access_token = self.token_codec.create_access_token(family.user_id)
        refresh_token = self.token_codec.create_refresh_token(family.family_id)

        expire_at = self.token_codec.get_token_expiry(refresh_token)
        if expire_at is None:
            logger.error("Signed refresh token carries no expiry")
            raise BadRequestError()

        await self._prune(family)

        hashed = await asyncio.to_thread(
            self.password_hasher.hash_opaque_token, refresh_token
        )
        await family.append(hashed, expire_at)

        return IssuedTokens(
            user_id=family.user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            refresh_expires_at=expire_at,
        )

    async def _prune(self, family: LockedTokenFamily) -> None:
        """Drop expired entries and the oldest ones beyond the family bound."""
        now = _utc_now()
        live = []
        for entry in list(family.entries):
            if is_entry_expired(entry.expire_at, now):
                await family.remove(entry.id)
            else:
                live.append(entry)

        overflow = len(live) - (self.max_family_size - 1)
        if overflow > 0:
            for entry in sorted(live, key=lambda e: e.expire_at)[:overflow]:
                await family.remove(entry.id)
