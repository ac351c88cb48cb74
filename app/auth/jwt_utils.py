"""
JWT Utilities
-------------
TokenCodec signs and verifies every bearer token the platform issues:
access, refresh, invitation and password-reset tokens.

Security notes:
- Signing uses python-jose with the injected SecurityConfig secret
- Every token carries a ``token_use`` claim so one kind can never be
  presented where another is expected
- Expiry is reported separately from every other failure, because an
  expired access token means "refresh and retry" rather than "log in again"
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError
from loguru import logger
from pydantic import ValidationError

from app.auth.models import (
    AccessTokenPayload,
    InvitationTokenPayload,
    PasswordResetTokenPayload,
    RefreshTokenPayload,
    TokenVerification,
)
from app.core.config_manager import SecurityConfig
from app.core.exceptions import (
    AccessTokenExpiredError,
    BadRequestError,
    UnauthorizedError,
    UnprocessableEntityError,
)

TOKEN_USE_CLAIM = "token_use"

ACCESS = "access"
REFRESH = "refresh"
INVITATION = "invitation"
PASSWORD_RESET = "password_reset"


class TokenCodec:
    """Signs and verifies compact, expiring bearer tokens."""

    def __init__(self, config: SecurityConfig):
        self.config = config

    # ========================================================================
    # GENERIC OPERATIONS
    # ========================================================================

    def generate_token(
        self, payload: Dict[str, Any], expires_in: Optional[int] = None
    ) -> str:
        """
        Sign a payload.

        Args:
            payload: JSON-serializable claims
            expires_in: Lifetime in seconds, defaults to the configured default

        Returns:
            Compact JWS string
        """
        if expires_in is None:
            expires_in = self.config.jwt_default_expiration_secs

        issued_at = datetime.now(timezone.utc)
        claims = {
            **payload,
            "iat": issued_at,
            "exp": issued_at + timedelta(seconds=expires_in),
        }
        return jwt.encode(
            claims, self.config.jwt_secret_key, algorithm=self.config.jwt_algorithm
        )

    def verify_token(self, token: str) -> Dict[str, Any]:
        """
        Verify signature and expiry.

        Raises:
            ExpiredSignatureError: If the token is expired
            JWTError: If the token is malformed or incorrectly signed
        """
        return jwt.decode(
            token, self.config.jwt_secret_key, algorithms=[self.config.jwt_algorithm]
        )

    def verify_token_safely(self, token: str) -> TokenVerification:
        """Verify without raising, classifying the failure."""
        try:
            return TokenVerification(data=self.verify_token(token))
        except ExpiredSignatureError:
            return TokenVerification(error="token expired")
        except JWTError as e:
            logger.debug(f"Token verification failed: {e}")
            return TokenVerification(error="token invalid")

    @staticmethod
    def get_token_expiry(token: str) -> Optional[datetime]:
        """Read the ``exp`` claim without verifying the signature."""
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError:
            return None

        exp = claims.get("exp")
        if exp is None:
            return None
        return datetime.fromtimestamp(exp, tz=timezone.utc)

    def _verified_claims(self, token: str, expected_use: str) -> TokenVerification:
        result = self.verify_token_safely(token)
        if result.data is not None and result.data.get(TOKEN_USE_CLAIM) != expected_use:
            logger.warning(
                f"Token use mismatch: expected '{expected_use}', "
                f"got '{result.data.get(TOKEN_USE_CLAIM)}'"
            )
            return TokenVerification(error="token invalid")
        return result

    # ========================================================================
    # ACCESS TOKENS
    # ========================================================================

    def create_access_token(self, user_id: UUID) -> str:
        return self.generate_token(
            {"userId": str(user_id), TOKEN_USE_CLAIM: ACCESS},
            expires_in=self.config.access_token_expiration_secs,
        )

    def decode_access_token(self, token: str) -> AccessTokenPayload:
        """
        Decode an access token presented on a request.

        Raises:
            AccessTokenExpiredError: Correct signature, expired lifetime (403)
            UnauthorizedError: Anything else (401)
        """
        result = self._verified_claims(token, ACCESS)
        if result.error == "token expired":
            raise AccessTokenExpiredError()
        if result.data is None:
            raise UnauthorizedError("Invalid access token")

        try:
            return AccessTokenPayload.model_validate(result.data)
        except ValidationError:
            raise UnauthorizedError("Invalid access token")

    # ========================================================================
    # REFRESH TOKENS
    # ========================================================================

    def create_refresh_token(self, family_id: UUID) -> str:
        return self.generate_token(
            {
                "familyId": str(family_id),
                "jti": secrets.token_hex(16),
                TOKEN_USE_CLAIM: REFRESH,
            },
            expires_in=self.config.refresh_token_expiration_secs,
        )

    def decode_refresh_token(self, token: str) -> RefreshTokenPayload:
        """
        Decode a refresh token. Expired and invalid tokens are both 401.

        Raises:
            UnauthorizedError: If the token cannot be used for rotation
        """
        result = self._verified_claims(token, REFRESH)
        if result.data is None:
            raise UnauthorizedError()

        try:
            return RefreshTokenPayload.model_validate(result.data)
        except ValidationError:
            raise UnauthorizedError()

    # ========================================================================
    # INVITATION AND PASSWORD RESET TOKENS
    # ========================================================================

    def create_invitation_token(
        self,
        email: str,
        role: str,
        organization_id: UUID,
        invitation_type: str = "member",
    ) -> str:
        return self.generate_token(
            {
                "email": email,
                "role": role,
                "organization_id": str(organization_id),
                "type": invitation_type,
                TOKEN_USE_CLAIM: INVITATION,
            },
            expires_in=self.config.invitation_token_expiration_secs,
        )

    def decode_invitation_token(self, token: str) -> InvitationTokenPayload:
        """
        Raises:
            UnprocessableEntityError: If the invitation expired
            BadRequestError: If the token is invalid
        """
        result = self._verified_claims(token, INVITATION)
        if result.error == "token expired":
            raise UnprocessableEntityError("The invitation link has expired.")
        if result.data is None:
            raise BadRequestError("The invitation link is invalid.")

        try:
            return InvitationTokenPayload.model_validate(result.data)
        except ValidationError:
            raise BadRequestError("The invitation link is invalid.")

    def create_password_reset_token(self, email: str) -> str:
        return self.generate_token({"email": email, TOKEN_USE_CLAIM: PASSWORD_RESET})

    def decode_password_reset_token(self, token: str) -> PasswordResetTokenPayload:
        result = self._verified_claims(token, PASSWORD_RESET)
        if result.data is None:
            raise BadRequestError("Invalid reset token.")

        try:
            return PasswordResetTokenPayload.model_validate(result.data)
        except ValidationError:
            raise BadRequestError("Unexpected reset token payload.")
