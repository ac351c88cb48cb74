"""
Password hashing utilities

Two salted schemes with different cost profiles:

- bcrypt for login credentials (slow, adaptive cost factor)
- scrypt for refresh tokens at rest, which are compared many times per request
"""

import hmac
import secrets

import bcrypt
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from loguru import logger

# bcrypt only looks at the first 72 bytes of its input
BCRYPT_MAX_PASSWORD_BYTES = 72

SCRYPT_SALT_BYTES = 16
SCRYPT_KEY_BYTES = 64
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


class PasswordTooLongError(ValueError):
    """Password would be silently truncated by bcrypt."""


def _derive_scrypt_key(value: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=SCRYPT_KEY_BYTES, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(value.encode("utf-8"))


class PasswordHasher:
    """Salted hashing for passwords and opaque tokens"""

    def __init__(self, salt_rounds: int = 10):
        self.salt_rounds = salt_rounds

    def hash_password(self, password: str) -> str:
        """
        Hash a password using bcrypt.

        Args:
            password: Plain text password

        Returns:
            Hashed password as string

        Raises:
            PasswordTooLongError: If the password is 72 bytes or longer
        """
        encoded = password.encode("utf-8")
        if len(encoded) >= BCRYPT_MAX_PASSWORD_BYTES:
            raise PasswordTooLongError(
                f"Password must be shorter than {BCRYPT_MAX_PASSWORD_BYTES} bytes"
            )
        salt = bcrypt.gensalt(rounds=self.salt_rounds)
        hashed = bcrypt.hashpw(encoded, salt)
        return hashed.decode("utf-8")

    def verify_password(self, password: str, hashed_password: str) -> bool:
        """
        Verify a password against its hash.

        Inputs at or beyond the bcrypt ceiling never verify.

        Args:
            password: Plain text password
            hashed_password: Previously hashed password

        Returns:
            True if password matches, False otherwise
        """
        encoded = password.encode("utf-8")
        if len(encoded) >= BCRYPT_MAX_PASSWORD_BYTES:
            logger.warning("Rejected password verification: input exceeds bcrypt limit")
            return False
        try:
            return bcrypt.checkpw(encoded, hashed_password.encode("utf-8"))
        except ValueError:
            logger.warning("Stored password hash is malformed")
            return False

    @staticmethod
    def hash_opaque_token(value: str) -> str:
        """
        Hash a high-entropy token with scrypt and a fresh random salt.

        Returns:
            ``"<hex key>:<hex salt>"``
        """
        salt = secrets.token_bytes(SCRYPT_SALT_BYTES)
        key = _derive_scrypt_key(value, salt)
        return f"{key.hex()}:{salt.hex()}"

    @staticmethod
    def verify_opaque_token(value: str, hash_with_salt: str) -> bool:
        """Constant-time check of a token against ``"<hex key>:<hex salt>"``."""
        try:
            stored_key_hex, salt_hex = hash_with_salt.split(":")
            stored_key = bytes.fromhex(stored_key_hex)
            salt = bytes.fromhex(salt_hex)
        except ValueError:
            return False

        derived = _derive_scrypt_key(value, salt)
        return hmac.compare_digest(derived, stored_key)
