"""
Field Cipher
------------
Searchable encryption for sensitive scalar fields (emails, names, slugs).

Each value is stored as a ProtectedField holding two things:

- an unkeyed SHA-256 digest used for exact-match lookups, and
- AES-256-GCM ciphertext with a fresh random 96-bit nonce.

The digest is deterministic on purpose. Anyone holding two records can tell
whether they store the same value, and low-entropy values can be guessed by
hashing candidates. This is the accepted price for querying without the key.
The ciphertext never repeats, so it leaks nothing beyond the digest.
"""

import hashlib
import json
import secrets
from typing import Any, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from loguru import logger

from app.core.config_manager import SecurityConfig
from app.core.exceptions import IntegrityError
from app.models.identity_models import ProtectedField

NONCE_SIZE = 12
TAG_SIZE = 16


def canonical_email(email: str) -> str:
    """Emails are protected and hashed in this form so lookups are case-insensitive."""
    return email.strip().lower()


def hash_only(plaintext: str) -> str:
    """Deterministic hex SHA-256 of a plaintext, usable without the AES key."""
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


class FieldCipher:
    """AES-256-GCM encryption plus search hashes for protected fields."""

    def __init__(self, config: SecurityConfig):
        self._aesgcm = AESGCM(config.aes_encryption_key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt and pack as ``hex(ciphertext):hex(nonce):hex(tag)``."""
        nonce = secrets.token_bytes(NONCE_SIZE)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return f"{ciphertext.hex()}:{nonce.hex()}:{tag.hex()}"

    def decrypt(self, packed: str) -> str:
        """
        Unpack, verify the tag and decrypt.

        Raises:
            IntegrityError: If the packing is malformed or the tag does not verify
        """
        parts = packed.split(":")
        if len(parts) != 3:
            raise IntegrityError("Malformed encrypted value")

        try:
            ciphertext, nonce, tag = (bytes.fromhex(part) for part in parts)
        except ValueError:
            raise IntegrityError("Malformed encrypted value")

        if len(nonce) != NONCE_SIZE or len(tag) != TAG_SIZE:
            raise IntegrityError("Malformed encrypted value")

        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            logger.bind(security_event="field_integrity_failure").warning(
                "Protected field failed tag verification"
            )
            raise IntegrityError()

        return plaintext.decode("utf-8")

    def protect(self, plaintext: str) -> ProtectedField:
        """Produce the stored form of a sensitive value."""
        return ProtectedField(encrypted=self.encrypt(plaintext), hash=hash_only(plaintext))

    def reveal(self, field: ProtectedField) -> str:
        """Recover the plaintext of a protected field."""
        return self.decrypt(field.encrypted)

    def hash_only(self, plaintext: str) -> str:
        return hash_only(plaintext)

    def encrypt_payload_snapshot(self, payload: Dict[str, Any]) -> str:
        """Encrypt a JSON-serializable audit snapshot."""
        return self.encrypt(json.dumps(payload, default=str, sort_keys=True))

    def decrypt_payload_snapshot(self, packed: str) -> Dict[str, Any]:
        return json.loads(self.decrypt(packed))
