"""
Symmetric encryption for stored channel access tokens.

Tokens are stored as ``hex(iv):hex(auth_tag):hex(ciphertext)`` encrypted
with AES-256-GCM under a 32-character key taken from
``TOKEN_ENCRYPTION_KEY``.  Decryption failures are reported as
``AuthFailure``: a token that cannot be decrypted can never be used to
publish, so retrying is pointless.
"""

import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from scheduled_publisher.exceptions import AuthFailure, ConfigurationError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16


class CredentialService:
    """Encrypts and decrypts channel credentials.

    Stateless apart from the key; every call takes the ciphertext or
    plaintext explicitly.

    Args:
        key: 32-character key.  Falls back to ``TOKEN_ENCRYPTION_KEY``.

    Raises:
        ConfigurationError: If the key is missing or not 32 bytes long.
    """

    def __init__(self, key: Optional[str] = None) -> None:
        raw = key if key is not None else os.environ.get("TOKEN_ENCRYPTION_KEY", "")
        if not raw:
            raise ConfigurationError(
                "TOKEN_ENCRYPTION_KEY environment variable is not set"
            )
        key_bytes = raw.encode("utf-8")
        if len(key_bytes) != KEY_LENGTH:
            raise ConfigurationError(
                f"TOKEN_ENCRYPTION_KEY must be exactly {KEY_LENGTH} characters"
            )
        self._aesgcm = AESGCM(key_bytes)

    def encrypt(self, token: str) -> str:
        """Encrypt *token* into the stored ``iv:tag:ciphertext`` format."""
        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, token.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, encrypted: str) -> str:
        """Decrypt a stored token.

        Args:
            encrypted: ``hex(iv):hex(auth_tag):hex(ciphertext)``.

        Returns:
            The plaintext access token.

        Raises:
            AuthFailure: On a malformed value or a failed authentication tag.
        """
        if not encrypted:
            raise AuthFailure("Channel has no access token")

        parts = encrypted.split(":")
        if len(parts) != 3:
            raise AuthFailure("Invalid encrypted token format")

        try:
            iv = bytes.fromhex(parts[0])
            tag = bytes.fromhex(parts[1])
            ciphertext = bytes.fromhex(parts[2])
        except ValueError as exc:
            raise AuthFailure("Invalid encrypted token format") from exc

        if len(tag) != TAG_LENGTH or not iv:
            raise AuthFailure("Invalid encrypted token format")

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            logger.error("Access token failed authentication during decryption")
            raise AuthFailure("Access token could not be decrypted") from exc

        return plaintext.decode("utf-8")


__all__ = [
    "CredentialService",
]
