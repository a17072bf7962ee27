"""AES-256-GCM key vault for per-user API keys.

Stored format is ``ivHex:authTagHex:ciphertextHex`` with a 16-byte random IV
and a 16-byte authentication tag, all lowercase hex.

Security Note:
    The server secret never leaves this module's instances, and plaintext keys
    must never be logged.
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from visioncore.services.exceptions import AuthError

IV_LENGTH = 16
TAG_LENGTH = 16


class KeyVault:
    """Encrypts and decrypts API keys with a server-held symmetric secret."""

    def __init__(self, secret: str):
        """Initialize vault.

        Args:
            secret: 32-byte (UTF-8) server secret, from SERVER_ENCRYPTION_KEY

        Raises:
            ValueError: If the secret is not exactly 32 bytes
        """
        key = secret.encode("utf-8")
        if len(key) != 32:
            raise ValueError("Encryption secret must be exactly 32 bytes for AES-256-GCM")
        self._aesgcm = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt plaintext and return ``ivHex:authTagHex:ciphertextHex``."""
        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, stored: str) -> str:
        """Decrypt a value produced by encrypt().

        Raises:
            AuthError: If the value is malformed or fails authentication
        """
        try:
            iv_hex, tag_hex, ciphertext_hex = stored.split(":")
            iv = bytes.fromhex(iv_hex)
            tag = bytes.fromhex(tag_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
        except ValueError as e:
            raise AuthError("Stored API key is malformed") from e

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except (InvalidTag, ValueError) as e:
            raise AuthError("Stored API key could not be decrypted") from e

        return plaintext.decode("utf-8")
