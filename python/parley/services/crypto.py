"""Encryption of stored vendor API keys.

Uses PyNaCl SecretBox (XSalsa20-Poly1305) authenticated encryption.

- The master key is base64 in PARLEY_KEY_ENCRYPTION_KEY and must decode to 32 bytes
- Every encryption uses a fresh random 24-byte nonce, stored beside the ciphertext
- Decryption fails if the nonce, master key or ciphertext is wrong
- Only fingerprints (last 4 chars) are ever logged or returned to clients

In local/test environments with no master key configured, a fixed development
key is used so the service runs without setup. It is never used elsewhere.
"""

import base64
import binascii
import hashlib
from dataclasses import dataclass

import nacl.exceptions
import nacl.utils
from nacl.secret import SecretBox

from parley.config import Settings
from parley.logging import get_logger

logger = get_logger(__name__)

NONCE_SIZE = SecretBox.NONCE_SIZE
MASTER_KEY_SIZE = SecretBox.KEY_SIZE

# Version 1 is the only master key so far; rotation would add more
CURRENT_MASTER_KEY_VERSION = 1

DEV_MASTER_KEY = hashlib.sha256(b"parley-local-development-master-key").digest()


class CryptoError(Exception):
    """Raised when a key cannot be loaded, encrypted or decrypted."""


@dataclass(frozen=True)
class EncryptedKey:
    """Ciphertext plus everything needed to decrypt or identify it."""

    ciphertext: bytes
    nonce: bytes
    version: int
    fingerprint: str


def compute_key_fingerprint(api_key: str) -> str:
    """Last 4 characters of the key, safe for logs and display."""
    if len(api_key) < 4:
        return api_key
    return api_key[-4:]


def decode_master_key(master_key_b64: str) -> bytes:
    """Decode and validate a base64 master key.

    Raises:
        CryptoError: If it is not valid base64 or not 32 bytes.
    """
    try:
        key = base64.b64decode(master_key_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError(f"PARLEY_KEY_ENCRYPTION_KEY is not valid base64: {e}") from e

    if len(key) != MASTER_KEY_SIZE:
        raise CryptoError(
            f"PARLEY_KEY_ENCRYPTION_KEY must be {MASTER_KEY_SIZE} bytes, got {len(key)} bytes"
        )
    return key


class KeyCipher:
    """Encrypts and decrypts API keys under one master key."""

    def __init__(self, master_key: bytes):
        if len(master_key) != MASTER_KEY_SIZE:
            raise CryptoError(f"Master key must be {MASTER_KEY_SIZE} bytes")
        self._box = SecretBox(master_key)

    @classmethod
    def from_base64(cls, master_key_b64: str) -> "KeyCipher":
        return cls(decode_master_key(master_key_b64))

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeyCipher":
        """Build the cipher for the configured environment.

        Raises:
            CryptoError: If no key is configured outside local/test, or the key is invalid.
        """
        if settings.key_encryption_key:
            return cls.from_base64(settings.key_encryption_key)

        if not settings.is_dev_environment:
            raise CryptoError("PARLEY_KEY_ENCRYPTION_KEY is not set")

        logger.warning("crypto.dev_master_key_in_use", env=settings.parley_env.value)
        return cls(DEV_MASTER_KEY)

    def encrypt(self, plaintext: str) -> EncryptedKey:
        """Encrypt an API key with a fresh nonce."""
        nonce = nacl.utils.random(NONCE_SIZE)
        try:
            encrypted = self._box.encrypt(plaintext.encode("utf-8"), nonce)
        except nacl.exceptions.CryptoError as e:
            logger.error("crypto.encryption_failed", error_type=type(e).__name__)
            raise CryptoError("Encryption failed") from e

        return EncryptedKey(
            # encrypt() prefixes the nonce; it is stored in its own column
            ciphertext=encrypted.ciphertext,
            nonce=nonce,
            version=CURRENT_MASTER_KEY_VERSION,
            fingerprint=compute_key_fingerprint(plaintext),
        )

    def decrypt(self, ciphertext: bytes, nonce: bytes, version: int) -> str:
        """Decrypt a stored API key.

        Raises:
            CryptoError: On an unknown key version, a bad nonce, or failed authentication.
        """
        if version != CURRENT_MASTER_KEY_VERSION:
            raise CryptoError(f"Unknown key version: {version}")
        if len(nonce) != NONCE_SIZE:
            raise CryptoError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")

        try:
            plaintext = self._box.decrypt(ciphertext, nonce)
        except nacl.exceptions.CryptoError as e:
            logger.error("crypto.decryption_failed", error_type=type(e).__name__)
            raise CryptoError("Decryption failed") from e

        return plaintext.decode("utf-8")
