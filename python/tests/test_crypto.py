"""Tests for stored API key encryption.

- Keys are encrypted with SecretBox (XSalsa20-Poly1305, libsodium via PyNaCl)
- Nonce must be 24 bytes and unique per encryption
- Different nonces produce different ciphertext for the same plaintext
- Decryption fails with the wrong nonce, master key or version
"""

import base64

import pytest

from parley.config import Settings
from parley.services.crypto import (
    CURRENT_MASTER_KEY_VERSION,
    DEV_MASTER_KEY,
    MASTER_KEY_SIZE,
    NONCE_SIZE,
    CryptoError,
    KeyCipher,
    compute_key_fingerprint,
    decode_master_key,
)

TEST_KEY = b"test_master_key_for_encryption!!"
TEST_KEY_B64 = base64.b64encode(TEST_KEY).decode("ascii")


def make_settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": "sqlite://",
        "PARLEY_ALLOW_ANONYMOUS": True,
        "PARLEY_ENV": "test",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def cipher() -> KeyCipher:
    return KeyCipher(TEST_KEY)


class TestMasterKey:
    """Tests for master key loading and validation."""

    def test_decode_valid_key(self):
        assert decode_master_key(TEST_KEY_B64) == TEST_KEY

    def test_invalid_base64_raises_error(self):
        with pytest.raises(CryptoError, match="not valid base64"):
            decode_master_key("not-valid-base64!!!")

    def test_wrong_length_raises_error(self):
        short = base64.b64encode(b"too_short").decode("ascii")
        with pytest.raises(CryptoError, match=f"must be {MASTER_KEY_SIZE} bytes"):
            decode_master_key(short)

    def test_cipher_rejects_wrong_length_raw_key(self):
        with pytest.raises(CryptoError):
            KeyCipher(b"x" * 16)

    def test_from_settings_uses_configured_key(self, cipher):
        configured = KeyCipher.from_settings(
            make_settings(PARLEY_KEY_ENCRYPTION_KEY=TEST_KEY_B64)
        )
        encrypted = cipher.encrypt("sk-roundtrip-check")

        assert configured.decrypt(encrypted.ciphertext, encrypted.nonce, encrypted.version) == (
            "sk-roundtrip-check"
        )

    def test_from_settings_dev_fallback_in_test_env(self):
        dev = KeyCipher.from_settings(make_settings())
        encrypted = KeyCipher(DEV_MASTER_KEY).encrypt("sk-dev")

        assert dev.decrypt(encrypted.ciphertext, encrypted.nonce, encrypted.version) == "sk-dev"

    def test_from_settings_invalid_configured_key(self):
        with pytest.raises(CryptoError):
            KeyCipher.from_settings(make_settings(PARLEY_KEY_ENCRYPTION_KEY="AAAA"))

    def test_prod_without_key_is_rejected_by_settings(self):
        with pytest.raises(ValueError, match="PARLEY_KEY_ENCRYPTION_KEY"):
            make_settings(PARLEY_ENV="prod")


class TestEncryption:
    """Tests for encrypt/decrypt."""

    def test_roundtrip(self, cipher):
        plaintext = "sk-test-api-key-12345"
        encrypted = cipher.encrypt(plaintext)

        assert encrypted.version == CURRENT_MASTER_KEY_VERSION
        assert len(encrypted.nonce) == NONCE_SIZE
        assert plaintext.encode() not in encrypted.ciphertext
        assert cipher.decrypt(encrypted.ciphertext, encrypted.nonce, encrypted.version) == plaintext

    def test_unicode_roundtrip(self, cipher):
        plaintext = "sk-test-éèê-中文"
        encrypted = cipher.encrypt(plaintext)

        assert cipher.decrypt(encrypted.ciphertext, encrypted.nonce, encrypted.version) == plaintext

    def test_fresh_nonce_per_encryption(self, cipher):
        first = cipher.encrypt("sk-same-plaintext")
        second = cipher.encrypt("sk-same-plaintext")

        assert first.nonce != second.nonce
        assert first.ciphertext != second.ciphertext

    def test_ciphertext_excludes_nonce_prefix(self, cipher):
        encrypted = cipher.encrypt("sk-test")
        # 16-byte Poly1305 tag plus the message
        assert len(encrypted.ciphertext) == len("sk-test") + 16

    def test_wrong_nonce_fails(self, cipher):
        encrypted = cipher.encrypt("sk-test-key")
        wrong_nonce = bytes(NONCE_SIZE)

        with pytest.raises(CryptoError, match="Decryption failed"):
            cipher.decrypt(encrypted.ciphertext, wrong_nonce, encrypted.version)

    def test_wrong_master_key_fails(self, cipher):
        encrypted = cipher.encrypt("sk-test-key")
        other = KeyCipher(b"another_master_key_32_bytes_long")

        with pytest.raises(CryptoError, match="Decryption failed"):
            other.decrypt(encrypted.ciphertext, encrypted.nonce, encrypted.version)

    def test_tampered_ciphertext_fails(self, cipher):
        encrypted = cipher.encrypt("sk-test-key")
        tampered = bytes([encrypted.ciphertext[0] ^ 0xFF]) + encrypted.ciphertext[1:]

        with pytest.raises(CryptoError):
            cipher.decrypt(tampered, encrypted.nonce, encrypted.version)

    def test_short_nonce_fails(self, cipher):
        encrypted = cipher.encrypt("sk-test-key")

        with pytest.raises(CryptoError, match=f"Nonce must be {NONCE_SIZE} bytes"):
            cipher.decrypt(encrypted.ciphertext, encrypted.nonce[:12], encrypted.version)

    def test_unknown_version_fails(self, cipher):
        encrypted = cipher.encrypt("sk-test-key")

        with pytest.raises(CryptoError, match="Unknown key version"):
            cipher.decrypt(encrypted.ciphertext, encrypted.nonce, 99)


class TestFingerprint:
    def test_last_four_characters(self):
        assert compute_key_fingerprint("sk-test-api-key-abcd") == "abcd"

    def test_short_key_is_returned_whole(self):
        assert compute_key_fingerprint("abc") == "abc"

    def test_encrypted_key_carries_fingerprint(self, cipher):
        assert cipher.encrypt("sk-test-api-key-wxyz").fingerprint == "wxyz"
