"""Log guard utilities.

Never-log policy:
- API keys (plaintext, decrypted or encrypted)
- Bearer tokens
- Prompts and message content

Allowed (with suffix):
- _chars, _length: length of text
- _sha256, _hash: hash of text
- Token counts, latency, key fingerprints
"""

import hashlib

from parley.logging import get_logger

logger = get_logger(__name__)

FORBIDDEN_KEYS = frozenset(
    {
        "prompt",
        "content",
        "message",
        "messages",
        "api_key",
        "encrypted_key",
        "authorization",
        "bearer",
        "token",
        "secret",
        "raw_body",
    }
)

REDACTED_SUFFIXES = ("_sha256", "_hash", "_length", "_chars")


def hash_text(value: str) -> str:
    """Stable SHA-256 hex digest, for log correlation without exposing content."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _has_redacted_suffix(key: str) -> bool:
    return any(key.endswith(suffix) for suffix in REDACTED_SUFFIXES)


def safe_kv(*, _strict: bool = False, **kwargs) -> dict:
    """Drop forbidden keys from log fields.

    Usage:
        logger.info("llm.request.started", **safe_kv(
            provider="openai",
            model="gpt-4",
            message_chars=1234,       # OK: _chars suffix
            # prompt="hello world",   # dropped: forbidden key
        ))

    Args:
        _strict: Raise instead of dropping (used by tests to catch call sites).
        **kwargs: Log fields to validate.

    Returns:
        The kwargs without forbidden keys.

    Raises:
        ValueError: In strict mode, if a forbidden key is present.
    """
    violations = [key for key in kwargs if key in FORBIDDEN_KEYS and not _has_redacted_suffix(key)]
    if not violations:
        return kwargs

    if _strict:
        raise ValueError(f"Forbidden log keys without redacted suffix: {violations}")

    logger.warning("safe_kv_violation", forbidden_keys=violations)
    return {k: v for k, v in kwargs.items() if k not in violations}
