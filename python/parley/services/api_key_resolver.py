"""Credential resolution for completion requests.

Looks up the caller's default key for a provider and decrypts it. The
result lives only for the request that resolved it.

This module has DB access and is kept outside the provider layer, which
must stay DB-free.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from parley.errors import ApiErrorCode, InvalidRequestError
from parley.logging import get_logger
from parley.services import user_keys
from parley.services.crypto import CryptoError, KeyCipher
from parley.services.llm.types import Provider

logger = get_logger(__name__)


@dataclass(frozen=True)
class ResolvedCredential:
    """A decrypted default key for one (user, provider) pair."""

    key_id: UUID
    provider: Provider
    api_key: str

    def __repr__(self) -> str:
        return f"ResolvedCredential(key_id={self.key_id}, provider={self.provider.value})"


def resolve_default_credential(
    db: Session,
    cipher: KeyCipher,
    user_id: str,
    provider: Provider,
) -> ResolvedCredential:
    """Return the caller's decrypted default key for a provider.

    Never falls back to another user's key or to a non-default key.

    Raises:
        InvalidRequestError: E_NO_DEFAULT_KEY if there is no default key, or it
            cannot be decrypted.
    """
    key = user_keys.get_default(db, user_id, provider)
    if key is None:
        raise InvalidRequestError(
            ApiErrorCode.E_NO_DEFAULT_KEY,
            f"No default API key configured for provider {provider.value}",
        )

    try:
        api_key = cipher.decrypt(key.encrypted_key, key.key_nonce, key.master_key_version)
    except CryptoError:
        logger.error(
            "credential.decrypt_failed",
            user_id=user_id,
            provider=provider.value,
            key_id=str(key.id),
            fingerprint=key.key_fingerprint,
        )
        raise InvalidRequestError(
            ApiErrorCode.E_NO_DEFAULT_KEY,
            f"Stored API key for provider {provider.value} is unusable; store it again",
        ) from None

    return ResolvedCredential(key_id=key.id, provider=provider, api_key=api_key)
