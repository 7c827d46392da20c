"""User API key service layer.

Bring-your-own-key management:
- List a user's keys (safe fields only)
- Store a key (encrypted at rest), optionally as the provider default
- Switch the default key for a provider
- Delete a key

Default invariant: at most one key per (user_id, provider) has
is_default=true. set_default and create_user_key clear the other defaults and
set the target inside one transaction, and the uix_user_api_keys_one_default
partial index rejects any write that would leave two.

Security invariants:
- Plaintext keys never persist beyond request scope
- Never log plaintext keys or ciphertext; fingerprints only
- encrypted_key, key_nonce, master_key_version never returned to clients
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from parley.db.models import UserApiKey, utcnow
from parley.db.session import transaction
from parley.errors import ApiErrorCode, InvalidRequestError, NotFoundError
from parley.logging import get_logger
from parley.schemas.keys import UserApiKeyOut
from parley.services.crypto import KeyCipher
from parley.services.llm.types import Provider, parse_provider

logger = get_logger(__name__)

# Hosted vendors issue long keys; Ollama takes any placeholder
MIN_KEY_LENGTH = 20


def _to_out(key: UserApiKey) -> UserApiKeyOut:
    return UserApiKeyOut.model_validate(key)


def _validate_key_format(provider: Provider, api_key: str) -> str:
    api_key = api_key.strip()
    if any(c.isspace() for c in api_key):
        raise InvalidRequestError(ApiErrorCode.E_KEY_INVALID_FORMAT, "API key contains whitespace")
    if provider != Provider.OLLAMA and len(api_key) < MIN_KEY_LENGTH:
        raise InvalidRequestError(ApiErrorCode.E_KEY_INVALID_FORMAT, "API key too short")
    return api_key


def _clear_defaults(db: Session, user_id: str, provider: str) -> None:
    db.execute(
        update(UserApiKey)
        .where(
            UserApiKey.user_id == user_id,
            UserApiKey.provider == provider,
            UserApiKey.is_default.is_(True),
        )
        .values(is_default=False, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )


def list_user_keys(db: Session, user_id: str) -> list[UserApiKeyOut]:
    """List all API keys for a user, newest first. Safe fields only."""
    stmt = (
        select(UserApiKey)
        .where(UserApiKey.user_id == user_id)
        .order_by(UserApiKey.created_at.desc())
    )
    return [_to_out(key) for key in db.scalars(stmt).all()]


def create_user_key(
    db: Session,
    cipher: KeyCipher,
    user_id: str,
    provider: str,
    api_key: str,
    is_default: bool | None = None,
) -> UserApiKeyOut:
    """Encrypt and store an API key.

    Args:
        is_default: True makes the new key the provider default, False never
            does, None makes it the default only if the user has no key for
            the provider yet.

    Raises:
        InvalidRequestError: E_PROVIDER_INVALID or E_KEY_INVALID_FORMAT.
    """
    parsed = parse_provider(provider)
    api_key = _validate_key_format(parsed, api_key)

    encrypted = cipher.encrypt(api_key)

    with transaction(db):
        if is_default is None:
            existing = db.scalar(
                select(UserApiKey.id)
                .where(UserApiKey.user_id == user_id, UserApiKey.provider == parsed.value)
                .limit(1)
            )
            make_default = existing is None
        else:
            make_default = is_default

        if make_default:
            _clear_defaults(db, user_id, parsed.value)

        key = UserApiKey(
            user_id=user_id,
            provider=parsed.value,
            encrypted_key=encrypted.ciphertext,
            key_nonce=encrypted.nonce,
            master_key_version=encrypted.version,
            key_fingerprint=encrypted.fingerprint,
            is_default=make_default,
        )
        db.add(key)
        db.flush()

    logger.info(
        "user_key.created",
        user_id=user_id,
        provider=parsed.value,
        fingerprint=encrypted.fingerprint,
        is_default=make_default,
    )
    return _to_out(key)


def get_default(db: Session, user_id: str, provider: Provider) -> UserApiKey | None:
    """The user's default key row for a provider, or None.

    Always scoped by (user_id, provider): never another user's key and
    never a non-default key.
    """
    stmt = select(UserApiKey).where(
        UserApiKey.user_id == user_id,
        UserApiKey.provider == provider.value,
        UserApiKey.is_default.is_(True),
    )
    return db.scalars(stmt).first()


def set_default(db: Session, key_id: UUID, user_id: str) -> UserApiKeyOut:
    """Make a key the default for its provider.

    One transaction: look up the target and its provider, clear is_default on
    the user's other keys for that provider, then set it on the target. Any
    failure rolls back all three steps.

    Raises:
        NotFoundError: E_KEY_NOT_FOUND if the key does not exist or is not owned.
    """
    with transaction(db):
        key = db.scalars(
            select(UserApiKey).where(UserApiKey.id == key_id, UserApiKey.user_id == user_id)
        ).first()
        if key is None:
            raise NotFoundError(ApiErrorCode.E_KEY_NOT_FOUND, "API key not found")

        if not key.is_default:
            # Emitted immediately, ahead of the flush that sets the target
            _clear_defaults(db, user_id, key.provider)
            key.is_default = True
            key.updated_at = utcnow()

    logger.info(
        "user_key.default_set",
        user_id=user_id,
        provider=key.provider,
        fingerprint=key.key_fingerprint,
    )
    return _to_out(key)


def delete_user_key(db: Session, user_id: str, key_id: UUID) -> None:
    """Delete a key. Deleting the default leaves the provider without one.

    Raises:
        NotFoundError: E_KEY_NOT_FOUND if the key does not exist or is not owned.
    """
    with transaction(db):
        key = db.scalars(
            select(UserApiKey).where(UserApiKey.id == key_id, UserApiKey.user_id == user_id)
        ).first()
        if key is None:
            raise NotFoundError(ApiErrorCode.E_KEY_NOT_FOUND, "API key not found")
        db.delete(key)

    logger.info(
        "user_key.deleted",
        user_id=user_id,
        provider=key.provider,
        fingerprint=key.key_fingerprint,
        was_default=key.is_default,
    )
