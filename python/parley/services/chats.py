"""Chat service layer.

All chat reads go through active_chats(), which excludes soft-deleted rows.
A chat is visible only to its owner; a chat owned by someone else is
reported as not found rather than forbidden, so ids do not leak.
"""

from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from parley.db.models import Chat, utcnow
from parley.db.session import transaction
from parley.errors import ApiErrorCode, NotFoundError
from parley.logging import get_logger
from parley.services.llm.types import parse_provider

logger = get_logger(__name__)

DEFAULT_CHAT_TITLE = "New Chat"


def active_chats() -> Select[tuple[Chat]]:
    """Base select for every chat read: soft-deleted chats never match."""
    return select(Chat).where(Chat.deleted_at.is_(None))


def get_chat(db: Session, chat_id: UUID, user_id: str) -> Chat | None:
    """Return the caller's active chat, or None."""
    stmt = active_chats().where(Chat.id == chat_id, Chat.user_id == user_id)
    return db.scalars(stmt).first()


def get_chat_or_404(db: Session, chat_id: UUID, user_id: str) -> Chat:
    """Return the caller's active chat.

    Raises:
        NotFoundError: E_CHAT_NOT_FOUND if missing, deleted, or owned by another user.
    """
    chat = get_chat(db, chat_id, user_id)
    if chat is None:
        raise NotFoundError(ApiErrorCode.E_CHAT_NOT_FOUND, "Chat not found")
    return chat


def lock_chat_or_404(db: Session, chat_id: UUID, user_id: str) -> Chat:
    """Like get_chat_or_404, but locks the chat row (FOR UPDATE) until the transaction ends.

    Serializes message appends to one chat on PostgreSQL. SQLite ignores
    the lock clause.
    """
    stmt = active_chats().where(Chat.id == chat_id, Chat.user_id == user_id).with_for_update()
    chat = db.scalars(stmt).first()
    if chat is None:
        raise NotFoundError(ApiErrorCode.E_CHAT_NOT_FOUND, "Chat not found")
    return chat


def list_chats(
    db: Session, user_id: str, limit: int = 50, offset: int = 0
) -> tuple[list[Chat], int]:
    """List the caller's active chats, most recently updated first.

    Returns:
        Tuple of (page of chats, total active chat count).
    """
    base = active_chats().where(Chat.user_id == user_id)

    total = db.scalar(select(func.count()).select_from(base.subquery())) or 0
    rows = db.scalars(
        base.order_by(Chat.updated_at.desc(), Chat.id.desc()).limit(limit).offset(offset)
    ).all()

    return list(rows), total


def create_chat(
    db: Session,
    user_id: str,
    model_provider: str,
    model_id: str,
    title: str | None = None,
) -> Chat:
    """Create a chat bound to a provider/model pair.

    Raises:
        InvalidRequestError: E_PROVIDER_INVALID for an unknown provider string.
    """
    provider = parse_provider(model_provider)

    chat = Chat(
        user_id=user_id,
        title=title or DEFAULT_CHAT_TITLE,
        model_provider=provider.value,
        model_id=model_id,
    )
    with transaction(db):
        db.add(chat)
        db.flush()

    logger.info("chat.created", chat_id=str(chat.id), provider=provider.value, model=model_id)
    return chat


def update_chat(
    db: Session,
    chat_id: UUID,
    user_id: str,
    *,
    title: str | None = None,
    model_provider: str | None = None,
    model_id: str | None = None,
) -> Chat:
    """Update the mutable fields of a chat. None leaves a field unchanged."""
    chat = get_chat_or_404(db, chat_id, user_id)

    with transaction(db):
        if title is not None:
            chat.title = title
        if model_provider is not None:
            chat.model_provider = parse_provider(model_provider).value
        if model_id is not None:
            chat.model_id = model_id
        chat.updated_at = utcnow()

    return chat


def soft_delete_chat(db: Session, chat_id: UUID, user_id: str) -> None:
    """Close a chat. Its rows are kept, but no read path returns it again."""
    chat = get_chat_or_404(db, chat_id, user_id)

    with transaction(db):
        chat.deleted_at = utcnow()

    logger.info("chat.deleted", chat_id=str(chat_id))


def touch_chat(db: Session, chat_id: UUID) -> None:
    """Bump updated_at. Must be called inside the caller's transaction."""
    chat = db.get(Chat, chat_id)
    if chat is not None:
        chat.updated_at = utcnow()
