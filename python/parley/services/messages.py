"""Message service layer.

Sequence numbers:
- next = max(sequence_number) for the chat + 1, or 1 for an empty chat
- Computed fresh at every insert, never reserved ahead of time
- append_message locks the chat row (FOR UPDATE) before reading max
- uix_messages_chat_sequence rejects a duplicate; append_message then
  rolls back, sleeps a jittered backoff, recomputes and retries up to a
  bounded number of attempts

Every entry point that takes a user_id re-checks that the chat is active
and owned by that user at write time.
"""

import random
import time
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parley.db.models import Message, MessageRole
from parley.db.session import transaction
from parley.errors import ApiErrorCode, NotFoundError, PersistenceError
from parley.logging import get_logger
from parley.services.chats import get_chat_or_404, lock_chat_or_404, touch_chat

logger = get_logger(__name__)

DEFAULT_SEQ_MAX_ATTEMPTS = 5
SEQ_BACKOFF_BASE_S = 0.02
SEQ_BACKOFF_MAX_S = 0.5


def seq_backoff_s(attempt: int) -> float:
    """Full-jitter exponential backoff before retry number attempt + 1."""
    return random.uniform(0, min(SEQ_BACKOFF_MAX_S, SEQ_BACKOFF_BASE_S * 2 ** (attempt - 1)))


@dataclass
class NewMessage:
    """Values for a message inserted at an explicit sequence number."""

    chat_id: UUID
    role: MessageRole
    content: str
    sequence_number: int
    metadata: dict[str, Any] | None = field(default=None)
    parent_message_id: UUID | None = None
    tokens_used: int | None = None
    model_used: str | None = None


def list_by_chat(db: Session, chat_id: UUID, user_id: str) -> list[Message]:
    """All messages of the caller's chat, ordered by sequence_number ascending.

    Raises:
        NotFoundError: E_CHAT_NOT_FOUND if the chat is missing, deleted or not owned.
    """
    get_chat_or_404(db, chat_id, user_id)

    stmt = (
        select(Message)
        .where(Message.chat_id == chat_id)
        .order_by(Message.sequence_number.asc())
    )
    return list(db.scalars(stmt).all())


def next_sequence_number(db: Session, chat_id: UUID) -> int:
    """max(sequence_number) + 1 for the chat, treating an empty chat as 0."""
    current = db.scalar(
        select(func.max(Message.sequence_number)).where(Message.chat_id == chat_id)
    )
    return (current or 0) + 1


def create_message(db: Session, dto: NewMessage) -> Message:
    """Insert a message at dto.sequence_number.

    Does not commit; the caller owns the transaction.

    Raises:
        IntegrityError: If the sequence number is already taken in the chat.
    """
    message = Message(
        chat_id=dto.chat_id,
        role=MessageRole(dto.role).value,
        content=dto.content,
        metadata_=dto.metadata,
        parent_message_id=dto.parent_message_id,
        sequence_number=dto.sequence_number,
        tokens_used=dto.tokens_used,
        model_used=dto.model_used,
    )
    db.add(message)
    db.flush()
    return message


def append_message(
    db: Session,
    chat_id: UUID,
    user_id: str,
    role: MessageRole,
    content: str,
    *,
    metadata: dict[str, Any] | None = None,
    parent_message_id: UUID | None = None,
    tokens_used: int | None = None,
    model_used: str | None = None,
    max_attempts: int = DEFAULT_SEQ_MAX_ATTEMPTS,
) -> Message:
    """Append a message at the next free sequence number and commit it.

    Each attempt is its own transaction: lock the chat row, max+1, insert,
    bump chats.updated_at. The row lock serializes writers on PostgreSQL.
    Where it does not (SQLite), a unique-constraint conflict rolls the
    attempt back, waits a jittered backoff and retries.

    Raises:
        NotFoundError: E_CHAT_NOT_FOUND if the chat is missing, deleted or not owned.
        PersistenceError: If every attempt hit a sequence conflict.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            with transaction(db):
                lock_chat_or_404(db, chat_id, user_id)
                dto = NewMessage(
                    chat_id=chat_id,
                    role=role,
                    content=content,
                    sequence_number=next_sequence_number(db, chat_id),
                    metadata=metadata,
                    parent_message_id=parent_message_id,
                    tokens_used=tokens_used,
                    model_used=model_used,
                )
                message = create_message(db, dto)
                touch_chat(db, chat_id)
            return message
        except IntegrityError:
            logger.warning(
                "message.seq_conflict",
                chat_id=str(chat_id),
                attempt=attempt,
                max_attempts=max_attempts,
            )
            if attempt < max_attempts:
                time.sleep(seq_backoff_s(attempt))

    raise PersistenceError(
        f"Could not allocate a sequence number after {max_attempts} attempts",
        step="allocate_sequence",
    )


def get_message_or_404(db: Session, chat_id: UUID, message_id: UUID, user_id: str) -> Message:
    """Return a message of the caller's active chat.

    Raises:
        NotFoundError: E_CHAT_NOT_FOUND or E_MESSAGE_NOT_FOUND.
    """
    get_chat_or_404(db, chat_id, user_id)

    message = db.scalars(
        select(Message).where(Message.id == message_id, Message.chat_id == chat_id)
    ).first()
    if message is None:
        raise NotFoundError(ApiErrorCode.E_MESSAGE_NOT_FOUND, "Message not found")
    return message


def update_tokens_used(
    db: Session, message_id: UUID, tokens: int | None, model: str | None
) -> None:
    """Attach provider usage to a stored message."""
    with transaction(db):
        message = db.get(Message, message_id)
        if message is None:
            raise NotFoundError(ApiErrorCode.E_MESSAGE_NOT_FOUND, "Message not found")
        message.tokens_used = tokens
        message.model_used = model


def update_message_content(
    db: Session,
    chat_id: UUID,
    message_id: UUID,
    user_id: str,
    *,
    content: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Message:
    """Edit a message in place. Its sequence number never changes."""
    message = get_message_or_404(db, chat_id, message_id, user_id)

    with transaction(db):
        if content is not None:
            message.content = content
        if metadata is not None:
            message.metadata_ = metadata
        touch_chat(db, chat_id)

    return message


def delete_message(db: Session, chat_id: UUID, message_id: UUID, user_id: str) -> None:
    """Delete one message. Later messages keep their sequence numbers."""
    message = get_message_or_404(db, chat_id, message_id, user_id)

    with transaction(db):
        db.delete(message)
        touch_chat(db, chat_id)

    logger.info("message.deleted", chat_id=str(chat_id), message_id=str(message_id))


def clear_messages(db: Session, chat_id: UUID, user_id: str) -> int:
    """Delete every message of the caller's chat.

    Returns:
        Number of messages deleted.
    """
    get_chat_or_404(db, chat_id, user_id)

    with transaction(db):
        result = db.execute(delete(Message).where(Message.chat_id == chat_id))
        touch_chat(db, chat_id)

    logger.info("messages.cleared", chat_id=str(chat_id), deleted=result.rowcount)
    return result.rowcount
