"""Conversation context assembly.

Turns the persisted messages of a chat into the provider-facing
ChatMessage sequence for the next completion.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from parley.db.models import Message
from parley.services.llm.types import ChatMessage
from parley.services.messages import list_by_chat


def to_chat_message(message: Message) -> ChatMessage:
    return ChatMessage(role=message.role, content=message.content)


def build_context(
    db: Session, chat_id: UUID, user_id: str, new_user_text: str
) -> list[ChatMessage]:
    """Prior messages in sequence order, followed by the new user turn.

    Raises:
        NotFoundError: E_CHAT_NOT_FOUND if the chat is missing, deleted or not owned.
    """
    history = [to_chat_message(m) for m in list_by_chat(db, chat_id, user_id)]
    history.append(ChatMessage(role="user", content=new_user_text))
    return history
