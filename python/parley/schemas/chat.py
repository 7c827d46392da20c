"""Chat, message and completion Pydantic schemas.

Request and response models for the /chat, /chats and /chats/{id}/messages
endpoints. Provider strings are accepted as plain text and checked by the
service layer, so an unknown vendor is reported as E_PROVIDER_INVALID.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# Valid message roles - must match DB constraint
MESSAGE_ROLES = Literal["user", "assistant", "system"]


# =============================================================================
# Completion
# =============================================================================


class ChatCompletionRequest(BaseModel):
    """Request to run one completion exchange on an existing chat."""

    chat_id: UUID
    message: str = Field(..., min_length=1)
    model_provider: str = Field(..., min_length=1)
    model_id: str = Field(..., min_length=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)
    stream: bool = False


class ChatCompletionResponse(BaseModel):
    """Normalized completion returned to the caller."""

    content: str
    model: str
    tokens_used: int | None = None
    finish_reason: str | None = None


# =============================================================================
# Chats
# =============================================================================


class ChatOut(BaseModel):
    """Response schema for a chat."""

    id: UUID
    title: str
    model_provider: str
    model_id: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageOut(BaseModel):
    """Response schema for a message, ordered by sequence_number within its chat."""

    id: UUID
    chat_id: UUID
    role: str  # "user" | "assistant" | "system"
    content: str
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="metadata_")
    parent_message_id: UUID | None = None
    sequence_number: int
    created_at: datetime
    tokens_used: int | None = None
    model_used: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ChatDetailOut(ChatOut):
    """A chat with its messages."""

    messages: list[MessageOut]


class ChatListOut(BaseModel):
    """One page of the caller's chats."""

    items: list[ChatOut]
    total: int
    limit: int
    offset: int


class ChatCreate(BaseModel):
    """Request schema for creating a chat."""

    title: str | None = Field(default=None, max_length=200)
    model_provider: str = Field(..., min_length=1)
    model_id: str = Field(..., min_length=1)


class ChatUpdate(BaseModel):
    """Request schema for updating a chat. Omitted fields are left unchanged."""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    model_provider: str | None = Field(default=None, min_length=1)
    model_id: str | None = Field(default=None, min_length=1)


# =============================================================================
# Messages
# =============================================================================


class MessageCreate(BaseModel):
    """Request schema for appending a message without a completion."""

    role: MESSAGE_ROLES
    content: str = Field(..., min_length=1)
    metadata: dict[str, Any] | None = None
    parent_message_id: UUID | None = None


class MessageUpdate(BaseModel):
    """Request schema for editing a message."""

    content: str | None = Field(default=None, min_length=1)
    metadata: dict[str, Any] | None = None
