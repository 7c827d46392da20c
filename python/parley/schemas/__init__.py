"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from parley.schemas.chat import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatCreate,
    ChatDetailOut,
    ChatListOut,
    ChatOut,
    ChatUpdate,
    MessageCreate,
    MessageOut,
    MessageUpdate,
)
from parley.schemas.keys import ModelOut, UserApiKeyCreate, UserApiKeyOut

__all__ = [
    # Completion
    "ChatCompletionRequest",
    "ChatCompletionResponse",
    # Chats
    "ChatOut",
    "ChatDetailOut",
    "ChatListOut",
    "ChatCreate",
    "ChatUpdate",
    # Messages
    "MessageOut",
    "MessageCreate",
    "MessageUpdate",
    # Keys and models
    "UserApiKeyOut",
    "UserApiKeyCreate",
    "ModelOut",
]
