"""Chat and message routes.

Routes are transport-only: each calls exactly one service function.

Chats:
- GET /chats: List the viewer's chats (paginated)
- POST /chats: Create a chat
- GET /chats/{chat_id}: Get a chat with its messages
- PATCH /chats/{chat_id}: Update title/provider/model
- DELETE /chats/{chat_id}: Soft-delete a chat

Messages:
- GET /chats/{chat_id}/messages: List messages in sequence order
- POST /chats/{chat_id}/messages: Append a message without a completion
- PATCH /chats/{chat_id}/messages/{message_id}: Edit a message
- DELETE /chats/{chat_id}/messages/{message_id}: Delete a message
- DELETE /chats/{chat_id}/messages: Delete every message

A chat that is soft-deleted or owned by someone else is reported as
E_CHAT_NOT_FOUND (404).
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from parley.api.deps import get_app_settings, get_db
from parley.auth.middleware import Viewer, get_viewer
from parley.config import Settings
from parley.responses import success_response
from parley.schemas.chat import (
    ChatCreate,
    ChatDetailOut,
    ChatListOut,
    ChatOut,
    ChatUpdate,
    MessageCreate,
    MessageOut,
    MessageUpdate,
)
from parley.services import chats as chats_service
from parley.services import messages as messages_service

router = APIRouter(tags=["chats"])


def _chat_json(chat) -> dict:
    return ChatOut.model_validate(chat).model_dump(mode="json")


def _message_json(message) -> dict:
    return MessageOut.model_validate(message).model_dump(mode="json")


# =============================================================================
# Chats
# =============================================================================


@router.get("/chats")
def list_chats(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict:
    """List the viewer's chats, most recently updated first.

    Returns:
        {"data": {"items": [...], "total": N, "limit": L, "offset": O}}
    """
    rows, total = chats_service.list_chats(db, viewer.user_id, limit=limit, offset=offset)
    page = ChatListOut(
        items=[ChatOut.model_validate(c) for c in rows],
        total=total,
        limit=limit,
        offset=offset,
    )
    return success_response(page.model_dump(mode="json"))


@router.post("/chats", status_code=201)
def create_chat(
    body: ChatCreate,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Create a chat bound to a provider/model pair.

    Errors:
        E_PROVIDER_INVALID (400): Unknown provider
    """
    chat = chats_service.create_chat(
        db,
        viewer.user_id,
        model_provider=body.model_provider,
        model_id=body.model_id,
        title=body.title,
    )
    return success_response(_chat_json(chat))


@router.get("/chats/{chat_id}")
def get_chat(
    chat_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Get a chat with all of its messages."""
    chat = chats_service.get_chat_or_404(db, chat_id, viewer.user_id)
    messages = messages_service.list_by_chat(db, chat_id, viewer.user_id)
    detail = ChatDetailOut(
        **ChatOut.model_validate(chat).model_dump(),
        messages=[MessageOut.model_validate(m) for m in messages],
    )
    return success_response(detail.model_dump(mode="json"))


@router.patch("/chats/{chat_id}")
def update_chat(
    chat_id: UUID,
    body: ChatUpdate,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Update a chat's title, provider or model."""
    chat = chats_service.update_chat(
        db,
        chat_id,
        viewer.user_id,
        title=body.title,
        model_provider=body.model_provider,
        model_id=body.model_id,
    )
    return success_response(_chat_json(chat))


@router.delete("/chats/{chat_id}", status_code=204)
def delete_chat(
    chat_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    """Soft-delete a chat. It disappears from every read afterwards."""
    chats_service.soft_delete_chat(db, chat_id, viewer.user_id)
    return Response(status_code=204)


# =============================================================================
# Messages
# =============================================================================


@router.get("/chats/{chat_id}/messages")
def list_messages(
    chat_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """List the chat's messages in sequence order."""
    messages = messages_service.list_by_chat(db, chat_id, viewer.user_id)
    return success_response([_message_json(m) for m in messages])


@router.post("/chats/{chat_id}/messages", status_code=201)
def create_message(
    chat_id: UUID,
    body: MessageCreate,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> dict:
    """Append a message at the next sequence number, without calling a provider."""
    message = messages_service.append_message(
        db,
        chat_id,
        viewer.user_id,
        body.role,
        body.content,
        metadata=body.metadata,
        parent_message_id=body.parent_message_id,
        max_attempts=settings.seq_max_attempts,
    )
    return success_response(_message_json(message))


@router.patch("/chats/{chat_id}/messages/{message_id}")
def update_message(
    chat_id: UUID,
    message_id: UUID,
    body: MessageUpdate,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Edit a message's content or metadata. Its sequence number is unchanged."""
    message = messages_service.update_message_content(
        db,
        chat_id,
        message_id,
        viewer.user_id,
        content=body.content,
        metadata=body.metadata,
    )
    return success_response(_message_json(message))


@router.delete("/chats/{chat_id}/messages/{message_id}", status_code=204)
def delete_message(
    chat_id: UUID,
    message_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    """Delete one message."""
    messages_service.delete_message(db, chat_id, message_id, viewer.user_id)
    return Response(status_code=204)


@router.delete("/chats/{chat_id}/messages")
def clear_messages(
    chat_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Delete every message of the chat.

    Returns:
        {"data": {"deleted": N}}
    """
    deleted = messages_service.clear_messages(db, chat_id, viewer.user_id)
    return success_response({"deleted": deleted})
