"""User API key routes.

Routes are transport-only: each calls exactly one service function.

- GET /keys: List the viewer's keys (safe fields only, no secrets)
- POST /keys: Store a key (encrypted at rest)
- POST /keys/{id}/default: Make a key the default for its provider
- DELETE /keys/{id}: Delete a key

Security invariants:
- Responses never include encrypted_key, key_nonce, master_key_version
- Plaintext keys are never logged
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from parley.api.deps import get_db, get_key_cipher
from parley.auth.middleware import Viewer, get_viewer
from parley.responses import success_response
from parley.schemas.keys import UserApiKeyCreate
from parley.services import user_keys as user_keys_service
from parley.services.crypto import KeyCipher

router = APIRouter(tags=["keys"])


@router.get("/keys")
def list_keys(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """List the viewer's API keys, newest first.

    Returns:
        {"data": [UserApiKeyOut, ...]}
    """
    keys = user_keys_service.list_user_keys(db=db, user_id=viewer.user_id)
    return success_response([k.model_dump(mode="json") for k in keys])


@router.post("/keys", status_code=201)
def create_key(
    body: UserApiKeyCreate,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    cipher: Annotated[KeyCipher, Depends(get_key_cipher)],
) -> dict:
    """Store an API key for a provider.

    The first key stored for a provider becomes its default unless
    is_default=false is sent.

    Errors:
        E_PROVIDER_INVALID (400): Unknown provider
        E_KEY_INVALID_FORMAT (400): Key too short or contains whitespace
    """
    key_out = user_keys_service.create_user_key(
        db=db,
        cipher=cipher,
        user_id=viewer.user_id,
        provider=body.provider,
        api_key=body.api_key,
        is_default=body.is_default,
    )
    return success_response(key_out.model_dump(mode="json"))


@router.post("/keys/{key_id}/default")
def set_default_key(
    key_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Make a key the default for its provider, clearing the previous default.

    Errors:
        E_KEY_NOT_FOUND (404): Key doesn't exist or is not owned by the viewer
    """
    key_out = user_keys_service.set_default(db=db, key_id=key_id, user_id=viewer.user_id)
    return success_response(key_out.model_dump(mode="json"))


@router.delete("/keys/{key_id}", status_code=204)
def delete_key(
    key_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    """Delete an API key.

    Errors:
        E_KEY_NOT_FOUND (404): Key doesn't exist or is not owned by the viewer
    """
    user_keys_service.delete_user_key(db=db, user_id=viewer.user_id, key_id=key_id)
    return Response(status_code=204)
