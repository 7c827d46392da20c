"""Model catalogue routes.

Route handlers for the persisted model catalogue (ai_models) and the
viewer's per-model settings. Routes are transport-only: each calls exactly
one service function. No vendor is contacted and no key is needed.

- GET /models: List active models, optionally for one provider
- GET /models/{provider}/{model_id}: One model
- PUT /models/{provider}/{model_id}/enabled: Enable or disable a model for the viewer
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from parley.api.deps import get_db
from parley.auth.middleware import Viewer, get_viewer
from parley.responses import success_response
from parley.schemas.keys import ModelEnabledUpdate
from parley.services import models as models_service

router = APIRouter(tags=["models"])


@router.get("/models")
def list_models(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    provider: str | None = Query(default=None),
) -> dict:
    """List active catalogue models with the viewer's enabled flag.

    Errors:
        E_PROVIDER_INVALID (400): Unknown provider
    """
    models = models_service.list_models(db=db, user_id=viewer.user_id, provider=provider)
    return success_response([m.model_dump(mode="json") for m in models])


@router.get("/models/{provider}/{model_id}")
def get_model(
    provider: str,
    model_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Capability descriptor for one model.

    Errors:
        E_PROVIDER_INVALID (400): Unknown provider
        E_MODEL_NOT_FOUND (404): No active catalogue entry
    """
    model = models_service.get_model(
        db=db, user_id=viewer.user_id, provider=provider, model_id=model_id
    )
    return success_response(model.model_dump(mode="json"))


@router.put("/models/{provider}/{model_id}/enabled")
def set_model_enabled(
    provider: str,
    model_id: str,
    body: ModelEnabledUpdate,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Enable or disable a model for the viewer."""
    model = models_service.set_model_enabled(
        db=db,
        user_id=viewer.user_id,
        provider=provider,
        model_id=model_id,
        enabled=body.enabled,
    )
    return success_response(model.model_dump(mode="json"))
