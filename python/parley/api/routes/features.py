"""Per-user feature flag routes.

- GET /features: Every known feature with the viewer's setting
- PUT /features/{feature}: Turn a feature on or off for the viewer
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from parley.api.deps import get_db
from parley.auth.middleware import Viewer, get_viewer
from parley.responses import success_response
from parley.schemas.features import FeatureUpdate
from parley.services import features as features_service

router = APIRouter(tags=["features"])


@router.get("/features")
def list_features(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    features = features_service.list_features(db=db, user_id=viewer.user_id)
    return success_response([f.model_dump(mode="json") for f in features])


@router.put("/features/{feature}")
def update_feature(
    feature: str,
    body: FeatureUpdate,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Set one feature for the viewer.

    Errors:
        E_FEATURE_INVALID (400): Unknown feature name
    """
    updated = features_service.set_feature(
        db=db, user_id=viewer.user_id, feature=feature, enabled=body.enabled
    )
    return success_response(updated.model_dump(mode="json"))
