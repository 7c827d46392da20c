"""Model catalogue service layer.

The ai_models table is the served catalogue:
- Rows are seeded from the static vendor tables (migration 0002, seed_catalog)
- Only is_active rows are listed or looked up
- (provider, model_id) is unique; model_id is the vendor's model string

Per-user overrides live in user_models. A model without an override row
is enabled for the user.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from parley.db.models import AiModel, UserModel
from parley.db.session import transaction
from parley.errors import ApiErrorCode, NotFoundError
from parley.logging import get_logger
from parley.schemas.keys import ModelOut
from parley.services.llm.catalog import MODEL_CATALOG
from parley.services.llm.types import parse_provider

logger = get_logger(__name__)


def _to_out(model: AiModel, enabled: bool | None) -> ModelOut:
    return ModelOut(
        id=model.model_id,
        provider=model.provider,
        display_name=model.display_name,
        description=model.description,
        context_window=model.context_window,
        supports_streaming=model.supports_streaming,
        supports_images=model.supports_images,
        supports_functions=model.supports_functions,
        enabled=True if enabled is None else enabled,
    )


def _with_user_setting(user_id: str):
    return select(AiModel, UserModel.enabled).outerjoin(
        UserModel,
        (UserModel.model_id == AiModel.id) & (UserModel.user_id == user_id),
    )


def _get_active_or_404(db: Session, provider: str, model_id: str) -> AiModel:
    parsed = parse_provider(provider)
    model = db.scalars(
        select(AiModel).where(
            AiModel.provider == parsed.value,
            AiModel.model_id == model_id,
            AiModel.is_active.is_(True),
        )
    ).first()
    if model is None:
        raise NotFoundError(ApiErrorCode.E_MODEL_NOT_FOUND, "Model not found")
    return model


def seed_catalog(db: Session) -> int:
    """Insert every static catalogue entry that has no ai_models row yet.

    Existing rows are left alone, including ones marked inactive.

    Returns:
        Number of rows inserted.
    """
    existing = {
        (provider, model_id)
        for provider, model_id in db.execute(select(AiModel.provider, AiModel.model_id))
    }

    inserted = 0
    with transaction(db):
        for provider, entries in MODEL_CATALOG.items():
            for info in entries:
                if (provider.value, info.id) in existing:
                    continue
                db.add(
                    AiModel(
                        provider=provider.value,
                        model_id=info.id,
                        display_name=info.display_name,
                        description=info.description,
                        context_window=info.context_window,
                        supports_streaming=info.supports_streaming,
                        supports_images=info.supports_images,
                        supports_functions=info.supports_functions,
                    )
                )
                inserted += 1

    logger.info("models.catalog_seeded", inserted=inserted)
    return inserted


def list_models(db: Session, user_id: str, provider: str | None = None) -> list[ModelOut]:
    """List active models with the viewer's enabled flag, ordered by provider then model id.

    Raises:
        InvalidRequestError: E_PROVIDER_INVALID for an unknown provider filter.
    """
    stmt = _with_user_setting(user_id).where(AiModel.is_active.is_(True))
    if provider is not None:
        stmt = stmt.where(AiModel.provider == parse_provider(provider).value)

    rows = db.execute(stmt.order_by(AiModel.provider, AiModel.model_id)).tuples().all()
    return [_to_out(model, enabled) for model, enabled in rows]


def get_model(db: Session, user_id: str, provider: str, model_id: str) -> ModelOut:
    """One active model with the viewer's enabled flag.

    Raises:
        InvalidRequestError: E_PROVIDER_INVALID for an unknown provider.
        NotFoundError: E_MODEL_NOT_FOUND if there is no active row.
    """
    model = _get_active_or_404(db, provider, model_id)
    setting = db.get(UserModel, (user_id, model.id))
    return _to_out(model, setting.enabled if setting else None)


def set_model_enabled(
    db: Session, user_id: str, provider: str, model_id: str, enabled: bool
) -> ModelOut:
    """Record the viewer's enabled flag for one model, creating the override row if needed."""
    model = _get_active_or_404(db, provider, model_id)

    with transaction(db):
        setting = db.get(UserModel, (user_id, model.id))
        if setting is None:
            setting = UserModel(user_id=user_id, model_id=model.id, enabled=enabled)
            db.add(setting)
        else:
            setting.enabled = enabled

    logger.info(
        "models.user_setting_updated",
        provider=model.provider,
        model=model.model_id,
        enabled=enabled,
    )
    return _to_out(model, enabled)
