"""Per-user feature flags.

Every known feature is always listed. A feature with no user_features row
is disabled.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from parley.db.models import Feature, UserFeature
from parley.db.session import transaction
from parley.errors import ApiErrorCode, InvalidRequestError
from parley.logging import get_logger
from parley.schemas.features import FeatureOut

logger = get_logger(__name__)


def parse_feature(value: str) -> Feature:
    """Parse a feature name, rejecting unknown ones with E_FEATURE_INVALID."""
    try:
        return Feature(value)
    except ValueError:
        raise InvalidRequestError(
            ApiErrorCode.E_FEATURE_INVALID, f"Unknown feature: {value}"
        ) from None


def list_features(db: Session, user_id: str) -> list[FeatureOut]:
    """All known features in declaration order, with the user's setting."""
    rows = db.scalars(select(UserFeature).where(UserFeature.user_id == user_id)).all()
    enabled = {row.feature: row.enabled for row in rows}
    return [FeatureOut(feature=f.value, enabled=enabled.get(f.value, False)) for f in Feature]


def set_feature(db: Session, user_id: str, feature: str, enabled: bool) -> FeatureOut:
    """Create or update the user's row for one feature.

    Raises:
        InvalidRequestError: E_FEATURE_INVALID for an unknown feature name.
    """
    parsed = parse_feature(feature)

    with transaction(db):
        row = db.scalars(
            select(UserFeature).where(
                UserFeature.user_id == user_id, UserFeature.feature == parsed.value
            )
        ).first()
        if row is None:
            db.add(UserFeature(user_id=user_id, feature=parsed.value, enabled=enabled))
        else:
            row.enabled = enabled

    logger.info("features.updated", feature=parsed.value, enabled=enabled)
    return FeatureOut(feature=parsed.value, enabled=enabled)
