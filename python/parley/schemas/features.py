"""Per-user feature flag schemas."""

from pydantic import BaseModel


class FeatureOut(BaseModel):
    """One feature and whether the viewer has it enabled."""

    feature: str
    enabled: bool


class FeatureUpdate(BaseModel):
    enabled: bool
