"""User API key and model catalogue Pydantic schemas.

- No secrets ever leave the backend
- Responses never include encrypted_key, key_nonce or master_key_version
- The fingerprint is the last 4 chars of the original key
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# Model Catalogue Schemas
# =============================================================================


class ModelOut(BaseModel):
    """Response schema for a catalogued vendor model.

    id is the vendor's model string, the value chats are bound to.
    enabled is the viewer's own setting; models default to enabled.
    """

    id: str
    provider: str
    display_name: str
    description: str | None
    context_window: int
    supports_streaming: bool
    supports_images: bool
    supports_functions: bool
    enabled: bool


class ModelEnabledUpdate(BaseModel):
    """Request schema for enabling or disabling a model for the viewer."""

    enabled: bool


# =============================================================================
# User API Key Schemas
# =============================================================================


class UserApiKeyOut(BaseModel):
    """Response schema for a user API key.

    Only display-safe fields. encrypted_key, key_nonce and master_key_version
    are never present.
    """

    id: UUID
    provider: str
    key_fingerprint: str
    is_default: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserApiKeyCreate(BaseModel):
    """Request schema for storing an API key.

    is_default=None lets the service decide: the first key for a provider
    becomes the default.
    """

    provider: str = Field(..., description="openai, anthropic, google, deepseek or ollama")
    api_key: str = Field(..., description="The plaintext API key to store", min_length=1)
    is_default: bool | None = None

    @field_validator("api_key")
    @classmethod
    def validate_api_key_format(cls, v: str) -> str:
        """Strip surrounding whitespace and reject embedded whitespace."""
        v = v.strip()
        if not v:
            raise ValueError("API key is empty")
        if any(c.isspace() for c in v):
            raise ValueError("API key contains whitespace")
        return v
