"""Application settings loaded from environment variables.

Environment Configuration:
    PARLEY_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: Database connection string (required)
    PARLEY_KEY_ENCRYPTION_KEY: Base64 32-byte master key for stored API keys
                               (required in staging/prod)

Auth Configuration (required unless PARLEY_ALLOW_ANONYMOUS is set):
    AUTH_JWKS_URL: Full URL to the identity provider's JWKS endpoint
    AUTH_ISSUER: Expected JWT issuer (trailing slash stripped)
    AUTH_AUDIENCES: Comma-separated list of allowed audiences
    PARLEY_ALLOW_ANONYMOUS: Serve unauthenticated requests as the anonymous user

Provider Configuration:
    LLM_TIMEOUT_S: Total timeout for a single vendor call (default 45)
    LLM_CONNECT_TIMEOUT_S: Connect timeout for vendor calls (default 10)
    OPENAI_BASE_URL, ANTHROPIC_BASE_URL, GOOGLE_BASE_URL,
    DEEPSEEK_BASE_URL, OLLAMA_BASE_URL: Vendor endpoints

The Settings object is built once by the app factory and handed to the
services that need it. get_settings() is only the process-level default.
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Validation rules:
    - DATABASE_URL is always required
    - AUTH_* settings are required unless anonymous access is enabled
    - PARLEY_KEY_ENCRYPTION_KEY is required in staging and prod
    - Timeouts must be positive
    """

    parley_env: Environment = Field(default=Environment.LOCAL, alias="PARLEY_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]

    # Auth
    auth_jwks_url: str | None = Field(default=None, alias="AUTH_JWKS_URL")
    auth_issuer: str | None = Field(default=None, alias="AUTH_ISSUER")
    auth_audiences: str | None = Field(default=None, alias="AUTH_AUDIENCES")
    allow_anonymous: bool = Field(default=False, alias="PARLEY_ALLOW_ANONYMOUS")

    # Base64-encoded 32-byte key for SecretBox encryption of stored API keys
    key_encryption_key: str | None = Field(default=None, alias="PARLEY_KEY_ENCRYPTION_KEY")

    # Vendor calls
    llm_timeout_s: float = Field(default=45.0, alias="LLM_TIMEOUT_S")
    llm_connect_timeout_s: float = Field(default=10.0, alias="LLM_CONNECT_TIMEOUT_S")
    openai_base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    anthropic_base_url: str = Field(
        default="https://api.anthropic.com/v1", alias="ANTHROPIC_BASE_URL"
    )
    google_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta", alias="GOOGLE_BASE_URL"
    )
    deepseek_base_url: str = Field(default="https://api.deepseek.com", alias="DEEPSEEK_BASE_URL")
    ollama_base_url: str = Field(default="http://localhost:11434/v1", alias="OLLAMA_BASE_URL")

    # Retry budget for (chat_id, sequence_number) conflicts
    seq_max_attempts: int = Field(default=5, alias="SEQ_MAX_ATTEMPTS")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure required settings are set for the configured environment."""
        if not self.allow_anonymous:
            missing_auth = []
            if not self.auth_jwks_url:
                missing_auth.append("AUTH_JWKS_URL")
            if not self.auth_issuer:
                missing_auth.append("AUTH_ISSUER")
            if not self.auth_audiences:
                missing_auth.append("AUTH_AUDIENCES")

            if missing_auth:
                raise ValueError(
                    f"Missing required auth settings: {', '.join(missing_auth)}. "
                    "Set them or enable PARLEY_ALLOW_ANONYMOUS for local use."
                )

        if self.parley_env in (Environment.STAGING, Environment.PROD):
            if not self.key_encryption_key:
                raise ValueError(
                    f"PARLEY_KEY_ENCRYPTION_KEY is required for PARLEY_ENV={self.parley_env.value}"
                )

        if self.llm_timeout_s <= 0:
            raise ValueError("LLM_TIMEOUT_S must be positive")
        if self.llm_connect_timeout_s <= 0:
            raise ValueError("LLM_CONNECT_TIMEOUT_S must be positive")
        if self.seq_max_attempts < 1:
            raise ValueError("SEQ_MAX_ATTEMPTS must be at least 1")

        return self

    @property
    def is_dev_environment(self) -> bool:
        """Whether development fallbacks (e.g. the dev master key) are allowed."""
        return self.parley_env in (Environment.LOCAL, Environment.TEST)

    @property
    def audience_list(self) -> list[str]:
        """Parse comma-separated audiences into a list."""
        if self.auth_audiences:
            return [a.strip() for a in self.auth_audiences.split(",") if a.strip()]
        return []

    @property
    def normalized_issuer(self) -> str | None:
        """Return issuer with trailing slash stripped."""
        if self.auth_issuer:
            return self.auth_issuer.rstrip("/")
        return None


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
