"""Model catalogue and per-user settings - ai_models, user_features, user_models

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-18

ai_models is seeded with the static vendor catalogue. user_models holds a
user's per-model enabled override; user_features holds opt-in feature flags.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: str | None = "0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

PROVIDERS = "('openai', 'anthropic', 'google', 'deepseek', 'ollama')"

# (provider, model_id, display_name, description, context_window,
#  supports_streaming, supports_images, supports_functions)
SEED_MODELS = [
    ("openai", "gpt-4", "GPT-4", "OpenAI's original GPT-4 model", 8192, True, False, True),
    ("openai", "gpt-4o", "GPT-4o", "Multimodal GPT-4 class model", 128000, True, True, True),
    ("openai", "gpt-3.5-turbo", "GPT-3.5 Turbo", None, 4096, True, False, True),
    (
        "anthropic",
        "claude-3-opus-20240229",
        "Claude 3 Opus",
        "Most capable Claude 3 model",
        200000,
        True,
        True,
        True,
    ),
    ("anthropic", "claude-3-sonnet-20240229", "Claude 3 Sonnet", None, 200000, True, True, True),
    (
        "anthropic",
        "claude-3-haiku-20240307",
        "Claude 3 Haiku",
        "Fastest Claude 3 model",
        200000,
        True,
        True,
        True,
    ),
    ("google", "gemini-pro", "Gemini Pro", None, 32768, True, False, True),
    ("google", "gemini-pro-vision", "Gemini Pro Vision", None, 16384, True, True, False),
    ("deepseek", "deepseek-chat", "DeepSeek Chat", None, 64000, True, False, True),
    ("deepseek", "deepseek-reasoner", "DeepSeek Reasoner", None, 64000, True, False, False),
    ("ollama", "llama3", "Llama 3", None, 8192, True, False, False),
    ("ollama", "mistral", "Mistral", None, 32768, True, False, False),
]

SEED_COLUMNS = (
    "provider",
    "model_id",
    "display_name",
    "description",
    "context_window",
    "supports_streaming",
    "supports_images",
    "supports_functions",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # ==========================================================================
    # ai_models table
    # ==========================================================================
    ai_models = op.create_table(
        "ai_models",
        sa.Column(
            "id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("provider", sa.Text(), nullable=False),
        sa.Column("model_id", sa.Text(), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("context_window", sa.Integer(), nullable=False),
        sa.Column("supports_streaming", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("supports_images", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("supports_functions", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(f"provider IN {PROVIDERS}", name="ck_ai_models_provider"),
        sa.CheckConstraint("context_window > 0", name="ck_ai_models_context_window_positive"),
        sa.UniqueConstraint("provider", "model_id", name="uix_ai_models_provider_model"),
    )
    op.create_index("ix_ai_models_is_active", "ai_models", ["is_active"])

    # ==========================================================================
    # user_features table
    # ==========================================================================
    op.create_table(
        "user_features",
        sa.Column(
            "id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("feature", sa.Text(), nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default="false", nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint("feature IN ('web_search')", name="ck_user_features_feature"),
        sa.UniqueConstraint("user_id", "feature", name="uix_user_features_user_feature"),
    )

    # ==========================================================================
    # user_models table
    # ==========================================================================
    op.create_table(
        "user_models",
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("model_id", sa.UUID(), nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default="true", nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("user_id", "model_id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["model_id"], ["ai_models.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_user_models_model_id", "user_models", ["model_id"])

    # ==========================================================================
    # Seed the catalogue
    # ==========================================================================
    op.bulk_insert(ai_models, [dict(zip(SEED_COLUMNS, row)) for row in SEED_MODELS])


def downgrade() -> None:
    op.drop_index("ix_user_models_model_id", table_name="user_models")
    op.drop_table("user_models")
    op.drop_table("user_features")
    op.drop_index("ix_ai_models_is_active", table_name="ai_models")
    op.drop_table("ai_models")
