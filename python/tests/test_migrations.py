"""Tests for database migrations.

The migrations target PostgreSQL (partial unique index, now(), octet_length),
so these tests run only when MIGRATIONS_DATABASE_URL points at a scratch
Postgres database. They drop and recreate the schema there.
"""

import os
from pathlib import Path
from uuid import uuid4

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError

from parley.services.llm.catalog import MODEL_CATALOG

MIGRATIONS_DIR = Path(__file__).parent.parent.parent / "migrations"
MIGRATIONS_DATABASE_URL = os.environ.get("MIGRATIONS_DATABASE_URL", "")

pytestmark = pytest.mark.skipif(
    not MIGRATIONS_DATABASE_URL.startswith("postgresql"),
    reason="MIGRATIONS_DATABASE_URL must point at a scratch Postgres database",
)


def alembic_config(monkeypatch) -> Config:
    monkeypatch.setenv("DATABASE_URL", MIGRATIONS_DATABASE_URL)
    config = Config(str(MIGRATIONS_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(MIGRATIONS_DIR / "alembic"))
    return config


@pytest.fixture
def migrated_engine(monkeypatch):
    config = alembic_config(monkeypatch)
    command.downgrade(config, "base")
    command.upgrade(config, "head")

    engine = create_engine(MIGRATIONS_DATABASE_URL)
    yield engine

    engine.dispose()
    command.downgrade(config, "base")


def insert_user(conn) -> str:
    user_id = f"user_{uuid4().hex}"
    conn.execute(text("INSERT INTO users (id) VALUES (:id)"), {"id": user_id})
    return user_id


def insert_chat(conn, user_id: str) -> str:
    chat_id = uuid4()
    conn.execute(
        text(
            "INSERT INTO chats (id, user_id, title, model_provider, model_id) "
            "VALUES (:id, :user_id, 'New chat', 'openai', 'gpt-4')"
        ),
        {"id": chat_id, "user_id": user_id},
    )
    return chat_id


def insert_key(conn, user_id: str, *, is_default: bool, nonce: bytes = b"\x00" * 24) -> None:
    conn.execute(
        text(
            "INSERT INTO user_api_keys "
            "(id, user_id, provider, encrypted_key, key_nonce, key_fingerprint, is_default) "
            "VALUES (:id, :user_id, 'openai', :key, :nonce, 'abcd', :is_default)"
        ),
        {"id": uuid4(), "user_id": user_id, "key": b"cipher", "nonce": nonce, "is_default": is_default},
    )


class TestMigrationUpgradeDowngrade:
    def test_upgrade_creates_tables(self, migrated_engine):
        tables = set(inspect(migrated_engine).get_table_names())
        assert {
            "users",
            "chats",
            "messages",
            "user_api_keys",
            "ai_models",
            "user_features",
            "user_models",
        } <= tables

    def test_downgrade_removes_tables(self, monkeypatch, migrated_engine):
        command.downgrade(alembic_config(monkeypatch), "base")

        tables = set(inspect(migrated_engine).get_table_names())
        assert not {"users", "chats", "messages", "user_api_keys", "ai_models"} & tables

        command.upgrade(alembic_config(monkeypatch), "head")


class TestSchemaConstraints:
    def test_duplicate_sequence_number_rejected(self, migrated_engine):
        with pytest.raises(IntegrityError, match="uix_messages_chat_sequence"):
            with migrated_engine.begin() as conn:
                chat_id = insert_chat(conn, insert_user(conn))
                for _ in range(2):
                    conn.execute(
                        text(
                            "INSERT INTO messages (id, chat_id, role, content, sequence_number) "
                            "VALUES (:id, :chat_id, 'user', 'hi', 1)"
                        ),
                        {"id": uuid4(), "chat_id": chat_id},
                    )

    def test_second_default_key_rejected(self, migrated_engine):
        with pytest.raises(IntegrityError, match="uix_user_api_keys_one_default"):
            with migrated_engine.begin() as conn:
                user_id = insert_user(conn)
                insert_key(conn, user_id, is_default=True)
                insert_key(conn, user_id, is_default=True)

    def test_several_non_default_keys_allowed(self, migrated_engine):
        with migrated_engine.begin() as conn:
            user_id = insert_user(conn)
            insert_key(conn, user_id, is_default=True)
            insert_key(conn, user_id, is_default=False)
            insert_key(conn, user_id, is_default=False)

    def test_short_nonce_rejected(self, migrated_engine):
        with pytest.raises(IntegrityError, match="ck_user_api_keys_nonce_len"):
            with migrated_engine.begin() as conn:
                insert_key(conn, insert_user(conn), is_default=False, nonce=b"\x00" * 12)

    def test_unknown_provider_rejected(self, migrated_engine):
        with pytest.raises(IntegrityError, match="ck_chats_provider"):
            with migrated_engine.begin() as conn:
                user_id = insert_user(conn)
                conn.execute(
                    text(
                        "INSERT INTO chats (id, user_id, title, model_provider, model_id) "
                        "VALUES (:id, :user_id, 'x', 'bedrock', 'titan')"
                    ),
                    {"id": uuid4(), "user_id": user_id},
                )

    def test_invalid_role_rejected(self, migrated_engine):
        with pytest.raises(IntegrityError, match="ck_messages_role"):
            with migrated_engine.begin() as conn:
                chat_id = insert_chat(conn, insert_user(conn))
                conn.execute(
                    text(
                        "INSERT INTO messages (id, chat_id, role, content, sequence_number) "
                        "VALUES (:id, :chat_id, 'tool', 'hi', 1)"
                    ),
                    {"id": uuid4(), "chat_id": chat_id},
                )

    def test_deleting_user_cascades(self, migrated_engine):
        with migrated_engine.begin() as conn:
            user_id = insert_user(conn)
            insert_chat(conn, user_id)
            insert_key(conn, user_id, is_default=True)
            conn.execute(text("DELETE FROM users WHERE id = :id"), {"id": user_id})

            chats = conn.execute(
                text("SELECT count(*) FROM chats WHERE user_id = :id"), {"id": user_id}
            ).scalar_one()
            keys = conn.execute(
                text("SELECT count(*) FROM user_api_keys WHERE user_id = :id"), {"id": user_id}
            ).scalar_one()

        assert (chats, keys) == (0, 0)


class TestModelCatalogueMigration:
    def test_catalogue_is_seeded(self, migrated_engine):
        with migrated_engine.connect() as conn:
            rows = conn.execute(
                text("SELECT provider, model_id, is_active FROM ai_models")
            ).all()

        assert len(rows) == sum(len(entries) for entries in MODEL_CATALOG.values())
        assert all(is_active for _, _, is_active in rows)
        assert ("openai", "gpt-4o", True) in rows

    def test_duplicate_catalogue_entry_rejected(self, migrated_engine):
        with pytest.raises(IntegrityError, match="uix_ai_models_provider_model"):
            with migrated_engine.begin() as conn:
                conn.execute(
                    text(
                        "INSERT INTO ai_models (provider, model_id, display_name, context_window) "
                        "VALUES ('openai', 'gpt-4o', 'dup', 1)"
                    )
                )

    def test_one_feature_row_per_user(self, migrated_engine):
        with pytest.raises(IntegrityError, match="uix_user_features_user_feature"):
            with migrated_engine.begin() as conn:
                user_id = insert_user(conn)
                for _ in range(2):
                    conn.execute(
                        text(
                            "INSERT INTO user_features (user_id, feature, enabled) "
                            "VALUES (:user_id, 'web_search', true)"
                        ),
                        {"user_id": user_id},
                    )

    def test_deleting_user_removes_settings(self, migrated_engine):
        with migrated_engine.begin() as conn:
            user_id = insert_user(conn)
            conn.execute(
                text(
                    "INSERT INTO user_models (user_id, model_id, enabled) "
                    "SELECT :user_id, id, false FROM ai_models WHERE model_id = 'gpt-4'"
                ),
                {"user_id": user_id},
            )
            conn.execute(
                text("INSERT INTO user_features (user_id, feature) VALUES (:id, 'web_search')"),
                {"id": user_id},
            )
            conn.execute(text("DELETE FROM users WHERE id = :id"), {"id": user_id})

            remaining = conn.execute(
                text(
                    "SELECT (SELECT count(*) FROM user_models WHERE user_id = :id)"
                    " + (SELECT count(*) FROM user_features WHERE user_id = :id)"
                ),
                {"id": user_id},
            ).scalar_one()

        assert remaining == 0
