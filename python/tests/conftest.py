"""Pytest configuration and fixtures for Parley tests.

Test isolation strategy:
- Every test that touches the database gets its own file-backed SQLite
  database under tmp_path, created from Base.metadata
- File-backed (not :memory:) so several sessions and threads share it,
  which the sequence-conflict tests rely on
- Route tests use an app built by create_app() around that database, with
  MockJwtVerifier standing in for the JWKS verifier
- Vendor HTTP is mocked with respx; no test reaches the network
"""

import base64
import sys
from collections.abc import Generator
from pathlib import Path

# Add repo root to sys.path for importing top-level packages (e.g., apps)
_repo_root = Path(__file__).parent.parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from parley.app import add_request_id_middleware, create_app
from parley.config import Settings, clear_settings_cache
from parley.db.engine import create_db_engine
from parley.db.models import Base
from parley.db.session import create_session_factory
from parley.services.crypto import KeyCipher
from parley.services.models import seed_catalog
from parley.services.users import ensure_user
from tests.helpers import AMBIENT_SETTINGS_ENV, auth_headers, create_test_user_id
from tests.support.test_verifier import MockJwtVerifier

TEST_MASTER_KEY = b"test_master_key_for_encryption!!"
TEST_MASTER_KEY_B64 = base64.b64encode(TEST_MASTER_KEY).decode("ascii")


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'parley.db'}"


@pytest.fixture
def engine(database_url: str) -> Generator[Engine, None, None]:
    """A fresh database with the full schema and the seeded model catalogue."""
    engine = create_db_engine(database_url)
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_catalog(session)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session


@pytest.fixture
def settings(database_url: str) -> Settings:
    """Explicit test settings pointing at the per-test database."""
    return Settings(
        _env_file=None,
        DATABASE_URL=database_url,
        PARLEY_ENV="test",
        AUTH_JWKS_URL="https://auth.test/.well-known/jwks.json",
        AUTH_ISSUER="test-issuer",
        AUTH_AUDIENCES="test-audience",
        LLM_TIMEOUT_S=5,
        PARLEY_KEY_ENCRYPTION_KEY=TEST_MASTER_KEY_B64,
    )


@pytest.fixture
def cipher() -> KeyCipher:
    """Same master key as the app under test, so service-created keys decrypt in routes."""
    return KeyCipher(TEST_MASTER_KEY)


@pytest.fixture
def user_id(db_session: Session) -> str:
    """An existing user row."""
    uid = create_test_user_id()
    ensure_user(db_session, uid, email=f"{uid}@example.com")
    return uid


@pytest.fixture
def other_user_id(db_session: Session) -> str:
    uid = create_test_user_id()
    ensure_user(db_session, uid)
    return uid


@pytest.fixture
def app(settings: Settings, session_factory: sessionmaker[Session]) -> FastAPI:
    """The full application with the test verifier and the test database."""
    app = create_app(
        settings=settings,
        token_verifier=MockJwtVerifier(),
        session_factory=session_factory,
    )
    add_request_id_middleware(app)
    return app


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Test client with the lifespan running (shared httpx client, orchestrator)."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def headers(user_id: str) -> dict[str, str]:
    """Authorization headers for the user_id fixture."""
    return auth_headers(user_id)


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True)
def clean_settings_env(monkeypatch):
    """Keep the developer's shell environment out of test settings."""
    for name in AMBIENT_SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
