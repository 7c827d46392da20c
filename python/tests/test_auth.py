"""Integration tests for the authentication boundary.

Tests cover:
- Missing, malformed, invalid and expired bearer tokens are rejected
- First authenticated request creates the user row (idempotent)
- Email claim is recorded and kept current
- Anonymous mode for header-less requests
- GET /v1/me and the public /health path
"""

from fastapi.testclient import TestClient
from sqlalchemy import func, select

from parley.app import add_request_id_middleware, create_app
from parley.auth.middleware import ANONYMOUS_USER_ID
from parley.config import Settings
from parley.db.models import User
from parley.services import users as users_service
from tests.helpers import auth_headers, create_test_user_id, mint_expired_token
from tests.support.test_verifier import MockJwtVerifier


def _user_row(db_session, user_id):
    db_session.expire_all()
    return db_session.execute(select(User).where(User.id == user_id)).scalar_one_or_none()


class TestAuthBoundary:
    def test_no_authorization_header(self, client):
        response = client.get("/v1/me")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"
        assert response.json()["error"]["message"] == "Authentication required"

    def test_wrong_authorization_format(self, client):
        response = client.get("/v1/me", headers={"Authorization": "Basic dXNlcjpwYXNz"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"

    def test_empty_bearer_token(self, client):
        response = client.get("/v1/me", headers={"Authorization": "Bearer "})
        assert response.status_code == 401

    def test_bearer_prefix_case_insensitive(self, client):
        user_id = create_test_user_id()
        token = auth_headers(user_id)["Authorization"].split(" ", 1)[1]

        response = client.get("/v1/me", headers={"Authorization": f"bearer {token}"})

        assert response.status_code == 200

    def test_invalid_token(self, client):
        response = client.get("/v1/me", headers={"Authorization": "Bearer not.a.jwt"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"

    def test_expired_token(self, client):
        token = mint_expired_token(create_test_user_id())

        response = client.get("/v1/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_wrong_audience(self, client):
        response = client.get(
            "/v1/me", headers=auth_headers(create_test_user_id(), audience="someone-else")
        )
        assert response.status_code == 401

    def test_rejected_request_creates_no_user(self, client, db_session):
        user_id = create_test_user_id()
        client.get("/v1/me", headers=auth_headers(user_id, audience="someone-else"))

        assert _user_row(db_session, user_id) is None


class TestBootstrap:
    def test_first_request_creates_user(self, client, db_session):
        user_id = create_test_user_id()

        response = client.get("/v1/me", headers=auth_headers(user_id, email="a@example.com"))

        assert response.status_code == 200
        row = _user_row(db_session, user_id)
        assert row is not None
        assert row.email == "a@example.com"

    def test_repeated_requests_are_idempotent(self, client, db_session):
        user_id = create_test_user_id()
        headers = auth_headers(user_id)

        for _ in range(3):
            assert client.get("/v1/me", headers=headers).status_code == 200

        count = db_session.execute(
            select(func.count()).select_from(User).where(User.id == user_id)
        ).scalar_one()
        assert count == 1

    def test_email_claim_change_is_recorded(self, client, db_session):
        user_id = create_test_user_id()
        client.get("/v1/me", headers=auth_headers(user_id, email="old@example.com"))
        client.get("/v1/me", headers=auth_headers(user_id, email="new@example.com"))

        assert _user_row(db_session, user_id).email == "new@example.com"

    def test_missing_email_claim_keeps_stored_email(self, client, db_session):
        user_id = create_test_user_id()
        client.get("/v1/me", headers=auth_headers(user_id, email="kept@example.com"))
        client.get("/v1/me", headers=auth_headers(user_id))

        assert _user_row(db_session, user_id).email == "kept@example.com"

    def test_bootstrap_failure_is_500(self, client, monkeypatch):
        def broken_ensure_user(db, user_id, email=None):
            raise RuntimeError("database is down")

        monkeypatch.setattr(users_service, "ensure_user", broken_ensure_user)

        response = client.get("/v1/me", headers=auth_headers(create_test_user_id()))

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "E_INTERNAL"
        assert "database is down" not in response.text


class TestAnonymousMode:
    def _anonymous_client(self, database_url, session_factory, verifier=None) -> TestClient:
        settings = Settings(
            DATABASE_URL=database_url,
            PARLEY_ENV="test",
            PARLEY_ALLOW_ANONYMOUS=True,
        )
        app = create_app(settings=settings, token_verifier=verifier, session_factory=session_factory)
        add_request_id_middleware(app, log_requests=False)
        return TestClient(app)

    def test_headerless_request_is_anonymous(self, database_url, session_factory, db_session):
        with self._anonymous_client(database_url, session_factory) as anon:
            response = anon.get("/v1/me")

        assert response.status_code == 200
        assert response.json()["data"] == {"user_id": ANONYMOUS_USER_ID, "email": None}
        assert _user_row(db_session, ANONYMOUS_USER_ID) is not None

    def test_token_is_still_verified(self, database_url, session_factory):
        user_id = create_test_user_id()
        with self._anonymous_client(database_url, session_factory, MockJwtVerifier()) as anon:
            ok = anon.get("/v1/me", headers=auth_headers(user_id))
            expired = anon.get(
                "/v1/me", headers={"Authorization": f"Bearer {mint_expired_token(user_id)}"}
            )

        assert ok.json()["data"]["user_id"] == user_id
        assert expired.status_code == 401

    def test_token_without_verifier_is_503(self, database_url, session_factory):
        with self._anonymous_client(database_url, session_factory) as anon:
            response = anon.get("/v1/me", headers=auth_headers(create_test_user_id()))

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "E_AUTH_UNAVAILABLE"


class TestGetMe:
    def test_me_response_shape(self, client):
        user_id = create_test_user_id()

        response = client.get("/v1/me", headers=auth_headers(user_id, email="me@example.com"))

        assert response.status_code == 200
        assert response.json() == {"data": {"user_id": user_id, "email": "me@example.com"}}

    def test_non_string_email_claim_ignored(self, client):
        user_id = create_test_user_id()

        response = client.get("/v1/me", headers=auth_headers(user_id, email=["a", "b"]))

        assert response.json()["data"]["email"] is None


class TestHealthEndpointNoAuth:
    def test_health_no_auth_required(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"data": {"status": "ok"}}

    def test_health_ignores_bad_token(self, client):
        response = client.get("/health", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 200
