"""Tests for user API key storage, defaults and routes.

Tests cover:
- API safety: responses never include encrypted_key, key_nonce, master_key_version
- Validation: invalid provider, key too short, whitespace in key
- Defaults: first key auto-default, at most one default per (user, provider),
  explicit switching, deletion leaves no default
- Ownership: keys of other users are invisible and untouchable
- Credential resolution: no fallback to other users or non-default keys
"""

from uuid import uuid4

import pytest

from parley.errors import ApiError, ApiErrorCode, InvalidRequestError, NotFoundError
from parley.services import user_keys as user_keys_service
from parley.services.api_key_resolver import resolve_default_credential
from parley.services.crypto import KeyCipher
from parley.services.llm import Provider
from tests.factories import (
    ANTHROPIC_TEST_KEY,
    OPENAI_TEST_KEY,
    create_test_key,
    fetch_keys,
)
from tests.helpers import auth_headers

SECRET_FIELDS = {"encrypted_key", "key_nonce", "master_key_version", "api_key"}

SECOND_OPENAI_KEY = "sk-test-openai-second-key-9876"


def defaults_for(db_session, user_id, provider="openai"):
    return [k for k in fetch_keys(db_session, user_id, provider) if k.is_default]


# =============================================================================
# Service: storage and defaults
# =============================================================================


class TestCreateUserKey:
    def test_key_is_encrypted_at_rest(self, db_session, cipher, user_id):
        create_test_key(db_session, cipher, user_id)

        (row,) = fetch_keys(db_session, user_id)
        assert OPENAI_TEST_KEY.encode() not in row.encrypted_key
        assert len(row.key_nonce) == 24
        assert row.key_fingerprint == OPENAI_TEST_KEY[-4:]
        assert cipher.decrypt(row.encrypted_key, row.key_nonce, row.master_key_version) == (
            OPENAI_TEST_KEY
        )

    def test_first_key_becomes_default(self, db_session, cipher, user_id):
        create_test_key(db_session, cipher, user_id)

        assert len(defaults_for(db_session, user_id)) == 1

    def test_second_key_is_not_default_unless_asked(self, db_session, cipher, user_id):
        first = create_test_key(db_session, cipher, user_id)
        create_test_key(db_session, cipher, user_id, api_key=SECOND_OPENAI_KEY)

        defaults = defaults_for(db_session, user_id)
        assert [k.id for k in defaults] == [first]

    def test_explicit_default_replaces_previous(self, db_session, cipher, user_id):
        create_test_key(db_session, cipher, user_id)
        second = create_test_key(
            db_session, cipher, user_id, api_key=SECOND_OPENAI_KEY, is_default=True
        )

        defaults = defaults_for(db_session, user_id)
        assert [k.id for k in defaults] == [second]

    def test_first_key_with_explicit_false_is_not_default(self, db_session, cipher, user_id):
        create_test_key(db_session, cipher, user_id, is_default=False)

        assert defaults_for(db_session, user_id) == []

    def test_defaults_are_per_provider(self, db_session, cipher, user_id):
        create_test_key(db_session, cipher, user_id)
        create_test_key(
            db_session, cipher, user_id, provider="anthropic", api_key=ANTHROPIC_TEST_KEY
        )

        assert len(defaults_for(db_session, user_id, "openai")) == 1
        assert len(defaults_for(db_session, user_id, "anthropic")) == 1

    def test_invalid_provider(self, db_session, cipher, user_id):
        with pytest.raises(InvalidRequestError) as exc_info:
            create_test_key(db_session, cipher, user_id, provider="bedrock")
        assert exc_info.value.code == ApiErrorCode.E_PROVIDER_INVALID

    def test_key_too_short(self, db_session, cipher, user_id):
        with pytest.raises(InvalidRequestError) as exc_info:
            create_test_key(db_session, cipher, user_id, api_key="sk-short")
        assert exc_info.value.code == ApiErrorCode.E_KEY_INVALID_FORMAT

    def test_ollama_accepts_short_placeholder(self, db_session, cipher, user_id):
        create_test_key(db_session, cipher, user_id, provider="ollama", api_key="local")

        assert len(fetch_keys(db_session, user_id, "ollama")) == 1

    def test_embedded_whitespace_rejected(self, db_session, cipher, user_id):
        with pytest.raises(InvalidRequestError) as exc_info:
            create_test_key(db_session, cipher, user_id, api_key="sk-test key-0123456789abcdef")
        assert exc_info.value.code == ApiErrorCode.E_KEY_INVALID_FORMAT

    def test_result_carries_no_secrets(self, db_session, cipher, user_id):
        out = user_keys_service.create_user_key(
            db_session, cipher, user_id, "openai", OPENAI_TEST_KEY
        )
        assert SECRET_FIELDS.isdisjoint(out.model_dump())


class TestSetDefault:
    def test_switch_default(self, db_session, cipher, user_id):
        first = create_test_key(db_session, cipher, user_id)
        second = create_test_key(db_session, cipher, user_id, api_key=SECOND_OPENAI_KEY)

        out = user_keys_service.set_default(db_session, second, user_id)

        assert out.is_default is True
        defaults = defaults_for(db_session, user_id)
        assert [k.id for k in defaults] == [second]
        assert first not in {k.id for k in defaults}

    def test_set_default_is_idempotent(self, db_session, cipher, user_id):
        key_id = create_test_key(db_session, cipher, user_id)

        user_keys_service.set_default(db_session, key_id, user_id)
        user_keys_service.set_default(db_session, key_id, user_id)

        assert [k.id for k in defaults_for(db_session, user_id)] == [key_id]

    def test_set_default_leaves_other_providers_alone(self, db_session, cipher, user_id):
        anthropic = create_test_key(
            db_session, cipher, user_id, provider="anthropic", api_key=ANTHROPIC_TEST_KEY
        )
        create_test_key(db_session, cipher, user_id)
        second = create_test_key(db_session, cipher, user_id, api_key=SECOND_OPENAI_KEY)

        user_keys_service.set_default(db_session, second, user_id)

        assert [k.id for k in defaults_for(db_session, user_id, "anthropic")] == [anthropic]

    def test_unknown_key(self, db_session, user_id):
        with pytest.raises(NotFoundError) as exc_info:
            user_keys_service.set_default(db_session, uuid4(), user_id)
        assert exc_info.value.code == ApiErrorCode.E_KEY_NOT_FOUND

    def test_other_users_key(self, db_session, cipher, user_id, other_user_id):
        foreign = create_test_key(db_session, cipher, other_user_id)

        with pytest.raises(NotFoundError):
            user_keys_service.set_default(db_session, foreign, user_id)


class TestDeleteUserKey:
    def test_delete_default_leaves_no_default(self, db_session, cipher, user_id):
        first = create_test_key(db_session, cipher, user_id)
        create_test_key(db_session, cipher, user_id, api_key=SECOND_OPENAI_KEY)

        user_keys_service.delete_user_key(db_session, user_id, first)

        remaining = fetch_keys(db_session, user_id)
        assert len(remaining) == 1
        assert remaining[0].is_default is False
        assert user_keys_service.get_default(db_session, user_id, Provider.OPENAI) is None

    def test_delete_other_users_key(self, db_session, cipher, user_id, other_user_id):
        foreign = create_test_key(db_session, cipher, other_user_id)

        with pytest.raises(NotFoundError) as exc_info:
            user_keys_service.delete_user_key(db_session, user_id, foreign)
        assert exc_info.value.code == ApiErrorCode.E_KEY_NOT_FOUND
        assert len(fetch_keys(db_session, other_user_id)) == 1


# =============================================================================
# Credential resolution
# =============================================================================


class TestResolveDefaultCredential:
    def test_resolves_own_default(self, db_session, cipher, user_id):
        key_id = create_test_key(db_session, cipher, user_id)

        credential = resolve_default_credential(db_session, cipher, user_id, Provider.OPENAI)

        assert credential.key_id == key_id
        assert credential.api_key == OPENAI_TEST_KEY
        assert OPENAI_TEST_KEY not in repr(credential)

    def test_no_fallback_to_other_users(self, db_session, cipher, user_id, other_user_id):
        create_test_key(db_session, cipher, other_user_id)

        with pytest.raises(ApiError) as exc_info:
            resolve_default_credential(db_session, cipher, user_id, Provider.OPENAI)
        assert exc_info.value.code == ApiErrorCode.E_NO_DEFAULT_KEY

    def test_no_fallback_to_non_default_key(self, db_session, cipher, user_id):
        create_test_key(db_session, cipher, user_id, is_default=False)

        with pytest.raises(ApiError) as exc_info:
            resolve_default_credential(db_session, cipher, user_id, Provider.OPENAI)
        assert exc_info.value.code == ApiErrorCode.E_NO_DEFAULT_KEY

    def test_no_fallback_across_providers(self, db_session, cipher, user_id):
        create_test_key(db_session, cipher, user_id)

        with pytest.raises(ApiError):
            resolve_default_credential(db_session, cipher, user_id, Provider.ANTHROPIC)

    def test_undecryptable_key(self, db_session, cipher, user_id):
        create_test_key(db_session, cipher, user_id)
        wrong_cipher = KeyCipher(b"another_master_key_32_bytes_long")

        with pytest.raises(ApiError) as exc_info:
            resolve_default_credential(db_session, wrong_cipher, user_id, Provider.OPENAI)
        assert exc_info.value.code == ApiErrorCode.E_NO_DEFAULT_KEY


# =============================================================================
# Routes
# =============================================================================


class TestKeyRoutes:
    def test_create_and_list(self, client, headers):
        response = client.post(
            "/v1/keys", json={"provider": "openai", "api_key": OPENAI_TEST_KEY}, headers=headers
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["provider"] == "openai"
        assert data["key_fingerprint"] == OPENAI_TEST_KEY[-4:]
        assert data["is_default"] is True
        assert SECRET_FIELDS.isdisjoint(data)

        listed = client.get("/v1/keys", headers=headers).json()["data"]
        assert [k["id"] for k in listed] == [data["id"]]
        assert SECRET_FIELDS.isdisjoint(listed[0])

    def test_response_never_echoes_plaintext(self, client, headers):
        response = client.post(
            "/v1/keys", json={"provider": "openai", "api_key": OPENAI_TEST_KEY}, headers=headers
        )
        assert OPENAI_TEST_KEY not in response.text

    def test_invalid_provider(self, client, headers):
        response = client.post(
            "/v1/keys", json={"provider": "bedrock", "api_key": OPENAI_TEST_KEY}, headers=headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_PROVIDER_INVALID"

    def test_short_key(self, client, headers):
        response = client.post(
            "/v1/keys", json={"provider": "openai", "api_key": "sk-short"}, headers=headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_KEY_INVALID_FORMAT"

    def test_whitespace_key_fails_validation(self, client, headers):
        response = client.post(
            "/v1/keys", json={"provider": "openai", "api_key": "sk-a b"}, headers=headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"

    def test_set_default_route(self, client, headers):
        first = client.post(
            "/v1/keys", json={"provider": "openai", "api_key": OPENAI_TEST_KEY}, headers=headers
        ).json()["data"]
        second = client.post(
            "/v1/keys", json={"provider": "openai", "api_key": SECOND_OPENAI_KEY}, headers=headers
        ).json()["data"]
        assert second["is_default"] is False

        response = client.post(f"/v1/keys/{second['id']}/default", headers=headers)

        assert response.status_code == 200
        assert response.json()["data"]["is_default"] is True
        by_id = {k["id"]: k for k in client.get("/v1/keys", headers=headers).json()["data"]}
        assert by_id[first["id"]]["is_default"] is False
        assert by_id[second["id"]]["is_default"] is True

    def test_delete_route(self, client, headers):
        key = client.post(
            "/v1/keys", json={"provider": "openai", "api_key": OPENAI_TEST_KEY}, headers=headers
        ).json()["data"]

        response = client.delete(f"/v1/keys/{key['id']}", headers=headers)

        assert response.status_code == 204
        assert client.get("/v1/keys", headers=headers).json()["data"] == []

    def test_other_users_keys_are_invisible(self, client, headers, db_session, cipher, other_user_id):
        foreign = create_test_key(db_session, cipher, other_user_id)

        assert client.get("/v1/keys", headers=headers).json()["data"] == []
        assert client.delete(f"/v1/keys/{foreign}", headers=headers).status_code == 404
        response = client.post(f"/v1/keys/{foreign}/default", headers=headers)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_KEY_NOT_FOUND"

    def test_malformed_key_id(self, client, headers):
        response = client.delete("/v1/keys/not-a-uuid", headers=headers)
        assert response.status_code == 400

    @pytest.mark.parametrize(
        ("method", "path"),
        [
            ("get", "/v1/keys"),
            ("post", "/v1/keys"),
            ("post", f"/v1/keys/{uuid4()}/default"),
            ("delete", f"/v1/keys/{uuid4()}"),
        ],
    )
    def test_requires_auth(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"

    def test_new_user_is_bootstrapped(self, client):
        response = client.get("/v1/keys", headers=auth_headers("user_fresh_subject"))
        assert response.status_code == 200
        assert response.json()["data"] == []
