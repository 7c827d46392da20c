"""Integration tests for per-user feature flags.

Tests cover:
- Every known feature is listed, disabled by default
- PUT creates the row on first use and updates it afterwards
- Unknown feature names are rejected with E_FEATURE_INVALID
- Settings are isolated between users
"""

from sqlalchemy import select

from parley.db.models import Feature, UserFeature
from parley.services import features as features_service
from tests.helpers import auth_headers


class TestListFeatures:
    def test_all_features_disabled_by_default(self, client, headers):
        response = client.get("/v1/features", headers=headers)

        assert response.status_code == 200
        assert response.json()["data"] == [
            {"feature": f.value, "enabled": False} for f in Feature
        ]

    def test_requires_auth(self, client):
        assert client.get("/v1/features").status_code == 401


class TestUpdateFeature:
    def test_enable_then_disable(self, client, headers, db_session, user_id):
        response = client.put("/v1/features/web_search", json={"enabled": True}, headers=headers)

        assert response.status_code == 200
        assert response.json()["data"] == {"feature": "web_search", "enabled": True}
        listed = client.get("/v1/features", headers=headers).json()["data"]
        assert {"feature": "web_search", "enabled": True} in listed

        client.put("/v1/features/web_search", json={"enabled": False}, headers=headers)

        db_session.expire_all()
        rows = db_session.scalars(select(UserFeature).where(UserFeature.user_id == user_id)).all()
        assert [(r.feature, r.enabled) for r in rows] == [("web_search", False)]

    def test_unknown_feature(self, client, headers):
        response = client.put("/v1/features/telepathy", json={"enabled": True}, headers=headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_FEATURE_INVALID"

    def test_settings_are_per_user(self, client, headers, other_user_id):
        client.put("/v1/features/web_search", json={"enabled": True}, headers=headers)

        response = client.get("/v1/features", headers=auth_headers(other_user_id))

        assert {"feature": "web_search", "enabled": False} in response.json()["data"]


class TestFeatureService:
    def test_set_feature_is_idempotent(self, db_session, user_id):
        features_service.set_feature(db_session, user_id, "web_search", True)
        features_service.set_feature(db_session, user_id, "web_search", True)

        rows = db_session.scalars(select(UserFeature).where(UserFeature.user_id == user_id)).all()
        assert len(rows) == 1

    def test_list_reflects_stored_setting(self, db_session, user_id):
        features_service.set_feature(db_session, user_id, "web_search", True)

        assert features_service.list_features(db_session, user_id)[0].enabled is True
