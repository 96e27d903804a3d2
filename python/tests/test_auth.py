"""Tests for bearer-token authentication.

Tests cover:
- Missing, malformed and rejected tokens return 401 E_UNAUTHENTICATED
- Public paths skip authentication
- Claims handling (sub required, must be a UUID)
- Loading a verifier from a TOKEN_VERIFIER import path
"""

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from duet.app import create_app
from duet.auth.verifier import load_token_verifier, user_id_from_claims
from duet.errors import ApiError, ApiErrorCode
from tests.helpers import auth_headers
from tests.support.verifier import FakeTokenVerifier


class TestAuthMiddleware:
    def test_missing_header(self, auth_client):
        response = auth_client.get("/conversations")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"

    def test_non_bearer_scheme(self, auth_client):
        response = auth_client.get("/conversations", headers={"Authorization": "Basic abc"})

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid authorization header format"

    def test_empty_token(self, auth_client):
        response = auth_client.get("/conversations", headers={"Authorization": "Bearer   "})
        assert response.status_code == 401

    def test_rejected_token(self, auth_client):
        response = auth_client.get(
            "/conversations", headers={"Authorization": "Bearer not-a-user"}
        )

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid token"

    def test_valid_token(self, auth_client):
        response = auth_client.get("/conversations", headers=auth_headers(uuid4()))
        assert response.status_code == 200

    def test_revoked_token(self, session_factory, feed):
        user_id = str(uuid4())
        app = create_app(
            token_verifier=FakeTokenVerifier(revoked={user_id}),
            session_factory=session_factory,
            feed=feed,
            log_requests=False,
        )
        with TestClient(app) as client:
            response = client.get("/conversations", headers=auth_headers(user_id))

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Token revoked"

    def test_health_is_public(self, auth_client):
        assert auth_client.get("/health").status_code == 200


class TestClaims:
    def test_sub_parsed(self):
        user_id = uuid4()
        assert user_id_from_claims({"sub": str(user_id)}) == user_id

    def test_missing_sub(self):
        with pytest.raises(ApiError) as exc:
            user_id_from_claims({})
        assert exc.value.code == ApiErrorCode.E_UNAUTHENTICATED

    def test_sub_not_uuid(self):
        with pytest.raises(ApiError) as exc:
            user_id_from_claims({"sub": "user-42"})
        assert "not a valid UUID" in exc.value.message


class TestLoadTokenVerifier:
    def test_loads_factory(self):
        verifier = load_token_verifier("tests.support.verifier:make_verifier")
        assert isinstance(verifier, FakeTokenVerifier)

    @pytest.mark.parametrize("path", ["tests.support.verifier", ":make_verifier", ""])
    def test_malformed_path(self, path):
        with pytest.raises(ValueError):
            load_token_verifier(path)

    def test_missing_factory(self):
        with pytest.raises(AttributeError):
            load_token_verifier("tests.support.verifier:nope")
