"""Tests for X-Request-ID middleware.

Tests cover:
- Request ID generation when missing
- Request ID preservation when valid, UUID normalization
- Request ID replacement when invalid
- Request ID presence on auth failures and in error bodies
"""

from uuid import UUID, uuid4

import pytest

from duet.middleware.request_id import REQUEST_ID_HEADER, resolve_request_id
from tests.helpers import auth_headers


class TestResolveRequestId:
    def test_missing_generates_uuid(self):
        UUID(resolve_request_id(None))

    def test_valid_kept(self):
        assert resolve_request_id("trace.abc-123_x") == "trace.abc-123_x"

    def test_uuid_normalized(self):
        value = uuid4()
        assert resolve_request_id(str(value).upper()) == str(value)

    @pytest.mark.parametrize("incoming", ["has spaces", "semi;colon", "x" * 129, ""])
    def test_invalid_replaced(self, incoming):
        resolved = resolve_request_id(incoming)
        assert resolved != incoming
        UUID(resolved)


class TestRequestIdMiddleware:
    def test_generated_when_missing(self, auth_client):
        response = auth_client.get("/health")
        UUID(response.headers[REQUEST_ID_HEADER])

    def test_echoed(self, auth_client):
        response = auth_client.get("/health", headers={REQUEST_ID_HEADER: "abc-123"})
        assert response.headers[REQUEST_ID_HEADER] == "abc-123"

    def test_present_on_auth_failure(self, auth_client):
        response = auth_client.get("/conversations", headers={REQUEST_ID_HEADER: "auth-fail-1"})

        assert response.status_code == 401
        assert response.headers[REQUEST_ID_HEADER] == "auth-fail-1"
        assert response.json()["error"]["request_id"] == "auth-fail-1"

    def test_present_in_api_error_body(self, auth_client):
        response = auth_client.get(
            f"/conversations/{uuid4()}/messages",
            headers=auth_headers(uuid4(), request_id="missing-convo"),
        )

        assert response.status_code == 404
        assert response.json()["error"]["request_id"] == "missing-convo"
