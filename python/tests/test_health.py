"""Tests for the readiness endpoint."""

import pytest
from sqlalchemy.exc import OperationalError

from duet.errors import TransientError
from duet.services.health import check_store


class BrokenSession:
    def execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    def close(self):
        pass


class TestHealth:
    def test_ok(self, auth_client):
        response = auth_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"data": {"status": "ok"}}

    def test_store_unavailable(self, auth_client, monkeypatch):
        monkeypatch.setattr("duet.db.session._SessionLocal", BrokenSession)

        response = auth_client.get("/health")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "E_TRANSIENT"


class TestCheckStore:
    def test_live_store(self, db_session):
        check_store(db_session)

    def test_failure_is_transient(self):
        with pytest.raises(TransientError):
            check_store(BrokenSession())
