"""Tests for error handling and response envelopes.

Verifies:
- Every error code maps to an HTTP status
- Store failures translate onto the error taxonomy
- Envelope shapes and handler behavior
"""

from uuid import uuid4

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, ProgrammingError

from duet.errors import (
    ERROR_CODE_TO_STATUS,
    ApiError,
    ApiErrorCode,
    ConflictError,
    ForbiddenError,
    InvalidRequestError,
    PermissionDeniedError,
    TransientError,
    UnknownError,
    get_sqlstate,
    translate_db_error,
)
from duet.responses import error_response, success_response, unhandled_exception_handler
from duet.schemas.conversation import ConversationRef


class _DriverError(Exception):
    """Stand-in for a psycopg error carrying a SQLSTATE."""

    def __init__(self, sqlstate: str | None = None):
        super().__init__(f"driver error {sqlstate}")
        self.sqlstate = sqlstate


def _wrap(cls, sqlstate: str | None = None, **kwargs):
    return cls("SELECT 1", {}, _DriverError(sqlstate), **kwargs)


class TestErrorCodes:
    def test_every_code_has_a_status(self):
        for code in ApiErrorCode:
            assert code in ERROR_CODE_TO_STATUS

    def test_api_error_status_derived_from_code(self):
        assert ApiError(ApiErrorCode.E_CONVERSATION_NOT_FOUND, "x").status_code == 404
        assert PermissionDeniedError().status_code == 403
        assert TransientError().status_code == 503

    def test_permission_denied_is_forbidden(self):
        """Permission denial is catchable as a generic forbidden error."""
        assert isinstance(PermissionDeniedError(), ForbiddenError)


class TestTranslateDbError:
    def test_insufficient_privilege_is_permission_denied(self):
        assert isinstance(translate_db_error(_wrap(ProgrammingError, "42501")), PermissionDeniedError)

    def test_unique_violation_is_conflict(self):
        assert isinstance(translate_db_error(_wrap(IntegrityError, "23505")), ConflictError)

    def test_statement_timeout_is_transient(self):
        assert isinstance(translate_db_error(_wrap(OperationalError, "57014")), TransientError)

    def test_operational_error_is_transient(self):
        assert isinstance(translate_db_error(_wrap(OperationalError)), TransientError)

    def test_invalidated_connection_is_transient(self):
        error = _wrap(DBAPIError, connection_invalidated=True)
        assert isinstance(translate_db_error(error), TransientError)

    def test_other_integrity_error_is_invalid_request(self):
        assert isinstance(translate_db_error(_wrap(IntegrityError, "23503")), InvalidRequestError)

    def test_anything_else_is_unknown(self):
        assert isinstance(translate_db_error(_wrap(ProgrammingError, "42P01")), UnknownError)

    def test_get_sqlstate_reads_pgcode(self):
        orig = Exception("boom")
        orig.pgcode = "42501"
        assert get_sqlstate(ProgrammingError("SELECT 1", {}, orig)) == "42501"


class TestEnvelopes:
    def test_error_response_shape(self):
        response = error_response(ApiErrorCode.E_NOT_FOUND, "Resource not found")
        assert response == {"error": {"code": "E_NOT_FOUND", "message": "Resource not found"}}

    def test_success_response_serializes_models(self):
        conversation_id = uuid4()
        response = success_response([ConversationRef(id=conversation_id)])
        assert response == {"data": [{"id": str(conversation_id)}]}

    def test_unhandled_exception_returns_internal(self):
        """Unexpected exceptions never leak details to the client."""
        app = FastAPI()
        app.add_exception_handler(Exception, unhandled_exception_handler)

        @app.get("/boom")
        def boom():
            raise RuntimeError("secret detail")

        client = TestClient(app, raise_server_exceptions=False)
        response = client.get("/boom")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "E_INTERNAL"
        assert "secret" not in response.text
