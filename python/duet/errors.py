"""Error definitions for the messaging subsystem.

All errors are defined here with their corresponding HTTP status codes.
Store-layer failures are normalized through translate_db_error() so callers
only ever see the taxonomy below:

    NotFound          conversation or message absent
    PermissionDenied  a policy rejected the write
    Conflict          uniqueness violated
    Transient         network / timeout, retryable by the caller
    Unknown           anything else
"""

from enum import Enum

from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import (
    TimeoutError as PoolTimeoutError,
)


class ApiErrorCode(str, Enum):
    """Standardized error codes.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_PERMISSION_DENIED = "E_PERMISSION_DENIED"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_CONVERSATION_NOT_FOUND = "E_CONVERSATION_NOT_FOUND"
    E_MESSAGE_NOT_FOUND = "E_MESSAGE_NOT_FOUND"

    # Conflict errors (409)
    E_CONFLICT = "E_CONFLICT"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_MESSAGE_TYPE = "E_INVALID_MESSAGE_TYPE"
    E_MESSAGE_EMPTY = "E_MESSAGE_EMPTY"
    E_MESSAGE_TOO_LONG = "E_MESSAGE_TOO_LONG"
    E_SELF_CONVERSATION = "E_SELF_CONVERSATION"

    # Server errors
    E_TRANSIENT = "E_TRANSIENT"  # 503
    E_UNKNOWN = "E_UNKNOWN"  # 500
    E_INTERNAL = "E_INTERNAL"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_PERMISSION_DENIED: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_CONVERSATION_NOT_FOUND: 404,
    ApiErrorCode.E_MESSAGE_NOT_FOUND: 404,
    ApiErrorCode.E_CONFLICT: 409,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_INVALID_MESSAGE_TYPE: 400,
    ApiErrorCode.E_MESSAGE_EMPTY: 400,
    ApiErrorCode.E_MESSAGE_TOO_LONG: 400,
    ApiErrorCode.E_SELF_CONVERSATION: 400,
    ApiErrorCode.E_TRANSIENT: 503,
    ApiErrorCode.E_UNKNOWN: 500,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class PermissionDeniedError(ForbiddenError):
    """A write was rejected by an access-control policy.

    This is the only failure the send pipeline degrades on.
    """

    def __init__(
        self,
        code: ApiErrorCode = ApiErrorCode.E_PERMISSION_DENIED,
        message: str = "Permission denied",
    ):
        super().__init__(code, message)


class ConflictError(ApiError):
    """Uniqueness violation."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_CONFLICT, message: str = "Conflict"):
        super().__init__(code, message)


class TransientError(ApiError):
    """Network or timeout failure. Safe for the caller to retry."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_TRANSIENT, message: str = "Store unavailable"
    ):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class UnknownError(ApiError):
    """Store failure that fits no other category."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_UNKNOWN, message: str = "Unknown error"):
        super().__init__(code, message)


# SQLSTATE codes with a fixed meaning in the taxonomy
SQLSTATE_INSUFFICIENT_PRIVILEGE = "42501"
SQLSTATE_UNIQUE_VIOLATION = "23505"
SQLSTATE_QUERY_CANCELED = "57014"
SQLSTATE_UNDEFINED_FUNCTION = "42883"


def get_sqlstate(exc: BaseException) -> str | None:
    """Extract the SQLSTATE from a wrapped driver error, if the driver exposes one.

    psycopg 3 exposes ``sqlstate``; psycopg2 exposes ``pgcode``.
    """
    orig = getattr(exc, "orig", exc)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def translate_db_error(exc: SQLAlchemyError) -> ApiError:
    """Map a SQLAlchemy / driver failure onto the error taxonomy.

    Args:
        exc: The exception raised by the store.

    Returns:
        The ApiError the caller should see. The original is not chained here;
        callers use ``raise translate_db_error(e) from e``.
    """
    sqlstate = get_sqlstate(exc)

    if sqlstate == SQLSTATE_INSUFFICIENT_PRIVILEGE:
        return PermissionDeniedError(message="Write rejected by access policy")

    if sqlstate == SQLSTATE_UNIQUE_VIOLATION:
        return ConflictError(message="Row already exists")

    if sqlstate == SQLSTATE_QUERY_CANCELED:
        return TransientError(message="Store operation timed out")

    if isinstance(exc, (OperationalError, DisconnectionError, PoolTimeoutError)):
        return TransientError(message="Store unavailable")

    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return TransientError(message="Store connection lost")

    if isinstance(exc, IntegrityError):
        return InvalidRequestError(message="Row violates a store constraint")

    return UnknownError(message="Store operation failed")
