"""Authentication middleware for FastAPI.

Provides:
- AuthMiddleware: bearer token verification on every non-public path
- get_viewer: Dependency for accessing the authenticated participant
"""

from dataclasses import dataclass
from uuid import UUID

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from duet.auth.verifier import TokenVerifier, user_id_from_claims
from duet.errors import ApiError, ApiErrorCode
from duet.logging import get_logger
from duet.responses import error_response

logger = get_logger(__name__)

AUTHORIZATION_HEADER = "authorization"
BEARER_PREFIX = "bearer "

# Paths that don't require authentication
PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}


@dataclass
class Viewer:
    """Authenticated participant making the request."""

    user_id: UUID


def _unauthenticated(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content=error_response(ApiErrorCode.E_UNAUTHENTICATED, message),
    )


class AuthMiddleware(BaseHTTPMiddleware):
    """Resolve the bearer token to a Viewer on request.state.

    Order of checks:
    1. Skip if public path
    2. Extract the bearer token
    3. Verify it through the injected TokenVerifier
    4. Attach Viewer to request state
    """

    def __init__(self, app: ASGIApp, verifier: TokenVerifier):
        super().__init__(app)
        self.verifier = verifier

    async def dispatch(self, request: Request, call_next) -> JSONResponse:
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        auth_header = request.headers.get(AUTHORIZATION_HEADER, "")
        if not auth_header:
            logger.warning("auth_failure", reason="missing_header", path=request.url.path)
            return _unauthenticated("Authentication required")

        if not auth_header.lower().startswith(BEARER_PREFIX):
            logger.warning("auth_failure", reason="invalid_header_format", path=request.url.path)
            return _unauthenticated("Invalid authorization header format")

        token = auth_header[len(BEARER_PREFIX) :].strip()
        if not token:
            logger.warning("auth_failure", reason="empty_token", path=request.url.path)
            return _unauthenticated("Invalid authorization header format")

        try:
            user_id = user_id_from_claims(self.verifier.verify(token))
        except ApiError as e:
            logger.warning("auth_failure", reason="verify_failed", error=e.message)
            return JSONResponse(
                status_code=e.status_code,
                content=error_response(e.code, e.message),
            )

        request.state.viewer = Viewer(user_id=user_id)
        return await call_next(request)


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency to get the authenticated viewer.

    Raises:
        ApiError(E_UNAUTHENTICATED): If the middleware did not attach a viewer.
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer
