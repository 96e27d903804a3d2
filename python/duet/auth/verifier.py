"""Token verification interface.

Provides:
- TokenVerifier: Protocol implemented by the identity provider adapter
- user_id_from_claims: participant ID extraction shared by all verifiers

No concrete verifier ships here; deployments inject one into create_app().
Tests use tests/support/verifier.py.
"""

import importlib
from typing import Any, Protocol
from uuid import UUID

from duet.errors import ApiError, ApiErrorCode


class TokenVerifier(Protocol):
    """Protocol for token verification."""

    def verify(self, token: str) -> dict[str, Any]:
        """Verify a bearer token and return its claims.

        The claims must carry the participant ID as ``sub``.

        Raises:
            ApiError(E_UNAUTHENTICATED): Token is invalid, expired, or malformed.
        """
        ...


def user_id_from_claims(claims: dict[str, Any]) -> UUID:
    """Read the participant ID from verified claims.

    Raises:
        ApiError(E_UNAUTHENTICATED): If sub is missing or not a UUID.
    """
    sub = claims.get("sub")
    if not sub:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token: missing sub")

    try:
        return UUID(str(sub))
    except ValueError as e:
        raise ApiError(
            ApiErrorCode.E_UNAUTHENTICATED, "Invalid token: sub is not a valid UUID"
        ) from e


def load_token_verifier(path: str) -> TokenVerifier:
    """Instantiate a verifier from a ``package.module:factory`` import path.

    The factory is called with no arguments and must return a TokenVerifier.

    Raises:
        ValueError: If the path is malformed.
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"TOKEN_VERIFIER must look like 'package.module:factory', got {path!r}")

    factory = getattr(importlib.import_module(module_name), attr)
    return factory()
