"""Authentication module.

Identity is owned by an external provider. This module defines:
- TokenVerifier: the interface a provider adapter implements
- AuthMiddleware: resolves the bearer token to a Viewer on each request
- get_viewer: dependency for route handlers
"""

from duet.auth.middleware import AuthMiddleware, Viewer, get_viewer
from duet.auth.verifier import TokenVerifier, load_token_verifier, user_id_from_claims

__all__ = [
    "AuthMiddleware",
    "TokenVerifier",
    "Viewer",
    "get_viewer",
    "load_token_verifier",
    "user_id_from_claims",
]
