"""Thin API launcher.

This is the uvicorn entrypoint. All application logic lives in the duet package.
Run with: uvicorn main:app --reload

The identity provider adapter is named by TOKEN_VERIFIER
(``package.module:factory``) and injected into create_app().
"""

from duet.app import create_app
from duet.auth.verifier import load_token_verifier
from duet.config import get_settings

settings = get_settings()
if not settings.token_verifier:
    raise RuntimeError("TOKEN_VERIFIER must be set to launch the API")

app = create_app(token_verifier=load_token_verifier(settings.token_verifier))

__all__ = ["app"]
