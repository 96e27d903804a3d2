"""FastAPI application creation and configuration.

Registers exception handlers, auth middleware, request-id middleware, routes,
and wires the store: one session factory bound to the change feed, installed
as the default factory so route sessions publish their writes, plus a
ChatService whose live subscriptions are torn down at shutdown.

Middleware Ordering:
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- Auth failures therefore still carry X-Request-ID
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from sqlalchemy.orm import Session, sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from duet.api.routes import create_api_router
from duet.auth.middleware import AuthMiddleware
from duet.auth.verifier import TokenVerifier
from duet.config import get_settings
from duet.db.session import create_session_factory, set_session_factory
from duet.errors import ApiError
from duet.logging import configure_logging, get_logger
from duet.middleware.request_id import RequestIDMiddleware
from duet.responses import (
    api_error_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from duet.services.chat import ChatService
from duet.store.feed import ChangeFeed, get_change_feed

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Tear down live subscriptions on shutdown."""
    yield
    app.state.chat.cleanup()
    logger.info("chat_service_stopped")


def create_app(
    token_verifier: TokenVerifier,
    session_factory: sessionmaker[Session] | None = None,
    feed: ChangeFeed | None = None,
    log_requests: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        token_verifier: Identity provider adapter used by the auth middleware.
        session_factory: Session factory to serve requests from. If None, one
            is created on the configured engine.
        feed: Change feed to publish on. If None, uses the global feed.
        log_requests: Whether to emit an access log entry per request.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()
    configure_logging(json_format=settings.log_json)

    feed = feed or get_change_feed()
    if session_factory is None:
        session_factory = create_session_factory()
    feed.bind(session_factory)
    set_session_factory(session_factory)

    app = FastAPI(
        title="Duet API",
        description="Two-party messaging: conversations, message logs and live delivery",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.session_factory = session_factory
    app.state.feed = feed
    app.state.chat = ChatService.from_settings(settings, session_factory, feed)

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(create_api_router())

    app.add_middleware(AuthMiddleware, verifier=token_verifier)
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)

    logger.info("app_created", env=settings.duet_env.value)
    return app
