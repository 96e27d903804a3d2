"""Pytest configuration and fixtures for duet tests.

Test isolation strategy:
- Every test gets its own file-backed SQLite database under tmp_path, built
  with Base.metadata.create_all (trigger included), so tests that need several
  independent connections see each other's committed data
- The session factory is bound to a fresh ChangeFeed per test
- HTTP tests use auth_client: the real app with a fake token verifier whose
  tokens are the participant's UUID
"""

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from duet.app import create_app
from duet.config import clear_settings_cache
from duet.db.engine import create_db_engine
from duet.db.models import Base
from duet.db.session import create_session_factory, set_session_factory
from duet.services.chat import ChatService
from duet.store.feed import ChangeFeed, set_change_feed
from tests.support.verifier import FakeTokenVerifier


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'duet.db'}"


@pytest.fixture(autouse=True)
def test_env(monkeypatch: pytest.MonkeyPatch, database_url: str) -> Generator[None, None, None]:
    """Point settings at the per-test database and reset cached globals."""
    monkeypatch.setenv("DATABASE_URL", database_url)
    monkeypatch.setenv("DUET_ENV", "test")
    monkeypatch.setenv("LOG_JSON", "false")
    clear_settings_cache()
    yield
    clear_settings_cache()
    set_session_factory(None)
    set_change_feed(None)


@pytest.fixture
def engine(database_url: str) -> Generator[Engine, None, None]:
    """Engine on a fresh schema."""
    engine = create_db_engine(database_url, timeout_s=10)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def feed() -> Generator[ChangeFeed, None, None]:
    feed = ChangeFeed()
    yield feed
    feed.close_all()


@pytest.fixture
def session_factory(engine: Engine, feed: ChangeFeed) -> sessionmaker[Session]:
    """Session factory whose commits publish on ``feed``."""
    factory = create_session_factory(engine)
    feed.bind(factory)
    return factory


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def chat(
    session_factory: sessionmaker[Session], feed: ChangeFeed
) -> Generator[ChatService, None, None]:
    service = ChatService(session_factory, feed)
    yield service
    service.cleanup()


@pytest.fixture
def app(session_factory: sessionmaker[Session], feed: ChangeFeed):
    return create_app(
        token_verifier=FakeTokenVerifier(),
        session_factory=session_factory,
        feed=feed,
        log_requests=False,
    )


@pytest.fixture
def auth_client(app) -> Generator[TestClient, None, None]:
    """Client for the full app. Authenticate with tests.helpers.auth_headers()."""
    with TestClient(app) as client:
        yield client
