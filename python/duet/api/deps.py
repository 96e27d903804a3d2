"""FastAPI dependencies for route handlers.

Request-scoped sessions come from the session factory installed by
create_app(), so writes made through routes publish on the app's change feed.
"""

from duet.db.session import get_db, get_session_factory

__all__ = ["get_db", "get_session_factory"]
