"""Database module for duet.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from duet.db.engine import create_db_engine, get_engine
from duet.db.models import Base, Conversation, Message, MessageType, Profile
from duet.db.session import create_session_factory, get_db, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "create_session_factory",
    "get_db",
    "transaction",
    # Base
    "Base",
    # Enums
    "MessageType",
    # Models
    "Profile",
    "Conversation",
    "Message",
]
