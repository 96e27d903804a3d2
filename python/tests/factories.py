"""Test data factories.

Centralizes helper functions that create database rows for tests.
Each factory knows the full schema requirements for its table,
so individual tests don't need to track NOT NULL constraints.
Rows are committed so other sessions (and the change feed) see them.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from duet.db.models import Conversation, Message, Profile, new_message_id, utcnow

# =============================================================================
# Profiles
# =============================================================================


def create_test_profile(
    session: Session, name: str = "Test User", avatar_url: str | None = None
) -> UUID:
    """Create a participant profile and return its ID."""
    profile = Profile(id=uuid4(), name=name, avatar_url=avatar_url)
    session.add(profile)
    session.commit()
    return profile.id


def create_test_user_id() -> UUID:
    """A participant ID with no profile row."""
    return uuid4()


# =============================================================================
# Conversations & Messages
# =============================================================================


def create_test_conversation(
    session: Session,
    user_id: UUID,
    other_user_id: UUID,
    is_active: bool = True,
) -> UUID:
    """Insert a conversation row directly (canonical pair order).

    Bypasses the directory, so no change notification is staged.
    """
    participant_a, participant_b = sorted((user_id, other_user_id))
    conversation = Conversation(
        id=uuid4(),
        participant_a=participant_a,
        participant_b=participant_b,
        is_active=is_active,
    )
    session.add(conversation)
    session.commit()
    return conversation.id


def create_test_message(
    session: Session,
    conversation_id: UUID,
    sender_id: UUID,
    content: str = "Test message",
    message_type: str = "text",
    is_read: bool = False,
    created_at: datetime | None = None,
) -> UUID:
    """Insert a message row directly, bypassing the message store."""
    now = created_at or utcnow()
    message = Message(
        id=new_message_id(),
        conversation_id=conversation_id,
        sender_id=sender_id,
        content=content,
        message_type=message_type,
        is_read=is_read,
        read_at=now if is_read else None,
        created_at=now,
        updated_at=now,
    )
    session.add(message)
    session.commit()
    return message.id
