"""SQLAlchemy ORM models for duet.

Defines the messaging relations using SQLAlchemy 2.x declarative patterns.
Column types are the portable ``Uuid`` / ``DateTime`` so the same models back
PostgreSQL in deployment and SQLite in local runs and tests.

Storage-owned behavior that the services rely on is attached as DDL:
- ``messages_touch_conversation`` trigger (PostgreSQL and SQLite)
- ``mark_messages_as_read`` procedure (PostgreSQL only)
Alembic revision 0001 installs the same objects for migrated databases.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    DDL,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Text,
    UniqueConstraint,
    Uuid,
    event,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from uuid_extensions import uuid7


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utcnow() -> datetime:
    """Timezone-aware now, used for client-side timestamp defaults."""
    return datetime.now(UTC)


def new_message_id() -> UUID:
    """Time-ordered message ID so (created_at, id) ties resolve in insert order."""
    return uuid7()


# =============================================================================
# Enums
# =============================================================================


class MessageType(str, PyEnum):
    """Kinds of message content."""

    text = "text"
    image = "image"
    file = "file"


# =============================================================================
# Models
# =============================================================================


class Profile(Base):
    """Participant identity directory.

    Owned by the identity collaborator; this subsystem only reads it to
    attach display names to senders and other participants.
    """

    __tablename__ = "profiles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class Conversation(Base):
    """Conversation model - the single thread between an unordered participant pair.

    The pair is stored canonically (participant_a < participant_b) so that
    the unique constraint covers both orderings.
    """

    __tablename__ = "conversations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    participant_a: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    participant_b: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    last_message_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "participant_a < participant_b",
            name="ck_conversations_canonical_pair",
        ),
        UniqueConstraint("participant_a", "participant_b", name="uix_conversations_pair"),
        Index("ix_conversations_participant_a", "participant_a"),
        Index("ix_conversations_participant_b", "participant_b"),
        Index("ix_conversations_last_message_at", "last_message_at"),
    )

    # Relationships
    messages: Mapped[list["Message"]] = relationship(
        "Message", back_populates="conversation", cascade="all, delete-orphan"
    )

    def has_participant(self, user_id: UUID) -> bool:
        return user_id in (self.participant_a, self.participant_b)

    def other_participant_id(self, viewer_id: UUID) -> UUID:
        """Participant that is not the viewer."""
        return self.participant_b if self.participant_a == viewer_id else self.participant_a


class Message(Base):
    """Message model - one append-only entry in a conversation's log."""

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=new_message_id)
    conversation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(Text, nullable=False, default=MessageType.text.value)
    file_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "message_type IN ('text', 'image', 'file')",
            name="ck_messages_message_type",
        ),
        CheckConstraint(
            "file_size IS NULL OR file_size >= 0",
            name="ck_messages_file_size_non_negative",
        ),
        Index("ix_messages_conversation_created", "conversation_id", "created_at", "id"),
        Index("ix_messages_sender_id", "sender_id"),
        Index(
            "ix_messages_unread",
            "conversation_id",
            "sender_id",
            postgresql_where=text("is_read = false"),
        ),
    )

    # Relationships
    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="messages")
    sender: Mapped["Profile"] = relationship("Profile")


# =============================================================================
# Storage-owned DDL
# =============================================================================

# The trigger copies the message's own created_at so last_message_at always
# equals the newest message timestamp.
SQLITE_TOUCH_CONVERSATION_TRIGGER = DDL("""
    CREATE TRIGGER IF NOT EXISTS messages_touch_conversation
    AFTER INSERT ON messages
    BEGIN
        UPDATE conversations
        SET last_message_at = NEW.created_at, updated_at = NEW.created_at
        WHERE id = NEW.conversation_id;
    END
""")

PG_TOUCH_CONVERSATION_FUNCTION = DDL("""
    CREATE OR REPLACE FUNCTION touch_conversation_on_message()
    RETURNS trigger AS $$
    BEGIN
        UPDATE conversations
        SET last_message_at = NEW.created_at, updated_at = now()
        WHERE id = NEW.conversation_id;
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
""")

PG_TOUCH_CONVERSATION_TRIGGER = DDL("""
    CREATE TRIGGER messages_touch_conversation
    AFTER INSERT ON messages
    FOR EACH ROW EXECUTE FUNCTION touch_conversation_on_message()
""")

PG_MARK_MESSAGES_AS_READ = DDL("""
    CREATE OR REPLACE FUNCTION mark_messages_as_read(conversation_uuid UUID, reader_uuid UUID)
    RETURNS integer AS $$
    DECLARE
        updated_count integer;
    BEGIN
        UPDATE messages
        SET is_read = true, read_at = now(), updated_at = now()
        WHERE conversation_id = conversation_uuid
          AND sender_id <> reader_uuid
          AND is_read = false
          AND EXISTS (
              SELECT 1 FROM conversations c
              WHERE c.id = conversation_uuid
                AND reader_uuid IN (c.participant_a, c.participant_b)
          );
        GET DIAGNOSTICS updated_count = ROW_COUNT;
        RETURN updated_count;
    END;
    $$ LANGUAGE plpgsql SECURITY DEFINER
""")

event.listen(
    Message.__table__, "after_create", SQLITE_TOUCH_CONVERSATION_TRIGGER.execute_if(dialect="sqlite")
)
event.listen(
    Message.__table__,
    "after_create",
    PG_TOUCH_CONVERSATION_FUNCTION.execute_if(dialect="postgresql"),
)
event.listen(
    Message.__table__,
    "after_create",
    PG_TOUCH_CONVERSATION_TRIGGER.execute_if(dialect="postgresql"),
)
event.listen(
    Message.__table__, "after_create", PG_MARK_MESSAGES_AS_READ.execute_if(dialect="postgresql")
)
