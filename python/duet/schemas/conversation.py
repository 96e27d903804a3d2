"""Conversation and Message Pydantic schemas.

Contains request and response models for the messaging endpoints and the
objects handed to live-delivery callbacks.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# Valid message types - must match DB constraint
MESSAGE_TYPES = Literal["text", "image", "file"]

# Max content length
MAX_MESSAGE_CONTENT_LENGTH = 10000

# Fallback display name when a participant has no profile row
UNKNOWN_PARTICIPANT_NAME = "Unknown User"


# =============================================================================
# Response Schemas
# =============================================================================


class ParticipantOut(BaseModel):
    """Minimal identity of a participant (sender or other party)."""

    id: UUID
    name: str
    avatar_url: str | None = None


class MessageOut(BaseModel):
    """Response schema for a message.

    Messages are immutable after creation except for the read-state fields.
    Within a conversation they are ordered by (created_at, id).
    """

    id: UUID
    conversation_id: UUID
    sender_id: UUID
    content: str
    message_type: str  # "text" | "image" | "file"
    file_url: str | None = None
    file_name: str | None = None
    file_size: int | None = None
    is_read: bool = False
    read_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    sender: ParticipantOut | None = None

    model_config = ConfigDict(from_attributes=True)


class ConversationSummaryOut(BaseModel):
    """A conversation projected for one viewer.

    other_participant, last_message and unread_count are relative to the
    viewer and are never stored.
    """

    id: UUID
    participant_a: UUID
    participant_b: UUID
    other_participant: ParticipantOut
    last_message: str | None = None
    last_message_at: datetime
    unread_count: int = 0
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ConversationRef(BaseModel):
    """Response for get-or-create."""

    id: UUID


class SendMessageOut(BaseModel):
    """Response for sending a message.

    delivery is "persisted" when the row was durably written, "degraded" when
    the message is a client-local echo that may not exist in the store.
    """

    message: MessageOut
    delivery: Literal["persisted", "degraded"]
    reason: str | None = None


class MarkReadOut(BaseModel):
    """Response for marking a conversation read."""

    updated: int


class UnreadCountOut(BaseModel):
    """Response for the viewer's total unread count."""

    unread: int


# =============================================================================
# Request Schemas
# =============================================================================


class FileMeta(BaseModel):
    """Attachment metadata for image and file messages."""

    file_url: str | None = None
    file_name: str | None = None
    file_size: int | None = Field(default=None, ge=0)


class GetOrCreateConversationRequest(BaseModel):
    """Request body for POST /conversations."""

    other_user_id: UUID


class SendMessageRequest(BaseModel):
    """Request body for POST /conversations/{id}/messages.

    Content length is validated by the message store so the HTTP and Python
    entry points share one rule.
    """

    content: str
    message_type: MESSAGE_TYPES = "text"
    file_url: str | None = None
    file_name: str | None = None
    file_size: int | None = Field(default=None, ge=0)

    def file_meta(self) -> FileMeta | None:
        if self.file_url is None and self.file_name is None and self.file_size is None:
            return None
        return FileMeta(file_url=self.file_url, file_name=self.file_name, file_size=self.file_size)
