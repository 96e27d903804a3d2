"""Pydantic schemas for request/response validation."""

from duet.schemas.conversation import (
    ConversationRef,
    ConversationSummaryOut,
    FileMeta,
    GetOrCreateConversationRequest,
    MarkReadOut,
    MessageOut,
    ParticipantOut,
    SendMessageOut,
    SendMessageRequest,
    UnreadCountOut,
)

__all__ = [
    "ConversationRef",
    "ConversationSummaryOut",
    "FileMeta",
    "GetOrCreateConversationRequest",
    "MarkReadOut",
    "MessageOut",
    "ParticipantOut",
    "SendMessageOut",
    "SendMessageRequest",
    "UnreadCountOut",
]
