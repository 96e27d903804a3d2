"""Business logic services.

This module contains service-layer functions that implement the messaging
subsystem. Services are called by route handlers and by ChatService, and
orchestrate database operations.
"""

from duet.services.chat import ChatService
from duet.services.conversations import get_or_create, get_unread_count, list_for_user
from duet.services.messages import append, mark_read, page
from duet.services.send_message import SendResult, send_message

__all__ = [
    "ChatService",
    "SendResult",
    "append",
    "get_or_create",
    "get_unread_count",
    "list_for_user",
    "mark_read",
    "page",
    "send_message",
]
