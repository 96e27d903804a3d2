"""Conversation and message API routes.

Routes are transport-only: each calls exactly one service function with the
authenticated viewer as the acting participant.

All routes require authentication.
Response envelope: {"data": ...}
Error envelope: {"error": {"code": "...", "message": "...", "request_id": "..."}}
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from duet.api.deps import get_db
from duet.auth.middleware import Viewer, get_viewer
from duet.config import get_settings
from duet.logging import set_conversation_context
from duet.responses import success_response
from duet.schemas.conversation import (
    ConversationRef,
    GetOrCreateConversationRequest,
    MarkReadOut,
    SendMessageRequest,
    UnreadCountOut,
)
from duet.services import conversations as conversations_service
from duet.services import messages as messages_service
from duet.services.send_message import send_message

router = APIRouter()


# =============================================================================
# Conversation Endpoints
# =============================================================================


@router.post("/conversations")
def get_or_create_conversation(
    body: GetOrCreateConversationRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Return the viewer's conversation with other_user_id, creating it on first contact.

    Errors:
        E_SELF_CONVERSATION (400): other_user_id is the viewer.
    """
    conversation_id = conversations_service.get_or_create(db, viewer.user_id, body.other_user_id)
    return success_response(ConversationRef(id=conversation_id))


@router.get("/conversations")
def list_conversations(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """List the viewer's conversations, most recent activity first."""
    return success_response(conversations_service.list_for_user(db, viewer.user_id))


@router.get("/conversations/unread-count")
def get_unread_count(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Total unread messages addressed to the viewer."""
    unread = conversations_service.get_unread_count(db, viewer.user_id)
    return success_response(UnreadCountOut(unread=unread))


# =============================================================================
# Message Endpoints
# =============================================================================


@router.get("/conversations/{conversation_id}/messages")
def list_messages(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    limit: int | None = Query(default=None, description="Page size (clamped to 1..MAX_PAGE_LIMIT)"),
    offset: int = Query(default=0, description="Most-recent messages to skip"),
) -> dict:
    """Page of messages, oldest first.

    Errors:
        E_CONVERSATION_NOT_FOUND (404): Missing, or viewer is not a participant.
        E_INVALID_REQUEST (400): Negative offset.
    """
    settings = get_settings()
    set_conversation_context(str(conversation_id))
    result = messages_service.page(
        db,
        conversation_id,
        limit=settings.default_page_limit if limit is None else limit,
        offset=offset,
        viewer_id=viewer.user_id,
        max_limit=settings.max_page_limit,
    )
    return success_response(result)


@router.post("/conversations/{conversation_id}/messages", status_code=201)
def send_message_route(
    conversation_id: UUID,
    body: SendMessageRequest,
    response: Response,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Send a message as the viewer.

    Returns 201 when the message was persisted, 202 when the result is a
    client-local echo (delivery="degraded").

    Errors:
        E_CONVERSATION_NOT_FOUND (404): Conversation doesn't exist.
        E_MESSAGE_EMPTY / E_MESSAGE_TOO_LONG / E_INVALID_MESSAGE_TYPE (400)
        E_TRANSIENT (503): Store unavailable; safe to retry.
    """
    set_conversation_context(str(conversation_id))
    result = send_message(
        db,
        conversation_id,
        viewer.user_id,
        body.content,
        body.message_type,
        body.file_meta(),
        echo_sender_label=get_settings().echo_sender_label,
    )
    if not result.persisted:
        response.status_code = 202
    return success_response(result.to_out())


@router.post("/conversations/{conversation_id}/read")
def mark_read(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Mark every message the viewer did not send as read.

    Never fails on store errors: updated is 0 when the transition could not run.
    """
    set_conversation_context(str(conversation_id))
    updated = messages_service.mark_read(db, conversation_id, viewer.user_id)
    return success_response(MarkReadOut(updated=updated))
