"""Send message pipeline.

Write-then-notify with a defined degradation path for policy rejections:

Attempt 1 - Full append:
- Participant check, validation, attachment metadata, sender enrichment

Attempt 2 - Reduced-fidelity append (only after PermissionDeniedError):
- Same message ID as the echo, core columns only, no enrichment

Fallback - Client-local echo (only if attempt 2 is also denied):
- Never persisted; returned so the sender's own view can still show it

Every other failure (validation, not found, transient, unknown) propagates.
The outcome is tagged on SendResult so callers can show a "not delivered"
indicator instead of silently treating an echo as sent.
"""

from dataclasses import dataclass
from typing import Literal
from uuid import UUID

from sqlalchemy.orm import Session

from duet.db.models import MessageType, new_message_id, utcnow
from duet.errors import PermissionDeniedError
from duet.logging import get_logger
from duet.schemas.conversation import FileMeta, MessageOut, ParticipantOut, SendMessageOut
from duet.services import messages as message_store

logger = get_logger(__name__)

DEFAULT_ECHO_SENDER_LABEL = "You"

# Reasons attached to a SendResult
REASON_REDUCED_FIDELITY = "reduced_fidelity"
REASON_PERMISSION_DENIED = "permission_denied"


@dataclass
class SendResult:
    """Outcome of a send.

    delivery is "persisted" when the message exists in the store, "degraded"
    when it is a client-local echo that was never written.
    """

    message: MessageOut
    delivery: Literal["persisted", "degraded"]
    reason: str | None = None

    @property
    def persisted(self) -> bool:
        return self.delivery == "persisted"

    def to_out(self) -> SendMessageOut:
        return SendMessageOut(message=self.message, delivery=self.delivery, reason=self.reason)


def build_echo(
    message_id: UUID,
    conversation_id: UUID,
    sender_id: UUID,
    content: str,
    message_type: str,
    file_meta: FileMeta | None,
    sender_label: str,
) -> MessageOut:
    """Synthesize the client-local echo of an unpersisted message."""
    meta = file_meta or FileMeta()
    now = utcnow()
    return MessageOut(
        id=message_id,
        conversation_id=conversation_id,
        sender_id=sender_id,
        content=content,
        message_type=message_type,
        file_url=meta.file_url,
        file_name=meta.file_name,
        file_size=meta.file_size,
        is_read=False,
        read_at=None,
        created_at=now,
        updated_at=now,
        sender=ParticipantOut(id=sender_id, name=sender_label),
    )


def send_message(
    db: Session,
    conversation_id: UUID,
    sender_id: UUID,
    content: str,
    message_type: str = MessageType.text.value,
    file_meta: FileMeta | None = None,
    echo_sender_label: str = DEFAULT_ECHO_SENDER_LABEL,
) -> SendResult:
    """Send a message to a conversation.

    Main entry point for the send flow. Live delivery to subscribers happens
    through the change feed once the write commits.

    Args:
        db: Database session.
        conversation_id: Target conversation.
        sender_id: Author.
        content: Message text.
        message_type: "text" | "image" | "file".
        file_meta: Optional attachment metadata.
        echo_sender_label: Sender display name used on a client-local echo.

    Returns:
        SendResult tagged persisted or degraded.

    Raises:
        InvalidRequestError: If content or type is invalid.
        NotFoundError: If the conversation doesn't exist.
        TransientError / UnknownError: On store failures other than policy denial.
    """
    try:
        message = message_store.append(
            db, conversation_id, sender_id, content, message_type, file_meta
        )
        return SendResult(message=message, delivery="persisted")
    except PermissionDeniedError as e:
        logger.warning(
            "send_permission_denied",
            conversation_id=str(conversation_id),
            sender_id=str(sender_id),
            error=e.message,
        )

    echo_id = new_message_id()

    try:
        message = message_store.append_basic(
            db, echo_id, conversation_id, sender_id, content, message_type
        )
        logger.warning(
            "send_reduced_fidelity",
            conversation_id=str(conversation_id),
            message_id=str(echo_id),
        )
        return SendResult(message=message, delivery="persisted", reason=REASON_REDUCED_FIDELITY)
    except PermissionDeniedError as e:
        logger.warning(
            "send_degraded",
            conversation_id=str(conversation_id),
            sender_id=str(sender_id),
            message_id=str(echo_id),
            error=e.message,
        )

    echo = build_echo(
        echo_id,
        conversation_id,
        sender_id,
        content,
        message_type,
        file_meta,
        echo_sender_label,
    )
    return SendResult(message=echo, delivery="degraded", reason=REASON_PERMISSION_DENIED)
