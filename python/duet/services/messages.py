"""Message store service layer.

The append-only per-conversation message log:
- append / append_basic: write one message (full and reduced-fidelity forms)
- page: bounded, restartable, oldest-first page of a conversation
- mark_read: read-state transition for everything the reader did not send
- last_messages / unread_counts: batched projections used by conversation summaries

The conversation's last_message_at is advanced by the storage-owned
``messages_touch_conversation`` trigger, never by this module, so a message
insert is a single write.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import Integer, Uuid, bindparam, func, select, update
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session

from duet.db.models import Conversation, Message, MessageType, Profile, utcnow
from duet.db.session import transaction
from duet.errors import (
    SQLSTATE_UNDEFINED_FUNCTION,
    ApiError,
    ApiErrorCode,
    InvalidRequestError,
    NotFoundError,
    PermissionDeniedError,
    get_sqlstate,
    translate_db_error,
)
from duet.logging import get_logger
from duet.schemas.conversation import (
    MAX_MESSAGE_CONTENT_LENGTH,
    UNKNOWN_PARTICIPANT_NAME,
    FileMeta,
    MessageOut,
    ParticipantOut,
)
from duet.store.feed import CONVERSATIONS, INSERT, MESSAGES, UPDATE, stage_change

logger = get_logger(__name__)

# Pagination limits
DEFAULT_LIMIT = 50
MIN_LIMIT = 1
MAX_LIMIT = 100

MARK_READ_PROCEDURE = "mark_messages_as_read"


# =============================================================================
# Helper Functions
# =============================================================================


def clamp_limit(limit: int, max_limit: int = MAX_LIMIT) -> int:
    """Clamp limit to valid range [MIN_LIMIT, max_limit]."""
    return min(max(limit, MIN_LIMIT), max_limit)


def participant_to_out(user_id: UUID, profile: Profile | None) -> ParticipantOut:
    """Minimal identity for a participant, tolerating a missing profile row."""
    if profile is None:
        return ParticipantOut(id=user_id, name=UNKNOWN_PARTICIPANT_NAME)
    return ParticipantOut(id=profile.id, name=profile.name, avatar_url=profile.avatar_url)


def message_to_out(
    message: Message, sender: Profile | None = None, with_sender: bool = True
) -> MessageOut:
    """Convert Message ORM model to MessageOut.

    Sender identity comes from the given profile row (or the unknown-user
    fallback); it is left unset when with_sender is False.
    """
    return MessageOut(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        content=message.content,
        message_type=message.message_type,
        file_url=message.file_url,
        file_name=message.file_name,
        file_size=message.file_size,
        is_read=message.is_read,
        read_at=message.read_at,
        created_at=message.created_at,
        updated_at=message.updated_at,
        sender=participant_to_out(message.sender_id, sender) if with_sender else None,
    )


def get_conversation_or_404(db: Session, conversation_id: UUID) -> Conversation:
    """Load a conversation.

    Raises:
        NotFoundError(E_CONVERSATION_NOT_FOUND): If the conversation doesn't exist.
    """
    try:
        conversation = db.get(Conversation, conversation_id)
    except SQLAlchemyError as e:
        raise translate_db_error(e) from e

    if conversation is None:
        raise NotFoundError(ApiErrorCode.E_CONVERSATION_NOT_FOUND, "Conversation not found")
    return conversation


def ensure_sender_is_participant(conversation: Conversation, sender_id: UUID) -> None:
    """Write policy: only the two participants may post.

    Raises:
        PermissionDeniedError: If sender_id is not a participant.
    """
    if not conversation.has_participant(sender_id):
        raise PermissionDeniedError(message="Sender is not a participant of this conversation")


def validate_message(content: str, message_type: str) -> None:
    """Validate message content and type.

    Raises:
        InvalidRequestError: On empty/oversized content or unknown type.
    """
    if not content or not content.strip():
        raise InvalidRequestError(ApiErrorCode.E_MESSAGE_EMPTY, "Message content is empty")

    if len(content) > MAX_MESSAGE_CONTENT_LENGTH:
        raise InvalidRequestError(
            ApiErrorCode.E_MESSAGE_TOO_LONG,
            f"Message exceeds {MAX_MESSAGE_CONTENT_LENGTH} characters",
        )

    if message_type not in {t.value for t in MessageType}:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_MESSAGE_TYPE, f"Unknown message type: {message_type}"
        )


def message_row(message: Message) -> dict:
    """Column snapshot of a message for change notifications."""
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_id": message.sender_id,
        "message_type": message.message_type,
        "created_at": message.created_at,
    }


def _insert_message(db: Session, message: Message) -> Message:
    """Insert one message and stage its change notifications.

    The trigger bumps the conversation inside the same statement, so the
    conversation row re-read here already carries the new last_message_at.
    """
    with transaction(db):
        db.add(message)
        db.flush()

        conversation_row = db.execute(
            select(
                Conversation.participant_a,
                Conversation.participant_b,
                Conversation.last_message_at,
                Conversation.updated_at,
            ).where(Conversation.id == message.conversation_id)
        ).one()

        stage_change(db, MESSAGES, INSERT, message.id, message_row(message))
        stage_change(
            db,
            CONVERSATIONS,
            UPDATE,
            message.conversation_id,
            {"id": message.conversation_id, **conversation_row._asdict()},
        )

    return message


# =============================================================================
# Service Functions
# =============================================================================


def append(
    db: Session,
    conversation_id: UUID,
    sender_id: UUID,
    content: str,
    message_type: str = MessageType.text.value,
    file_meta: FileMeta | None = None,
) -> MessageOut:
    """Append a message to a conversation's log.

    Args:
        db: Database session.
        conversation_id: Target conversation.
        sender_id: Author; must be one of the two participants.
        content: Message text (or caption for attachments).
        message_type: "text" | "image" | "file".
        file_meta: Optional attachment metadata.

    Returns:
        The persisted message with sender identity attached.

    Raises:
        InvalidRequestError: If content or type is invalid.
        NotFoundError(E_CONVERSATION_NOT_FOUND): If the conversation doesn't exist.
        PermissionDeniedError: If the sender is not a participant, or the store's
            access policy rejects the insert.
        TransientError: On network/timeout failures.
    """
    validate_message(content, message_type)

    conversation = get_conversation_or_404(db, conversation_id)
    ensure_sender_is_participant(conversation, sender_id)

    meta = file_meta or FileMeta()
    message = _insert_message(
        db,
        Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            file_url=meta.file_url,
            file_name=meta.file_name,
            file_size=meta.file_size,
        ),
    )

    logger.info(
        "message_appended",
        conversation_id=str(conversation_id),
        message_id=str(message.id),
        message_type=message_type,
    )

    return message_to_out(message, db.get(Profile, sender_id))


def append_basic(
    db: Session,
    message_id: UUID,
    conversation_id: UUID,
    sender_id: UUID,
    content: str,
    message_type: str = MessageType.text.value,
) -> MessageOut:
    """Reduced-fidelity append: caller-chosen ID, core columns only.

    No attachment metadata and no sender enrichment. Used as the second
    attempt of a send after a policy rejection.

    Raises:
        Same as append().
    """
    validate_message(content, message_type)

    conversation = get_conversation_or_404(db, conversation_id)
    ensure_sender_is_participant(conversation, sender_id)

    message = _insert_message(
        db,
        Message(
            id=message_id,
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
        ),
    )

    logger.info(
        "message_appended_basic",
        conversation_id=str(conversation_id),
        message_id=str(message.id),
    )

    return message_to_out(message, with_sender=False)


def get_message(db: Session, message_id: UUID) -> MessageOut:
    """Load one message joined with its sender identity.

    Raises:
        NotFoundError(E_MESSAGE_NOT_FOUND): If the message doesn't exist.
    """
    try:
        row = db.execute(
            select(Message, Profile)
            .outerjoin(Profile, Profile.id == Message.sender_id)
            .where(Message.id == message_id)
            .execution_options(populate_existing=True)
        ).first()
    except SQLAlchemyError as e:
        raise translate_db_error(e) from e

    if row is None:
        raise NotFoundError(ApiErrorCode.E_MESSAGE_NOT_FOUND, "Message not found")

    message, sender = row
    return message_to_out(message, sender)


def page(
    db: Session,
    conversation_id: UUID,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    viewer_id: UUID | None = None,
    max_limit: int = MAX_LIMIT,
) -> list[MessageOut]:
    """Return a page of messages, oldest first.

    Rows are selected newest-first so that offset=0 is always the most recent
    ``limit`` messages, then the slice is reversed before returning.

    Args:
        db: Database session.
        conversation_id: The conversation to read.
        limit: Page size (clamped to [1, max_limit]).
        offset: Number of most-recent messages to skip.
        viewer_id: If given, the viewer must be a participant.
        max_limit: Upper bound for limit.

    Returns:
        Messages ordered by (created_at, id) ascending.

    Raises:
        InvalidRequestError: If offset is negative.
        NotFoundError(E_CONVERSATION_NOT_FOUND): If the conversation doesn't exist
            or the viewer is not a participant.
    """
    if offset < 0:
        raise InvalidRequestError(message="offset must be >= 0")

    conversation = get_conversation_or_404(db, conversation_id)
    if viewer_id is not None and not conversation.has_participant(viewer_id):
        # Masked as not-found so existence is not revealed
        raise NotFoundError(ApiErrorCode.E_CONVERSATION_NOT_FOUND, "Conversation not found")

    limit = clamp_limit(limit, max_limit)

    try:
        rows = db.execute(
            select(Message, Profile)
            .outerjoin(Profile, Profile.id == Message.sender_id)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .offset(offset)
            .limit(limit)
            .execution_options(populate_existing=True)
        ).all()
    except SQLAlchemyError as e:
        raise translate_db_error(e) from e

    return [message_to_out(message, sender) for message, sender in reversed(rows)]


def last_messages(db: Session, conversation_ids: Iterable[UUID]) -> dict[UUID, str]:
    """Most recent message content per conversation, in one query.

    Returns:
        Map of conversation_id -> content. Conversations without messages are absent.
    """
    ids = list(conversation_ids)
    if not ids:
        return {}

    ranked = (
        select(
            Message.conversation_id,
            Message.content,
            func.row_number()
            .over(
                partition_by=Message.conversation_id,
                order_by=(Message.created_at.desc(), Message.id.desc()),
            )
            .label("rn"),
        )
        .where(Message.conversation_id.in_(ids))
        .subquery()
    )

    rows = db.execute(
        select(ranked.c.conversation_id, ranked.c.content).where(ranked.c.rn == 1)
    ).all()
    return {conversation_id: content for conversation_id, content in rows}


def unread_counts(db: Session, viewer_id: UUID, conversation_ids: Iterable[UUID]) -> dict[UUID, int]:
    """Unread messages addressed to the viewer, per conversation, in one query."""
    ids = list(conversation_ids)
    if not ids:
        return {}

    rows = db.execute(
        select(Message.conversation_id, func.count())
        .where(
            Message.conversation_id.in_(ids),
            Message.sender_id != viewer_id,
            Message.is_read.is_(False),
        )
        .group_by(Message.conversation_id)
    ).all()
    return {conversation_id: count for conversation_id, count in rows}


def _is_missing_procedure(error: DBAPIError) -> bool:
    """True when the store has no mark_messages_as_read procedure."""
    if get_sqlstate(error) == SQLSTATE_UNDEFINED_FUNCTION:
        return True
    return f"no such function: {MARK_READ_PROCEDURE}" in str(error.orig).lower()


def _mark_read_atomic(db: Session, conversation_id: UUID, reader_id: UUID) -> int | None:
    """Run the server-side procedure. Returns None if the store lacks it."""
    stmt = select(
        getattr(func, MARK_READ_PROCEDURE)(
            bindparam("conversation_uuid", conversation_id, type_=Uuid),
            bindparam("reader_uuid", reader_id, type_=Uuid),
            type_=Integer,
        )
    )
    try:
        count = db.scalar(stmt)
        db.commit()
    except DBAPIError as e:
        db.rollback()
        if _is_missing_procedure(e):
            return None
        raise translate_db_error(e) from e

    return count or 0


def _mark_read_direct(db: Session, conversation_id: UUID, reader_id: UUID) -> int:
    """Predicate-based bulk update, equivalent to the procedure."""
    now = utcnow()
    with transaction(db):
        result = db.execute(
            update(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.sender_id != reader_id,
                Message.is_read.is_(False),
            )
            .values(is_read=True, read_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
    return result.rowcount or 0


def mark_read(db: Session, conversation_id: UUID, reader_id: UUID) -> int:
    """Mark every unread message in the conversation not sent by the reader as read.

    Uses the atomic store procedure when present and falls back to a direct
    bulk update otherwise. Failures are logged and reported as 0 rows.

    Args:
        db: Database session.
        conversation_id: The conversation being read.
        reader_id: The participant reading it.

    Returns:
        Number of messages transitioned to read (0 on a repeat call, and 0
        when reader_id is not a participant).
    """
    try:
        conversation = db.get(Conversation, conversation_id)
        if conversation is None or not conversation.has_participant(reader_id):
            logger.warning(
                "mark_read_rejected",
                conversation_id=str(conversation_id),
                reader_id=str(reader_id),
                reason="not_participant",
            )
            return 0

        count = _mark_read_atomic(db, conversation_id, reader_id)
        if count is None:
            logger.info(
                "mark_read_fallback",
                conversation_id=str(conversation_id),
                reason="procedure_unavailable",
            )
            count = _mark_read_direct(db, conversation_id, reader_id)
    except (ApiError, SQLAlchemyError) as e:
        logger.warning(
            "mark_read_failed",
            conversation_id=str(conversation_id),
            reader_id=str(reader_id),
            error=str(e),
        )
        return 0

    logger.debug(
        "messages_marked_read",
        conversation_id=str(conversation_id),
        reader_id=str(reader_id),
        count=count,
    )
    return count
