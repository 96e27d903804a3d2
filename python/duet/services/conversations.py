"""Conversation directory service layer.

One conversation per unordered participant pair:
- get_or_create: idempotent, race-free find-or-create on the canonical pair
- list_for_user: viewer-relative summaries, newest activity first
- get_summary: one viewer-relative summary (used by live delivery)
- get_unread_count: total unread messages addressed to a user

Pair uniqueness is enforced by the store (UNIQUE on the canonical pair). The
insert is an INSERT ... ON CONFLICT DO NOTHING followed by a re-read, so two
concurrent callers for a new pair both end up with the single winning row.
"""

from uuid import UUID, uuid4

from sqlalchemy import func, insert, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from duet.db.models import Conversation, Message, Profile, utcnow
from duet.db.session import transaction
from duet.errors import (
    ApiErrorCode,
    InvalidRequestError,
    NotFoundError,
    UnknownError,
    translate_db_error,
)
from duet.logging import get_logger
from duet.schemas.conversation import ConversationSummaryOut
from duet.services.messages import last_messages, participant_to_out, unread_counts
from duet.store.feed import CONVERSATIONS, INSERT, stage_change

logger = get_logger(__name__)


# =============================================================================
# Helper Functions
# =============================================================================


def canonical_pair(user_id: UUID, other_user_id: UUID) -> tuple[UUID, UUID]:
    """Order a participant pair so that participant_a < participant_b.

    Raises:
        InvalidRequestError(E_SELF_CONVERSATION): If both IDs are the same.
    """
    if user_id == other_user_id:
        raise InvalidRequestError(
            ApiErrorCode.E_SELF_CONVERSATION, "Cannot start a conversation with yourself"
        )
    if user_id < other_user_id:
        return user_id, other_user_id
    return other_user_id, user_id


def find_by_pair(db: Session, participant_a: UUID, participant_b: UUID) -> Conversation | None:
    """Look up a conversation by its canonical pair."""
    try:
        return db.execute(
            select(Conversation).where(
                Conversation.participant_a == participant_a,
                Conversation.participant_b == participant_b,
            )
        ).scalar_one_or_none()
    except SQLAlchemyError as e:
        raise translate_db_error(e) from e


def _insert_if_absent(db: Session, values: dict) -> bool:
    """Insert a conversation unless the pair already exists.

    Returns:
        True if this call created the row.
    """
    table = Conversation.__table__
    dialect = db.get_bind().dialect.name

    if dialect == "postgresql":
        stmt = postgresql.insert(table).values(**values).on_conflict_do_nothing(
            index_elements=["participant_a", "participant_b"]
        )
    elif dialect == "sqlite":
        stmt = sqlite.insert(table).values(**values).on_conflict_do_nothing(
            index_elements=["participant_a", "participant_b"]
        )
    else:
        # No upsert support: rely on the unique constraint inside a savepoint
        try:
            with db.begin_nested():
                db.execute(insert(table).values(**values))
        except IntegrityError:
            return False
        return True

    return db.execute(stmt).rowcount == 1


def _summarize(
    conversation: Conversation,
    viewer_id: UUID,
    other: Profile | None,
    last_message: str | None,
    unread_count: int,
) -> ConversationSummaryOut:
    other_id = conversation.other_participant_id(viewer_id)
    return ConversationSummaryOut(
        id=conversation.id,
        participant_a=conversation.participant_a,
        participant_b=conversation.participant_b,
        other_participant=participant_to_out(other_id, other),
        last_message=last_message,
        last_message_at=conversation.last_message_at,
        unread_count=unread_count,
        is_active=conversation.is_active,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )


# =============================================================================
# Service Functions
# =============================================================================


def get_or_create(db: Session, user_id: UUID, other_user_id: UUID) -> UUID:
    """Return the conversation between two participants, creating it on first contact.

    Idempotent under concurrency and independent of argument order:
    get_or_create(A, B) and get_or_create(B, A) return the same ID.

    Args:
        db: Database session.
        user_id: The requesting participant.
        other_user_id: The other participant.

    Returns:
        The conversation ID.

    Raises:
        InvalidRequestError(E_SELF_CONVERSATION): If both IDs are the same.
        TransientError: On network/timeout failures.
    """
    participant_a, participant_b = canonical_pair(user_id, other_user_id)

    existing = find_by_pair(db, participant_a, participant_b)
    if existing is not None:
        return existing.id

    now = utcnow()
    values = {
        "id": uuid4(),
        "participant_a": participant_a,
        "participant_b": participant_b,
        "last_message_at": now,
        "is_active": True,
        "created_at": now,
        "updated_at": now,
    }

    with transaction(db):
        created = _insert_if_absent(db, values)
        if created:
            stage_change(db, CONVERSATIONS, INSERT, values["id"], values)

    conversation = find_by_pair(db, participant_a, participant_b)
    if conversation is None:
        raise UnknownError(message="Conversation vanished after insert")

    if created:
        logger.info(
            "conversation_created",
            conversation_id=str(conversation.id),
            participant_a=str(participant_a),
            participant_b=str(participant_b),
        )
    else:
        logger.debug("conversation_insert_lost_race", conversation_id=str(conversation.id))

    return conversation.id


def list_for_user(db: Session, user_id: UUID) -> list[ConversationSummaryOut]:
    """List the user's conversations, most recent activity first.

    Last message and unread count are loaded for all conversations in two
    batched queries rather than one lookup per conversation.

    Args:
        db: Database session.
        user_id: The viewer.

    Returns:
        Summaries ordered by last_message_at descending.
    """
    try:
        conversations = list(
            db.execute(
                select(Conversation)
                .where(
                    or_(
                        Conversation.participant_a == user_id,
                        Conversation.participant_b == user_id,
                    )
                )
                .order_by(Conversation.last_message_at.desc(), Conversation.id.desc())
                .execution_options(populate_existing=True)
            ).scalars()
        )

        if not conversations:
            return []

        ids = [c.id for c in conversations]
        other_ids = {c.other_participant_id(user_id) for c in conversations}
        profiles = {
            p.id: p
            for p in db.execute(select(Profile).where(Profile.id.in_(other_ids))).scalars()
        }
        latest = last_messages(db, ids)
        unread = unread_counts(db, user_id, ids)
    except SQLAlchemyError as e:
        raise translate_db_error(e) from e

    return [
        _summarize(
            conversation,
            user_id,
            profiles.get(conversation.other_participant_id(user_id)),
            latest.get(conversation.id),
            unread.get(conversation.id, 0),
        )
        for conversation in conversations
    ]


def get_summary(db: Session, conversation_id: UUID, viewer_id: UUID) -> ConversationSummaryOut:
    """Load one conversation projected for the viewer.

    Raises:
        NotFoundError(E_CONVERSATION_NOT_FOUND): If the conversation doesn't exist
            or the viewer is not a participant.
    """
    try:
        conversation = db.get(Conversation, conversation_id, populate_existing=True)
        if conversation is None or not conversation.has_participant(viewer_id):
            raise NotFoundError(ApiErrorCode.E_CONVERSATION_NOT_FOUND, "Conversation not found")

        other = db.get(Profile, conversation.other_participant_id(viewer_id))
        latest = last_messages(db, [conversation_id])
        unread = unread_counts(db, viewer_id, [conversation_id])
    except SQLAlchemyError as e:
        raise translate_db_error(e) from e

    return _summarize(
        conversation,
        viewer_id,
        other,
        latest.get(conversation_id),
        unread.get(conversation_id, 0),
    )


def get_unread_count(db: Session, user_id: UUID) -> int:
    """Total unread messages addressed to the user across active conversations."""
    try:
        count = db.scalar(
            select(func.count(Message.id))
            .join(Conversation, Conversation.id == Message.conversation_id)
            .where(
                or_(
                    Conversation.participant_a == user_id,
                    Conversation.participant_b == user_id,
                ),
                Conversation.is_active.is_(True),
                Message.sender_id != user_id,
                Message.is_read.is_(False),
            )
        )
    except SQLAlchemyError as e:
        raise translate_db_error(e) from e

    return count or 0
