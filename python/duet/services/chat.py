"""Application-facing messaging facade.

ChatService bundles the directory, message store, send pipeline and live
delivery registry behind the calls an application makes. Each call runs in
its own short-lived session from the bound session factory.

Usage:
    feed = ChangeFeed()
    factory = create_session_factory(engine)
    feed.bind(factory)
    chat = ChatService(factory, feed)

    conversation_id = chat.get_or_create_conversation(alice, bob)
    unsubscribe = chat.subscribe_to_messages(conversation_id, on_message, on_error)
    chat.send_message(conversation_id, alice, "hi")
    unsubscribe()
"""

from collections.abc import Generator
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from duet.config import Settings
from duet.db.models import MessageType
from duet.schemas.conversation import ConversationSummaryOut, FileMeta, MessageOut
from duet.services import conversations, messages
from duet.services.registry import (
    ConversationCallback,
    ErrorCallback,
    MessageCallback,
    Subscription,
    SubscriptionRegistry,
)
from duet.services.send_message import DEFAULT_ECHO_SENDER_LABEL, SendResult, send_message
from duet.store.feed import ChangeFeed


class ChatService:
    """Messaging operations for application callers."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        feed: ChangeFeed,
        default_page_limit: int = messages.DEFAULT_LIMIT,
        max_page_limit: int = messages.MAX_LIMIT,
        echo_sender_label: str = DEFAULT_ECHO_SENDER_LABEL,
    ) -> None:
        self._session_factory = session_factory
        self.feed = feed
        self.registry = SubscriptionRegistry(session_factory, feed)
        self.default_page_limit = default_page_limit
        self.max_page_limit = max_page_limit
        self.echo_sender_label = echo_sender_label

    @classmethod
    def from_settings(
        cls, settings: Settings, session_factory: sessionmaker[Session], feed: ChangeFeed
    ) -> "ChatService":
        return cls(
            session_factory,
            feed,
            default_page_limit=settings.default_page_limit,
            max_page_limit=settings.max_page_limit,
            echo_sender_label=settings.echo_sender_label,
        )

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    # --- Directory ---

    def get_or_create_conversation(self, user_id: UUID, other_user_id: UUID) -> UUID:
        with self._session() as db:
            return conversations.get_or_create(db, user_id, other_user_id)

    def list_conversations(self, user_id: UUID) -> list[ConversationSummaryOut]:
        with self._session() as db:
            return conversations.list_for_user(db, user_id)

    def get_unread_count(self, user_id: UUID) -> int:
        with self._session() as db:
            return conversations.get_unread_count(db, user_id)

    # --- Message store ---

    def get_messages(
        self,
        conversation_id: UUID,
        limit: int | None = None,
        offset: int = 0,
        viewer_id: UUID | None = None,
    ) -> list[MessageOut]:
        with self._session() as db:
            return messages.page(
                db,
                conversation_id,
                limit=self.default_page_limit if limit is None else limit,
                offset=offset,
                viewer_id=viewer_id,
                max_limit=self.max_page_limit,
            )

    def send_message(
        self,
        conversation_id: UUID,
        sender_id: UUID,
        content: str,
        message_type: str = MessageType.text.value,
        file_meta: FileMeta | None = None,
    ) -> SendResult:
        with self._session() as db:
            return send_message(
                db,
                conversation_id,
                sender_id,
                content,
                message_type,
                file_meta,
                echo_sender_label=self.echo_sender_label,
            )

    def mark_read(self, conversation_id: UUID, reader_id: UUID) -> int:
        with self._session() as db:
            return messages.mark_read(db, conversation_id, reader_id)

    # --- Live delivery ---

    def subscribe_to_messages(
        self,
        conversation_id: UUID,
        on_message: MessageCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        return self.registry.subscribe_to_messages(conversation_id, on_message, on_error)

    def subscribe_to_conversations(
        self,
        user_id: UUID,
        on_update: ConversationCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        return self.registry.subscribe_to_conversations(user_id, on_update, on_error)

    def cleanup(self) -> None:
        """Tear down every live subscription."""
        self.registry.close_all()
