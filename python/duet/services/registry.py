"""Live delivery registry.

Turns change-feed notifications into fully populated domain objects and
hands them to subscriber callbacks. Two subscription kinds:

    messages:{conversation_id}   inserts on messages of one conversation
    conversations:{user_id}      inserts/updates on the user's conversations

At most one handle is live per key: subscribing again for a key tears the
previous handle down first. Notifications may carry a partial row, so every
delivery re-reads the row in a fresh session; nothing is cached beyond the
key -> handle map.

Unsubscribe is idempotent and does not drain in-flight notifications, so a
callback may fire at most once after it was requested. Deliveries are not
guaranteed to arrive in creation order during a burst; callers that need
strict order re-sort on created_at.
"""

import threading
from collections.abc import Callable, Iterable
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from duet.logging import get_logger, set_subscription_context
from duet.schemas.conversation import ConversationSummaryOut, MessageOut
from duet.services.conversations import get_summary
from duet.services.messages import get_message
from duet.store.feed import (
    CONVERSATIONS,
    INSERT,
    MESSAGES,
    UPDATE,
    Channel,
    ChangeFeed,
    Notification,
    Predicate,
    any_column_eq,
    column_eq,
)

logger = get_logger(__name__)

MessageCallback = Callable[[MessageOut], None]
ConversationCallback = Callable[[ConversationSummaryOut], None]
ErrorCallback = Callable[[BaseException], None]


def messages_key(conversation_id: UUID) -> str:
    return f"messages:{conversation_id}"


def conversations_key(user_id: UUID) -> str:
    return f"conversations:{user_id}"


class Subscription:
    """Handle for one live subscription. Calling it unsubscribes."""

    def __init__(self, registry: "SubscriptionRegistry", key: str) -> None:
        self.key = key
        self._registry = registry
        self._channel: Channel | None = None

    @property
    def active(self) -> bool:
        return self._channel is not None and not self._channel.closed

    def unsubscribe(self) -> None:
        """Stop delivery and release the registry key. Safe to call repeatedly."""
        self._registry._release(self)

    def __call__(self) -> None:
        self.unsubscribe()

    def _teardown(self) -> None:
        if self._channel is not None:
            self._channel.close()


class SubscriptionRegistry:
    """Key -> live handle map guarded by a re-entrant lock.

    The lock is re-entrant so a callback that re-subscribes or unsubscribes
    from inside a delivery does not deadlock.
    """

    def __init__(self, session_factory: sessionmaker[Session], feed: ChangeFeed) -> None:
        self._session_factory = session_factory
        self._feed = feed
        self._lock = threading.RLock()
        self._handles: dict[str, Subscription] = {}

    # --- Public API ---

    def subscribe_to_messages(
        self,
        conversation_id: UUID,
        on_message: MessageCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Receive every new message of a conversation, with sender identity.

        Args:
            conversation_id: The conversation to watch.
            on_message: Called once per inserted message.
            on_error: Called if a re-read or the callback fails; the handle
                is torn down afterwards and may be re-established.

        Returns:
            The Subscription handle.
        """

        def deliver(notification: Notification) -> None:
            on_message(self._read(get_message, notification.pk))

        return self._register(
            key=messages_key(conversation_id),
            relation=MESSAGES,
            predicate=column_eq("conversation_id", conversation_id),
            kinds=(INSERT,),
            deliver=deliver,
            on_error=on_error,
        )

    def subscribe_to_conversations(
        self,
        user_id: UUID,
        on_update: ConversationCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Receive a fresh summary whenever one of the user's conversations changes.

        Fires on conversation creation and on every new message (through the
        last_message_at bump).

        Args:
            user_id: The participant whose conversations to watch.
            on_update: Called with the summary projected for user_id.
            on_error: Called if a re-read or the callback fails; the handle
                is torn down afterwards and may be re-established.

        Returns:
            The Subscription handle.
        """

        def deliver(notification: Notification) -> None:
            on_update(self._read(get_summary, notification.pk, user_id))

        return self._register(
            key=conversations_key(user_id),
            relation=CONVERSATIONS,
            predicate=any_column_eq(("participant_a", "participant_b"), user_id),
            kinds=(INSERT, UPDATE),
            deliver=deliver,
            on_error=on_error,
        )

    def unsubscribe(self, key: str) -> None:
        """Tear down whatever handle currently holds ``key``. No-op if none."""
        with self._lock:
            subscription = self._handles.pop(key, None)
        if subscription is not None:
            subscription._teardown()
            logger.debug("subscription_removed", subscription_key=key)

    def close_all(self) -> None:
        """Tear down every live handle."""
        with self._lock:
            subscriptions = list(self._handles.values())
            self._handles.clear()

        for subscription in subscriptions:
            subscription._teardown()

        if subscriptions:
            logger.info("subscriptions_closed", count=len(subscriptions))

    def get(self, key: str) -> Subscription | None:
        with self._lock:
            return self._handles.get(key)

    @property
    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._handles)

    # --- Internals ---

    def _read(self, fn: Callable, *args):
        """Run a store read in a fresh, short-lived session."""
        db = self._session_factory()
        try:
            return fn(db, *args)
        finally:
            db.close()

    def _register(
        self,
        key: str,
        relation: str,
        predicate: Predicate,
        kinds: Iterable[str],
        deliver: Callable[[Notification], None],
        on_error: ErrorCallback | None,
    ) -> Subscription:
        subscription = Subscription(self, key)

        def handler(notification: Notification) -> None:
            set_subscription_context(key)
            try:
                deliver(notification)
            finally:
                set_subscription_context(None)

        def failed(error: BaseException) -> None:
            logger.warning(
                "subscription_failed",
                subscription_key=key,
                error_type=type(error).__name__,
                error=str(error),
            )
            try:
                if on_error is not None:
                    on_error(error)
            finally:
                subscription.unsubscribe()

        with self._lock:
            previous = self._handles.pop(key, None)
            if previous is not None:
                previous._teardown()
                logger.info("subscription_replaced", subscription_key=key)

            subscription._channel = self._feed.subscribe(
                relation,
                predicate,
                handler,
                kinds=kinds,
                on_error=failed,
                name=key,
            )
            self._handles[key] = subscription

        logger.debug("subscription_opened", subscription_key=key)
        return subscription

    def _release(self, subscription: Subscription) -> None:
        with self._lock:
            if self._handles.get(subscription.key) is subscription:
                del self._handles[subscription.key]
        subscription._teardown()
