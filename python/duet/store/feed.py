"""Change feed for row-level insert/update notifications.

Provides a pub/sub mechanism that turns committed writes on the messaging
relations into notifications, filtered per subscriber by relation, event
kind and a row predicate.

Architecture:
    - Writers stage notifications on their Session (stage_change)
    - ChangeFeed.bind() hooks the session factory: staged notifications are
      published after the transaction commits and dropped on rollback
    - Notifications are lightweight: primary key, event kind and a possibly
      partial row. Subscribers re-read the row for the full picture
    - Delivery runs synchronously in the committing thread, in staging order.
      Ordering across independent writers is not guaranteed

Subscribers receive a Channel; Channel.close() is idempotent and safe to call
from inside a handler.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import event
from sqlalchemy.orm import Session, sessionmaker

from duet.logging import get_logger

logger = get_logger(__name__)

# Relations published on the feed
CONVERSATIONS = "conversations"
MESSAGES = "messages"

# Event kinds
INSERT = "insert"
UPDATE = "update"
ALL_KINDS = frozenset({INSERT, UPDATE})

# Session.info key holding notifications staged in the current transaction
PENDING_KEY = "duet_pending_notifications"


@dataclass(frozen=True)
class Notification:
    """A committed row change.

    ``row`` may carry only some columns; consumers must not assume it is complete.
    """

    relation: str
    kind: str
    pk: UUID
    row: dict[str, Any] = field(default_factory=dict)


Predicate = Callable[[Notification], bool]
Handler = Callable[[Notification], None]
ErrorHandler = Callable[[BaseException], None]


def column_eq(column: str, value: Any) -> Predicate:
    """Match notifications whose row carries ``column == value``."""

    def predicate(notification: Notification) -> bool:
        return column in notification.row and notification.row[column] == value

    return predicate


def any_column_eq(columns: Iterable[str], value: Any) -> Predicate:
    """Match notifications where any of ``columns`` equals ``value``."""
    checks = [column_eq(column, value) for column in columns]

    def predicate(notification: Notification) -> bool:
        return any(check(notification) for check in checks)

    return predicate


def stage_change(
    db: Session,
    relation: str,
    kind: str,
    pk: UUID,
    row: dict[str, Any] | None = None,
) -> None:
    """Stage a notification to be published when ``db`` commits.

    Harmless on sessions whose factory is not bound to a feed: the staged
    entries are simply discarded with the session.
    """
    db.info.setdefault(PENDING_KEY, []).append(
        Notification(relation=relation, kind=kind, pk=pk, row=dict(row or {}))
    )


class Channel:
    """One live subscription on the feed."""

    def __init__(
        self,
        feed: ChangeFeed,
        name: str,
        relation: str,
        kinds: frozenset[str],
        predicate: Predicate,
        handler: Handler,
        on_error: ErrorHandler | None = None,
    ) -> None:
        self.name = name
        self.relation = relation
        self.kinds = kinds
        self._feed = feed
        self._predicate = predicate
        self._handler = handler
        self._on_error = on_error
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def matches(self, notification: Notification) -> bool:
        if self.closed:
            return False
        if notification.relation != self.relation or notification.kind not in self.kinds:
            return False
        return self._predicate(notification)

    def deliver(self, notification: Notification) -> None:
        """Run the handler; failures go to on_error and never reach the writer."""
        if self.closed:
            return
        try:
            self._handler(notification)
        except Exception as e:
            logger.exception("channel_handler_failed", channel=self.name)
            self.fail(e)

    def fail(self, error: BaseException) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception("channel_error_handler_failed", channel=self.name)

    def close(self) -> None:
        """Stop delivery. Idempotent."""
        if self._closed.is_set():
            return
        self._closed.set()
        self._feed._remove(self)
        logger.debug("channel_closed", channel=self.name)


class ChangeFeed:
    """In-process change feed for the messaging relations.

    Thread safety: the channel list is guarded by a lock; handlers run
    outside it so they may subscribe or close channels themselves.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._channels: list[Channel] = []
        self._bound: list[sessionmaker[Session]] = []

    def bind(self, session_factory: sessionmaker[Session]) -> None:
        """Publish notifications staged on sessions from ``session_factory``. Idempotent."""
        if any(bound is session_factory for bound in self._bound):
            return
        self._bound.append(session_factory)
        event.listen(session_factory, "after_commit", self._after_commit)
        event.listen(session_factory, "after_rollback", self._after_rollback)

    def _after_commit(self, session: Session) -> None:
        pending = session.info.pop(PENDING_KEY, [])
        for notification in pending:
            self.publish(notification)

    def _after_rollback(self, session: Session) -> None:
        dropped = session.info.pop(PENDING_KEY, [])
        if dropped:
            logger.debug("notifications_dropped_on_rollback", count=len(dropped))

    def subscribe(
        self,
        relation: str,
        predicate: Predicate,
        handler: Handler,
        kinds: Iterable[str] = ALL_KINDS,
        on_error: ErrorHandler | None = None,
        name: str | None = None,
    ) -> Channel:
        """Open a channel receiving matching notifications until closed.

        Args:
            relation: CONVERSATIONS or MESSAGES.
            predicate: Row filter evaluated against each notification.
            handler: Called once per matching notification.
            kinds: Event kinds to receive (INSERT, UPDATE).
            on_error: Called if the handler raises.
            name: Label used in logs.

        Returns:
            The open Channel.
        """
        kinds = frozenset(kinds)
        unknown = kinds - ALL_KINDS
        if unknown:
            raise ValueError(f"Unknown event kinds: {sorted(unknown)}")

        channel = Channel(
            feed=self,
            name=name or f"{relation}:{id(handler):x}",
            relation=relation,
            kinds=kinds,
            predicate=predicate,
            handler=handler,
            on_error=on_error,
        )
        with self._lock:
            self._channels.append(channel)
        logger.debug("channel_opened", channel=channel.name, relation=relation)
        return channel

    def publish(self, notification: Notification) -> None:
        """Deliver a notification to every matching open channel."""
        with self._lock:
            targets = [c for c in self._channels if c.matches(notification)]

        for channel in targets:
            channel.deliver(notification)

    def _remove(self, channel: Channel) -> None:
        with self._lock:
            if channel in self._channels:
                self._channels.remove(channel)

    @property
    def channel_count(self) -> int:
        with self._lock:
            return len(self._channels)

    def close_all(self) -> None:
        """Close every open channel."""
        with self._lock:
            channels = list(self._channels)
        for channel in channels:
            channel.close()


# --- Global singleton ---

_change_feed: ChangeFeed | None = None


def get_change_feed() -> ChangeFeed:
    """Get the global change feed, creating it on first call."""
    global _change_feed
    if _change_feed is None:
        _change_feed = ChangeFeed()
    return _change_feed


def set_change_feed(feed: ChangeFeed | None) -> None:
    """Replace the global change feed (tests and app wiring)."""
    global _change_feed
    _change_feed = feed
