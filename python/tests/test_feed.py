"""Tests for the change feed.

Tests cover:
- Notifications publish only after commit and are dropped on rollback
- Relation, kind and predicate filtering
- Handler failures are isolated and routed to on_error
- Channel close is idempotent
"""

from uuid import uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from duet.store.feed import (
    CONVERSATIONS,
    INSERT,
    MESSAGES,
    UPDATE,
    ChangeFeed,
    Notification,
    any_column_eq,
    column_eq,
    stage_change,
)
from tests.helpers import Recorder


def _always(notification: Notification) -> bool:
    return True


class TestCommitBoundary:
    def test_published_after_commit(self, feed, db_session):
        recorder = Recorder()
        feed.subscribe(MESSAGES, _always, recorder)

        db_session.execute(text("SELECT 1"))
        pk = uuid4()
        stage_change(db_session, MESSAGES, INSERT, pk, {"conversation_id": uuid4()})
        assert recorder.count == 0

        db_session.commit()
        assert recorder.count == 1
        assert recorder.last.pk == pk
        assert recorder.last.kind == INSERT

    def test_dropped_on_rollback(self, feed, db_session):
        recorder = Recorder()
        feed.subscribe(MESSAGES, _always, recorder)

        db_session.execute(text("SELECT 1"))
        stage_change(db_session, MESSAGES, INSERT, uuid4())
        db_session.rollback()
        db_session.commit()

        assert recorder.count == 0

    def test_staging_on_unbound_session_is_harmless(self, engine, feed):
        """Sessions from a factory the feed was never bound to publish nothing."""
        recorder = Recorder()
        feed.subscribe(MESSAGES, _always, recorder)

        with Session(engine) as session:
            stage_change(session, MESSAGES, INSERT, uuid4())
            session.commit()

        assert recorder.count == 0

    def test_bind_is_idempotent(self, feed, session_factory):
        """Binding the same factory twice does not double-deliver."""
        feed.bind(session_factory)
        recorder = Recorder()
        feed.subscribe(MESSAGES, _always, recorder)

        session = session_factory()
        session.execute(text("SELECT 1"))
        stage_change(session, MESSAGES, INSERT, uuid4())
        session.commit()
        session.close()

        assert recorder.count == 1


class TestFiltering:
    def test_relation_and_kind(self):
        feed = ChangeFeed()
        inserts = Recorder()
        updates = Recorder()
        feed.subscribe(CONVERSATIONS, _always, inserts, kinds=[INSERT])
        feed.subscribe(CONVERSATIONS, _always, updates, kinds=[UPDATE])

        feed.publish(Notification(CONVERSATIONS, UPDATE, uuid4()))
        feed.publish(Notification(MESSAGES, INSERT, uuid4()))

        assert inserts.count == 0
        assert updates.count == 1

    def test_column_predicates(self):
        feed = ChangeFeed()
        user_id = uuid4()
        mine = Recorder()
        feed.subscribe(
            CONVERSATIONS, any_column_eq(("participant_a", "participant_b"), user_id), mine
        )

        feed.publish(Notification(CONVERSATIONS, INSERT, uuid4(), {"participant_b": user_id}))
        feed.publish(Notification(CONVERSATIONS, INSERT, uuid4(), {"participant_a": uuid4()}))
        feed.publish(Notification(CONVERSATIONS, INSERT, uuid4(), {}))

        assert mine.count == 1

    def test_partial_row_without_column_does_not_match(self):
        predicate = column_eq("conversation_id", uuid4())
        assert not predicate(Notification(MESSAGES, INSERT, uuid4(), {"id": uuid4()}))

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError, match="delete"):
            ChangeFeed().subscribe(MESSAGES, _always, Recorder(), kinds=["delete"])


class TestChannels:
    def test_handler_failure_goes_to_on_error(self):
        feed = ChangeFeed()
        failure = RuntimeError("handler broke")
        errors = Recorder()
        healthy = Recorder()
        feed.subscribe(MESSAGES, _always, Recorder(raise_with=failure), on_error=errors)
        feed.subscribe(MESSAGES, _always, healthy)

        feed.publish(Notification(MESSAGES, INSERT, uuid4()))

        assert errors.calls == [failure]
        assert healthy.count == 1

    def test_close_is_idempotent(self):
        feed = ChangeFeed()
        recorder = Recorder()
        channel = feed.subscribe(MESSAGES, _always, recorder)

        channel.close()
        channel.close()
        feed.publish(Notification(MESSAGES, INSERT, uuid4()))

        assert channel.closed
        assert feed.channel_count == 0
        assert recorder.count == 0

    def test_close_all(self):
        feed = ChangeFeed()
        channels = [feed.subscribe(MESSAGES, _always, Recorder()) for _ in range(3)]

        feed.close_all()

        assert feed.channel_count == 0
        assert all(c.closed for c in channels)

    def test_handler_may_close_its_own_channel(self):
        feed = ChangeFeed()
        holder = {}

        def close_self(notification):
            holder["channel"].close()

        holder["channel"] = feed.subscribe(MESSAGES, _always, close_self)
        feed.publish(Notification(MESSAGES, INSERT, uuid4()))

        assert holder["channel"].closed
