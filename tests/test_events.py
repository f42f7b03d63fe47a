"""
Tests for buffered domain events.

Tests verify:
- Process-wide sequence numbers shared by every aggregate
- Event queues on aggregates loaded from the store
- The flush algorithm and partial-dispatch reporting
- DomainEvent serialization
"""

import json
import threading
from unittest.mock import MagicMock

import pytest

from persistence_pipeline.models import DomainEventRecord, EventSequence, event_sequence
from persistence_pipeline.services.events import DomainEvent, EventFlusher, EventType
from sample_models import Blog, Post, Tag
from shared.utils.exceptions import DispatchFailure


class TestEventSequence:

    def test_monotonic(self):
        sequence = EventSequence()

        assert [sequence.next() for _ in range(3)] == [1, 2, 3]
        assert sequence.last == 3

    def test_explicit_reset(self):
        sequence = EventSequence()
        sequence.next()

        sequence.reset(100)

        assert sequence.next() == 101

    def test_thread_safe(self):
        sequence = EventSequence()
        seen = []
        lock = threading.Lock()

        def worker():
            values = [sequence.next() for _ in range(500)]
            with lock:
                seen.extend(values)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(seen) == list(range(1, 4001))


class TestEventSourceMixin:

    def test_shared_counter_across_aggregates(self):
        blog = Blog(name="a")
        post = Post(title="b")

        first = blog.add_local_event("one")
        second = post.add_distributed_event("two")
        third = blog.add_distributed_event("three")

        assert (first.sequence_number, second.sequence_number, third.sequence_number) == (1, 2, 3)
        assert event_sequence.last == 3

    def test_queues_are_independent(self):
        blog = Blog(name="a")
        blog.add_local_event("local")
        blog.add_distributed_event("remote")

        blog.clear_local_events()

        assert blog.local_events == ()
        assert [r.payload for r in blog.distributed_events] == ["remote"]
        assert blog.has_pending_events

    def test_loaded_aggregate_gets_empty_queues(self, uow, db_session):
        blog = Blog(name="stored")
        db_session.add(blog)
        uow.save()
        blog_id = blog.id
        db_session.expunge_all()

        loaded = db_session.get(Blog, blog_id)

        assert loaded is not blog
        assert loaded.local_events == ()
        assert not loaded.has_pending_events


class TestEventFlusher:
    """Tests for the flush algorithm, with mock dispatchers."""

    def test_local_then_distributed_per_aggregate(self):
        dispatcher = MagicMock()
        blog = Blog(name="a")
        blog.add_distributed_event("remote-1")
        blog.add_local_event("local-1")
        blog.add_local_event("local-2")

        dispatched = EventFlusher(dispatcher).flush([blog])

        assert dispatched == 3
        assert [c.args[0] for c in dispatcher.dispatch.call_args_list] == ["local-1", "local-2", "remote-1"]
        assert not blog.has_pending_events

    def test_aggregates_ordered_by_first_pending_event(self):
        dispatcher = MagicMock()
        late = Blog(name="late")
        early = Blog(name="early")
        early.add_local_event("early")
        late.add_local_event("late")

        EventFlusher(dispatcher).flush([late, early, Tag(label="not a source")])

        assert [c.args[0] for c in dispatcher.dispatch.call_args_list] == ["early", "late"]

    def test_separate_distributed_dispatcher(self):
        local = MagicMock()
        remote = MagicMock()
        blog = Blog(name="a")
        blog.add_local_event("local")
        blog.add_distributed_event("remote")

        EventFlusher(local, remote).flush([blog])

        local.dispatch.assert_called_once_with("local")
        remote.dispatch.assert_called_once_with("remote")

    def test_failure_reports_dispatched_count(self):
        dispatcher = MagicMock()
        dispatcher.dispatch.side_effect = [None, None, ConnectionError("down")]
        first = Blog(name="first")
        second = Blog(name="second")
        first.add_local_event("a")
        first.add_distributed_event("b")
        second.add_local_event("c")

        with pytest.raises(DispatchFailure) as exc_info:
            EventFlusher(dispatcher).flush([first, second])

        assert exc_info.value.dispatched_count == 2
        assert exc_info.value.payload == "c"
        assert isinstance(exc_info.value.cause, ConnectionError)
        assert not first.has_pending_events
        assert [r.payload for r in second.local_events] == ["c"]

    def test_nothing_pending(self):
        dispatcher = MagicMock()

        assert EventFlusher(dispatcher).flush([Blog(name="quiet")]) == 0
        dispatcher.dispatch.assert_not_called()


class TestDomainEvent:

    def test_json_round_trip(self):
        event = DomainEvent(
            event_type=EventType.ENTITY_UPDATED,
            entity_type="Post",
            entity_id=7,
            actor_id="alice",
            payload={"title": "new"},
        )

        restored = DomainEvent.from_json(event.to_json())

        assert restored == event

    def test_to_dict_shape(self):
        data = DomainEvent(EventType.ENTITY_CREATED, "Tag", 1).to_dict()

        assert data["type"] == "ENTITY_CREATED"
        assert data["entity_type"] == "Tag"
        assert json.loads(json.dumps(data))["timestamp"] == data["timestamp"]

    def test_factories(self):
        blog = Blog(name="a")
        post = Post(title="b")

        created = DomainEvent.entity_created(post, actor_id="alice")
        deleted_root = DomainEvent.entity_deleted(blog, cascade_root=blog)
        deleted_child = DomainEvent.entity_deleted(post, cascade_root=blog)

        assert created.event_type is EventType.ENTITY_CREATED
        assert created.entity_type == "Post"
        assert deleted_root.payload is None
        assert deleted_child.payload == {"cascade_root_type": "Blog", "cascade_root_id": None}

    def test_record_is_immutable(self):
        record = DomainEventRecord("payload", 1)

        with pytest.raises(AttributeError):
            record.sequence_number = 2
