"""
Buffered domain events carried by aggregates.

Each aggregate keeps two independently ordered queues:
- local: side effects handled inside this process
- distributed: integration events that cross a process boundary

Every record takes its sequence number from one process-wide counter,
so events added to different aggregates in the same unit of work keep
their relative order.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class DomainEventRecord:
    """
    A buffered event.

    Attributes:
        payload: Opaque event data handed to the dispatcher as-is
        sequence_number: Position in the process-wide event order
    """

    payload: Any
    sequence_number: int


class EventSequence:
    """
    Process-wide, monotonically increasing event counter.

    Not persisted: it restarts with the process. The guarantee is relative
    order within one process lifetime, not uniqueness across restarts.
    """

    def __init__(self, start: int = 0):
        self._last = start
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._last += 1
            return self._last

    @property
    def last(self) -> int:
        return self._last

    def reset(self, start: int = 0) -> None:
        """Explicitly (re)initialize the counter."""
        with self._lock:
            self._last = start


# Shared by every aggregate in the process
event_sequence = EventSequence()


class EventSourceMixin:
    """
    Local and distributed event queues for an aggregate root.

    The queues are plain instance attributes, not mapped columns. Instances
    loaded from the store skip __init__, so the queues are created on first
    access.

    Example:
        class Order(EntityMixin, EventSourceMixin, Base):
            def ship(self) -> None:
                self.status = "SHIPPED"
                self.add_local_event(OrderShipped(self.id))
                self.add_distributed_event(OrderShippedIntegration(self.id))
    """

    def _event_queue(self, name: str) -> list[DomainEventRecord]:
        queue = self.__dict__.get(name)
        if queue is None:
            queue = []
            # Bypass attribute instrumentation; queues are not persisted
            self.__dict__[name] = queue
        return queue

    @property
    def local_events(self) -> tuple[DomainEventRecord, ...]:
        return tuple(self._event_queue("_local_events"))

    @property
    def distributed_events(self) -> tuple[DomainEventRecord, ...]:
        return tuple(self._event_queue("_distributed_events"))

    @property
    def has_pending_events(self) -> bool:
        return bool(self._event_queue("_local_events") or self._event_queue("_distributed_events"))

    def add_local_event(self, payload: Any) -> DomainEventRecord:
        record = DomainEventRecord(payload, event_sequence.next())
        self._event_queue("_local_events").append(record)
        return record

    def add_distributed_event(self, payload: Any) -> DomainEventRecord:
        record = DomainEventRecord(payload, event_sequence.next())
        self._event_queue("_distributed_events").append(record)
        return record

    def clear_local_events(self) -> None:
        self._event_queue("_local_events").clear()

    def clear_distributed_events(self) -> None:
        self._event_queue("_distributed_events").clear()
