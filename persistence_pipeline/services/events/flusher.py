"""
Pre-commit event flush.

For every aggregate with pending events, in order of its lowest pending
sequence number:
1. Dispatch local events in sequence order, then clear the local queue
2. Dispatch distributed events in sequence order, then clear the distributed queue

The flush runs before the store commit. A consumer may therefore observe
an event whose change is never persisted if the commit fails afterwards.

If a dispatch call fails the flush stops: aggregates visited earlier have
been dispatched and cleared, the failing aggregate keeps its queues, and
DispatchFailure reports how many events went out before the failure.
"""

from __future__ import annotations

from operator import attrgetter
from typing import Any, Iterable, Sequence

from persistence_pipeline.models import DomainEventRecord, EventSourceMixin
from persistence_pipeline.services.events.dispatcher import EventDispatcher
from shared.config.logging import get_logger
from shared.utils.exceptions import DispatchFailure

logger = get_logger(__name__)

_by_sequence = attrgetter("sequence_number")


def _lowest_sequence(source: EventSourceMixin) -> int:
    return min(record.sequence_number for record in source.local_events + source.distributed_events)


class EventFlusher:
    """
    Drains aggregate event queues into dispatchers.

    Args:
        dispatcher: Receives local events, and distributed events when no
            distributed dispatcher is given
        distributed_dispatcher: Receives distributed events
    """

    def __init__(
        self,
        dispatcher: EventDispatcher,
        distributed_dispatcher: EventDispatcher | None = None,
    ):
        self._local = dispatcher
        self._distributed = distributed_dispatcher or dispatcher

    def ordered(self, event_sources: Iterable[Any]) -> list[EventSourceMixin]:
        """Aggregates with pending events, earliest event first."""
        pending = [
            source
            for source in event_sources
            if isinstance(source, EventSourceMixin) and source.has_pending_events
        ]
        return sorted(pending, key=_lowest_sequence)

    def flush(self, event_sources: Iterable[Any]) -> int:
        """
        Dispatch and clear every pending event.

        Returns:
            Number of events dispatched

        Raises:
            DispatchFailure: A dispatch call raised
        """
        dispatched = 0
        for source in self.ordered(event_sources):
            dispatched = self._drain(source.local_events, self._local, dispatched)
            source.clear_local_events()
            dispatched = self._drain(source.distributed_events, self._distributed, dispatched)
            source.clear_distributed_events()

        if dispatched:
            logger.debug("Domain events dispatched", dispatched=dispatched)
        return dispatched

    @staticmethod
    def _drain(
        records: Sequence[DomainEventRecord],
        dispatcher: EventDispatcher,
        dispatched: int,
    ) -> int:
        for record in sorted(records, key=_by_sequence):
            try:
                dispatcher.dispatch(record.payload)
            except Exception as e:
                raise DispatchFailure(
                    record.payload,
                    dispatched,
                    cause=e,
                    sequence_number=record.sequence_number,
                ) from e
            dispatched += 1
        return dispatched
