"""
Domain events: payload type, dispatchers and the pre-commit flush.
"""

from persistence_pipeline.services.events.dispatcher import (
    EventDispatcher,
    InProcessEventDispatcher,
    RedisEventDispatcher,
    serialize_payload,
)
from persistence_pipeline.services.events.domain_event import DomainEvent, EventType
from persistence_pipeline.services.events.flusher import EventFlusher

__all__ = [
    "DomainEvent",
    "EventType",
    "EventDispatcher",
    "InProcessEventDispatcher",
    "RedisEventDispatcher",
    "serialize_payload",
    "EventFlusher",
]
