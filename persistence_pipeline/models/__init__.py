"""
Models: declarative base, capability mixins and buffered domain events.
"""

from .base import (
    Base,
    UtcDateTime,
    EntityMixin,
    CreationAuditedMixin,
    ModificationAuditedMixin,
    SoftDeleteMixin,
    ConcurrencyStampMixin,
    ExtraPropertiesMixin,
    AuditedMixin,
    FullAuditedMixin,
    new_concurrency_stamp,
    utcnow,
)
from .events import (
    DomainEventRecord,
    EventSequence,
    EventSourceMixin,
    event_sequence,
)

__all__ = [
    # Base
    "Base",
    "UtcDateTime",
    "utcnow",
    "new_concurrency_stamp",
    # Capabilities
    "EntityMixin",
    "CreationAuditedMixin",
    "ModificationAuditedMixin",
    "SoftDeleteMixin",
    "ConcurrencyStampMixin",
    "ExtraPropertiesMixin",
    "AuditedMixin",
    "FullAuditedMixin",
    # Events
    "DomainEventRecord",
    "EventSequence",
    "EventSourceMixin",
    "event_sequence",
]
