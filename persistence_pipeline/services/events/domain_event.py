"""
Entity lifecycle events.

DomainEvent is the payload the pipeline buffers on its own (ENTITY_DELETED
for soft-deleted aggregates). Applications may buffer any other payload;
dispatchers treat this one like the rest.

Wire form (to_dict / to_json):
    {"type": "ENTITY_DELETED", "entity_type": "Post", "entity_id": 12,
     "actor_id": "user-42", "payload": {...}, "timestamp": "2024-...+00:00"}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EventType(str, Enum):
    ENTITY_CREATED = "ENTITY_CREATED"
    ENTITY_UPDATED = "ENTITY_UPDATED"
    ENTITY_DELETED = "ENTITY_DELETED"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class DomainEvent:
    """
    Something that happened to one entity.

    Attributes:
        event_type: Lifecycle step
        entity_type: Class name of the entity (e.g. "Post")
        entity_id: Identity of the entity; None before the first flush
        actor_id: Acting user of the save that produced the event
        payload: JSON-serializable details
        timestamp: Creation time of the event (UTC)
    """

    event_type: EventType
    entity_type: str
    entity_id: Any
    actor_id: str | None = None
    payload: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=_utc_now)

    @classmethod
    def for_entity(
        cls,
        event_type: EventType,
        entity: Any,
        actor_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> DomainEvent:
        return cls(event_type, type(entity).__name__, getattr(entity, "id", None), actor_id, payload)

    @classmethod
    def entity_created(cls, entity: Any, actor_id: str | None = None, payload: dict[str, Any] | None = None) -> DomainEvent:
        return cls.for_entity(EventType.ENTITY_CREATED, entity, actor_id, payload)

    @classmethod
    def entity_updated(cls, entity: Any, actor_id: str | None = None, payload: dict[str, Any] | None = None) -> DomainEvent:
        return cls.for_entity(EventType.ENTITY_UPDATED, entity, actor_id, payload)

    @classmethod
    def entity_deleted(cls, entity: Any, actor_id: str | None = None, cascade_root: Any = None) -> DomainEvent:
        """
        ENTITY_DELETED for a soft-deleted entity.

        When the delete was requested for another entity (cascade_root) and
        reached this one through the cascade, the payload names that root.
        """
        payload = None
        if cascade_root is not None and cascade_root is not entity:
            payload = {
                "cascade_root_type": type(cascade_root).__name__,
                "cascade_root_id": getattr(cascade_root, "id", None),
            }
        return cls.for_entity(EventType.ENTITY_DELETED, entity, actor_id, payload)

    # =========================================================================
    # Wire form
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.event_type.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DomainEvent:
        """Inverse of to_dict(). Also accepts "event_type" as the type key."""
        raw_timestamp = data.get("timestamp")
        return cls(
            event_type=EventType(data["type"] if "type" in data else data["event_type"]),
            entity_type=data["entity_type"],
            entity_id=data["entity_id"],
            actor_id=data.get("actor_id"),
            payload=data.get("payload"),
            timestamp=datetime.fromisoformat(raw_timestamp) if raw_timestamp else _utc_now(),
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> DomainEvent:
        return cls.from_dict(json.loads(raw))
