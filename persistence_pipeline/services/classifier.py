"""
Change classification for one save cycle.

The classifier takes a snapshot of the pending mutations and buckets each
entity by capability and mutation kind. The snapshot is discarded after
commit. classify() is pure: it touches neither entities nor the store and
may be called any number of times.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from sqlalchemy.orm import Session

from persistence_pipeline.models import (
    ConcurrencyStampMixin,
    CreationAuditedMixin,
    EventSourceMixin,
    ModificationAuditedMixin,
)


class MutationKind(str, Enum):
    """What happened to an entity in the current unit of work."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True, slots=True)
class Mutation:
    """
    One pending change.

    Attributes:
        entity: The touched entity
        kind: Mutation kind
        permanent: For REMOVED, physical removal was requested
    """

    entity: Any
    kind: MutationKind
    permanent: bool = False


@dataclass(frozen=True, slots=True)
class ChangeSet:
    """Partitions produced by classify()."""

    to_stamp: tuple[Mutation, ...] = ()
    to_delete: tuple[Mutation, ...] = ()
    event_sources: tuple[Any, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.to_stamp or self.to_delete or self.event_sources)


def needs_stamp(mutation: Mutation) -> bool:
    """Whether the stamper has anything to do for this mutation."""
    entity = mutation.entity
    if mutation.kind is MutationKind.ADDED:
        return isinstance(entity, (CreationAuditedMixin, ConcurrencyStampMixin))
    if mutation.kind is MutationKind.MODIFIED:
        return isinstance(entity, (ModificationAuditedMixin, ConcurrencyStampMixin))
    return False


def classify(mutations: Iterable[Mutation], tracked: Iterable[Any] = ()) -> ChangeSet:
    """
    Partition mutations into to_stamp, to_delete and event_sources.

    Args:
        mutations: Pending mutations of the unit of work
        tracked: Further entities of the unit of work that were not mutated
            but may hold buffered events

    Returns:
        ChangeSet. Entities without a relevant capability are left out of
        the corresponding partition.
    """
    to_stamp: list[Mutation] = []
    to_delete: list[Mutation] = []
    event_sources: list[Any] = []
    seen_sources: set[int] = set()

    def _add_source(entity: Any) -> None:
        if isinstance(entity, EventSourceMixin) and id(entity) not in seen_sources:
            seen_sources.add(id(entity))
            event_sources.append(entity)

    for mutation in mutations:
        if mutation.kind is MutationKind.REMOVED:
            to_delete.append(mutation)
        elif needs_stamp(mutation):
            to_stamp.append(mutation)
        _add_source(mutation.entity)

    for entity in tracked:
        _add_source(entity)

    return ChangeSet(tuple(to_stamp), tuple(to_delete), tuple(event_sources))


def collect_mutations(
    session: Session,
    delete_requests: Iterable[Mutation] = (),
) -> list[Mutation]:
    """
    Snapshot the session's pending state as a list of mutations.

    - session.new: ADDED
    - session.dirty with changed column or reference values: MODIFIED
    - session.deleted: REMOVED, permanent (the caller removed it directly)
    - delete_requests: REMOVED as requested

    Each entity appears once; a delete request wins over any other kind.
    """
    requested = {id(m.entity) for m in delete_requests}
    mutations: list[Mutation] = []

    for entity in session.new:
        if id(entity) not in requested:
            mutations.append(Mutation(entity, MutationKind.ADDED))

    for entity in session.dirty:
        if id(entity) in requested:
            continue
        if session.is_modified(entity, include_collections=False):
            mutations.append(Mutation(entity, MutationKind.MODIFIED))

    for entity in session.deleted:
        if id(entity) not in requested:
            mutations.append(Mutation(entity, MutationKind.REMOVED, permanent=True))

    mutations.extend(delete_requests)
    return mutations


def tracked_entities(session: Session) -> list[Any]:
    """Every entity the session currently tracks (persistent and pending)."""
    return list(session.identity_map.values()) + list(session.new)
