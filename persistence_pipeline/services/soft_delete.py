"""
Cascading soft delete.

A delete request is resolved in two phases:

- plan(): runs when the delete is requested. Decides the outcome, applies
  the one-to-one guard and walks every cascade navigation, loading what
  is not yet in memory. Nothing is changed on any entity, so a failure at
  any node leaves the whole graph untouched.
- refresh(): runs inside save(). Walks the cascade again so dependents
  attached since the request are included.
- apply(): runs inside save(). Marks every planned entity deleted with one
  deletion time and registers it as an update; non-soft-deletable
  dependents are removed from the session.

Usage:
    resolver = SoftDeleteResolver(registry, SqlAlchemyQueryExecutor(db))
    plan = resolver.plan(blog)
    ...
    resolver.apply(plan, db, actor_id, deletion_time, stamper, ledger)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Sequence

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from persistence_pipeline.models import EventSourceMixin, SoftDeleteMixin
from persistence_pipeline.services.classifier import Mutation, MutationKind
from persistence_pipeline.services.events.domain_event import DomainEvent
from persistence_pipeline.services.metadata import RelationshipDescriptor, RelationshipMetadataProvider
from persistence_pipeline.services.query import NOT_LOADED, QueryExecutor
from persistence_pipeline.services.stamper import AuditStamper, StampLedger
from shared.config.logging import get_logger
from shared.utils.exceptions import IntegrityPolicyViolation, PipelineError, RelationshipLoadFailure

logger = get_logger(__name__)


class DeleteOutcome(str, Enum):
    """Terminal state of one delete request."""

    PERMANENTLY_REMOVED = "permanently_removed"
    SOFT_DELETED = "soft_deleted"
    ALREADY_DELETED = "already_deleted"


@dataclass(slots=True)
class DeletionPlan:
    """
    Result of resolving one delete request.

    Attributes:
        root: The entity the delete was requested for
        outcome: Terminal state of the request
        soft_deletes: Entities to mark deleted, dependents before their principal
        permanent_removals: Entities to remove physically
    """

    root: Any
    outcome: DeleteOutcome
    soft_deletes: list[Any] = field(default_factory=list)
    permanent_removals: list[Any] = field(default_factory=list)

    @property
    def entities(self) -> list[Any]:
        return self.soft_deletes + self.permanent_removals


def violates_one_to_one_policy(descriptors: Sequence[RelationshipDescriptor]) -> bool:
    """
    True when the entity holds a foreign key and every relationship it takes
    part in is one-to-one: it is referenced exclusively through a unique key
    that a soft-deleted row would keep occupied.
    """
    if not any(d.is_on_dependent for d in descriptors):
        return False
    return all(d.is_one_to_one for d in descriptors)


def _as_list(value: Any, descriptor: RelationshipDescriptor) -> list[Any]:
    if value is None:
        return []
    if descriptor.is_collection:
        return list(value)
    return [value]


class SoftDeleteResolver:
    """
    Turns delete requests into deletion plans and applies them.

    Args:
        metadata: Relationship metadata per entity type
        query_executor: Loads navigations that are not in memory yet
    """

    def __init__(self, metadata: RelationshipMetadataProvider, query_executor: QueryExecutor):
        self._metadata = metadata
        self._query = query_executor

    # =========================================================================
    # Planning
    # =========================================================================

    def plan(self, entity: Any, permanent: bool = False) -> DeletionPlan:
        """
        Resolve a delete request without changing any entity.

        Raises:
            IntegrityPolicyViolation: The root or a cascaded dependent is held
                only through one-to-one relationships
            RelationshipLoadFailure: Metadata lookup or navigation load failed
        """
        if permanent or not isinstance(entity, SoftDeleteMixin):
            return DeletionPlan(entity, DeleteOutcome.PERMANENTLY_REMOVED, permanent_removals=[entity])

        self._guard(entity)

        if entity.is_deleted:
            logger.debug("Entity already soft deleted", entity_type=type(entity).__name__, entity_id=entity.id)
            return DeletionPlan(entity, DeleteOutcome.ALREADY_DELETED)

        soft_deletes, removals = self._walk(entity)
        return DeletionPlan(entity, DeleteOutcome.SOFT_DELETED, soft_deletes, removals)

    def refresh(self, plan: DeletionPlan) -> DeletionPlan:
        """
        Walk a soft-delete plan's cascade again.

        Dependents attached after the plan was made are picked up; the guard
        runs again for them. Other outcomes are returned unchanged.
        """
        if plan.outcome is not DeleteOutcome.SOFT_DELETED:
            return plan
        soft_deletes, removals = self._walk(plan.root)
        return DeletionPlan(plan.root, plan.outcome, soft_deletes, removals)

    def _descriptors(self, entity: Any) -> Sequence[RelationshipDescriptor]:
        try:
            return self._metadata.for_entity(type(entity))
        except PipelineError:
            raise
        except Exception as e:
            raise RelationshipLoadFailure(entity, cause=e) from e

    def _guard(self, entity: Any) -> None:
        if violates_one_to_one_policy(self._descriptors(entity)):
            raise IntegrityPolicyViolation(entity)

    def _walk(self, root: Any) -> tuple[list[Any], list[Any]]:
        """
        Depth-first walk over cascade navigations with an explicit stack.

        Each node is emitted after all of its dependents. Identities are
        visited once, so cyclic graphs terminate.
        """
        visited = {id(root)}
        soft_deletes: list[Any] = []
        removals: list[Any] = []
        stack: list[tuple[Any, bool]] = [(root, False)]

        while stack:
            node, expanded = stack.pop()
            if expanded:
                soft_deletes.append(node)
                continue

            stack.append((node, True))
            for dependent in reversed(self._dependents(node)):
                if id(dependent) in visited:
                    continue
                visited.add(id(dependent))

                if not isinstance(dependent, SoftDeleteMixin):
                    removals.append(dependent)
                    continue
                self._guard(dependent)
                if dependent.is_deleted:
                    continue
                stack.append((dependent, False))

        return soft_deletes, removals

    def _dependents(self, entity: Any) -> list[Any]:
        dependents: list[Any] = []
        for descriptor in self._descriptors(entity):
            if not descriptor.cascades:
                continue

            value = self._query.materialized(entity, descriptor.navigation_name)
            if value is not NOT_LOADED:
                dependents.extend(_as_list(value, descriptor))
                continue

            try:
                dependents.extend(self._query.load_navigation(entity, descriptor))
            except PipelineError:
                raise
            except Exception as e:
                raise RelationshipLoadFailure(entity, descriptor.navigation_name, cause=e) from e
        return dependents

    # =========================================================================
    # Applying
    # =========================================================================

    def apply(
        self,
        plan: DeletionPlan,
        session: Session,
        actor_id: str | None,
        deletion_time: datetime,
        stamper: AuditStamper,
        ledger: StampLedger,
        emit_events: bool = True,
    ) -> int:
        """
        Apply a plan to the session. Returns how many entities were marked deleted.

        Entities already stamped this cycle are not stamped again; entities
        another plan of the same save already deleted are skipped.
        """
        for entity in plan.permanent_removals:
            remove_from_session(session, entity)

        marked = 0
        for entity in plan.soft_deletes:
            if entity.is_deleted:
                continue
            entity.mark_deleted(actor_id, deletion_time)
            stamper.stamp(Mutation(entity, MutationKind.MODIFIED), actor_id, ledger)
            if emit_events and isinstance(entity, EventSourceMixin):
                entity.add_local_event(DomainEvent.entity_deleted(entity, actor_id, cascade_root=plan.root))
            session.add(entity)
            marked += 1

        if plan.outcome is DeleteOutcome.SOFT_DELETED:
            logger.info(
                "Soft delete applied",
                entity_type=type(plan.root).__name__,
                entity_id=getattr(plan.root, "id", None),
                soft_deleted=marked,
                removed=len(plan.permanent_removals),
            )
        return marked


def remove_from_session(session: Session, entity: Any) -> None:
    """Physically remove an entity: delete it if persisted, drop it if only pending."""
    state = inspect(entity)
    if state.pending:
        session.expunge(entity)
    elif state.persistent or state.detached:
        session.delete(entity)


def plan_entities(plans: Iterable[DeletionPlan]) -> set[int]:
    """Identities covered by a group of plans."""
    return {id(entity) for plan in plans for entity in plan.entities}
