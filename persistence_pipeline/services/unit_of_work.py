"""
Unit of work: the save pipeline.

One save() runs these stages in order, sequentially:

1. Classify the session's pending mutations plus queued delete requests
2. Stamp creation/modification audit and rotate concurrency tokens
3. Re-resolve and apply the deletion plans (soft deletes become updates)
4. Flush buffered domain events to the dispatchers
5. Commit

Events are dispatched before the commit. Consumers may observe an event
for a change whose commit then fails; a failing dispatch aborts the save
after earlier events have gone out (see DispatchFailure.dispatched_count).

A flush the caller runs before save() (to obtain an autoincrement id, say)
stamps the rows it writes. Audit stamps belong to the save cycle, which
ends at commit or rollback: an entity stamped by such a flush is not
stamped again by the save that follows. Delete plans and events are only
applied by save().

Usage:
    with get_db_context(factory) as db:
        uow = UnitOfWork(db, registry, dispatcher=InProcessEventDispatcher())
        db.add(Blog(name="Engineering"))
        uow.request_delete(old_post)
        result = uow.save(actor_id="user-42")
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from persistence_pipeline.models import ConcurrencyStampMixin
from persistence_pipeline.services.classifier import (
    Mutation,
    MutationKind,
    classify,
    collect_mutations,
    tracked_entities,
)
from persistence_pipeline.services.events.dispatcher import EventDispatcher, InProcessEventDispatcher
from persistence_pipeline.services.events.flusher import EventFlusher
from persistence_pipeline.services.metadata import RelationshipMetadataProvider
from persistence_pipeline.services.query import QueryExecutor, SqlAlchemyQueryExecutor
from persistence_pipeline.services.soft_delete import (
    DeleteOutcome,
    DeletionPlan,
    SoftDeleteResolver,
    plan_entities,
)
from persistence_pipeline.services.stamper import AuditStamper, StampLedger
from shared.config.logging import get_logger
from shared.config.settings import settings
from shared.infrastructure.context import ContextIdentityProvider, correlation_context
from shared.infrastructure.db import safe_commit
from shared.utils.exceptions import ConcurrencyConflict, SaveCancelled

logger = get_logger(__name__)

# session.info keys shared by every unit of work bound to the same session
_LEDGER_KEY = "pipeline_stamp_ledger"
_SAVING_KEY = "pipeline_saving"

# StaleDataError names the table: "UPDATE statement on table 'posts' expected ..."
_STALE_TABLE = re.compile(r"table '([^']+)'")


class IdentityProvider(Protocol):
    def current_actor_id(self) -> str | None:
        ...


class CancellationSignal(Protocol):
    """Anything with is_set(), e.g. threading.Event."""

    def is_set(self) -> bool:
        ...


@dataclass(frozen=True, slots=True)
class SaveResult:
    """
    Outcome of one save.

    Attributes:
        committed_count: Entities inserted, updated or deleted by the commit
            (ORM delete cascades of unloaded children and rows written by an
            earlier flush are not counted)
        dispatched_count: Domain events dispatched before the commit
        soft_deleted_count: Entities marked deleted in this save
    """

    committed_count: int
    dispatched_count: int = 0
    soft_deleted_count: int = 0


def cycle_ledger(session: Session) -> StampLedger:
    """Stamp ledger of the session's current save cycle."""
    ledger = session.info.get(_LEDGER_KEY)
    if ledger is None:
        ledger = session.info[_LEDGER_KEY] = StampLedger()
    return ledger


def _end_cycle(session: Session, *_: Any) -> None:
    session.info.pop(_LEDGER_KEY, None)


class UnitOfWork:
    """
    Save pipeline over one SQLAlchemy session.

    Args:
        session: Session whose pending changes are saved
        metadata: Relationship metadata for the cascade walk
        identity: Supplies the actor id when save() gets none, and for
            flushes outside save()
        dispatcher: Receives local events (and distributed ones when no
            distributed dispatcher is given)
        distributed_dispatcher: Receives distributed events
        stamper: Audit stamper (clock and token factory are injectable)
        query_executor: Loads navigations during the cascade walk
    """

    def __init__(
        self,
        session: Session,
        metadata: RelationshipMetadataProvider,
        identity: IdentityProvider | None = None,
        dispatcher: EventDispatcher | None = None,
        distributed_dispatcher: EventDispatcher | None = None,
        stamper: AuditStamper | None = None,
        query_executor: QueryExecutor | None = None,
    ):
        self.session = session
        self._identity = identity or ContextIdentityProvider()
        self._stamper = stamper or AuditStamper()
        self._resolver = SoftDeleteResolver(metadata, query_executor or SqlAlchemyQueryExecutor(session))
        self._flusher = EventFlusher(dispatcher or InProcessEventDispatcher(), distributed_dispatcher)
        self._plans: list[DeletionPlan] = []

        event.listen(session, "before_flush", self._stamp_before_flush)
        for name in ("after_commit", "after_soft_rollback"):
            if not event.contains(session, name, _end_cycle):
                event.listen(session, name, _end_cycle)

    @property
    def pending_deletes(self) -> tuple[DeletionPlan, ...]:
        return tuple(self._plans)

    # =========================================================================
    # Delete requests
    # =========================================================================

    def request_delete(self, entity: Any, permanent: bool = False) -> DeleteOutcome:
        """
        Queue a delete for the next save().

        The cascade is resolved now, so policy violations and load failures
        are raised here and nothing is queued. save() walks the cascade
        again, so dependents attached in between are deleted as well.

        Returns:
            The outcome the next save() will apply. Requesting a soft delete
            for an entity already queued returns ALREADY_DELETED.

        Raises:
            IntegrityPolicyViolation: One-to-one guard failed
            RelationshipLoadFailure: Metadata or navigation load failed
        """
        if not permanent and id(entity) in plan_entities(self._plans):
            return DeleteOutcome.ALREADY_DELETED

        plan = self._resolver.plan(entity, permanent=permanent)
        if plan.outcome is not DeleteOutcome.ALREADY_DELETED:
            self._plans.append(plan)

        logger.debug(
            "Delete requested",
            entity_type=type(entity).__name__,
            entity_id=getattr(entity, "id", None),
            permanent=permanent,
            outcome=plan.outcome.value,
            cascade_size=len(plan.entities),
        )
        return plan.outcome

    def discard_pending_deletes(self) -> None:
        self._plans.clear()

    # =========================================================================
    # Save
    # =========================================================================

    def save(
        self,
        actor_id: str | None = None,
        cancel_event: CancellationSignal | None = None,
    ) -> SaveResult:
        """
        Run the pipeline and commit.

        Args:
            actor_id: Acting user; defaults to the identity provider's value
            cancel_event: Checked before events are dispatched. Once events
                are out the save runs to completion.

        Raises:
            SaveCancelled: Cancellation observed before dispatch
            DispatchFailure: A dispatch call failed; nothing was committed
            ConcurrencyConflict: A concurrency token was stale at commit
            IntegrityPolicyViolation, RelationshipLoadFailure: Re-resolving
                a queued delete failed

        Any error rolls the session back and drops the queued deletes.
        """
        if actor_id is None:
            actor_id = self._identity.current_actor_id()

        self.session.info[_SAVING_KEY] = True
        with correlation_context() as correlation_id:
            try:
                return self._run(actor_id, cancel_event, correlation_id)
            except Exception:
                self.session.rollback()
                raise
            finally:
                self._plans.clear()
                self.session.info.pop(_SAVING_KEY, None)
                _end_cycle(self.session)

    def _run(
        self,
        actor_id: str | None,
        cancel_event: CancellationSignal | None,
        correlation_id: str,
    ) -> SaveResult:
        _check_cancelled(cancel_event, "classification")

        # Classify
        delete_requests = [
            Mutation(plan.root, MutationKind.REMOVED, permanent=plan.outcome is DeleteOutcome.PERMANENTLY_REMOVED)
            for plan in self._plans
        ]
        mutations = collect_mutations(self.session, delete_requests)
        change_set = classify(mutations, tracked_entities(self.session))
        logger.debug(
            "Changes classified",
            to_stamp=len(change_set.to_stamp),
            to_delete=len(change_set.to_delete),
            event_sources=len(change_set.event_sources),
        )

        # Stamp
        ledger = cycle_ledger(self.session)
        self._stamper.stamp_all(change_set.to_stamp, actor_id, ledger)

        # Resolve deletes
        deletion_time = self._stamper.now()
        soft_deleted = 0
        for plan in self._plans:
            soft_deleted += self._resolver.apply(
                self._resolver.refresh(plan),
                self.session,
                actor_id,
                deletion_time,
                self._stamper,
                ledger,
                emit_events=settings.emit_deletion_events,
            )

        # Dispatch
        _check_cancelled(cancel_event, "dispatch")
        event_sources = classify((), tracked_entities(self.session)).event_sources
        dispatched = self._flusher.flush(event_sources)

        # Commit
        committed = len(collect_mutations(self.session))
        versioned = _versioned_entities(self.session)
        try:
            safe_commit(self.session)
        except StaleDataError as e:
            entity_type, entity_id = _stale_entity(e, versioned)
            raise ConcurrencyConflict(entity_type, entity_id, cause=e, correlation_id=correlation_id) from e

        logger.info(
            "Unit of work saved",
            committed=committed,
            dispatched=dispatched,
            soft_deleted=soft_deleted,
            actor_id=actor_id,
        )
        return SaveResult(committed, dispatched, soft_deleted)

    # =========================================================================
    # Flushes outside save()
    # =========================================================================

    def _stamp_before_flush(self, session: Session, flush_context: Any, instances: Any) -> None:
        if session.info.get(_SAVING_KEY):
            return
        change_set = classify(collect_mutations(session))
        stamped = self._stamper.stamp_all(
            change_set.to_stamp,
            self._identity.current_actor_id(),
            cycle_ledger(session),
        )
        if stamped:
            logger.debug("Stamped rows flushed before save", stamped=stamped)


def _check_cancelled(cancel_event: CancellationSignal | None, stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise SaveCancelled(stage)


def _versioned_entities(session: Session) -> list[Any]:
    """Concurrency-tracked entities the commit will update or delete."""
    return [
        entity
        for entity in (*session.dirty, *session.deleted)
        if isinstance(entity, ConcurrencyStampMixin)
    ]


def _stale_entity(error: StaleDataError, candidates: list[Any]) -> tuple[str | None, Any]:
    """
    (type name, id) of the entity whose stamp was stale, as far as the error
    tells. The id is only known when one candidate maps to the table.
    """
    match = _STALE_TABLE.search(str(error))
    if match:
        candidates = [e for e in candidates if type(e).__table__.name == match.group(1)]
    if not candidates:
        return None, None
    if len(candidates) > 1:
        return type(candidates[0]).__name__, None
    identity = inspect(candidates[0]).identity
    return type(candidates[0]).__name__, identity[0] if identity else None
