"""
Query side of the pipeline.

- SqlAlchemyQueryExecutor: loads navigations that are not yet materialized,
  filtered to rows that are not soft-deleted
- install_soft_delete_filter / PipelineSession: hide soft-deleted rows from
  every ORM SELECT unless the statement opts out with
  execution_options(include_deleted=True)
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria, with_parent

from persistence_pipeline.models import SoftDeleteMixin
from persistence_pipeline.services.metadata import RelationshipDescriptor


class _NotLoaded:
    def __repr__(self) -> str:
        return "NOT_LOADED"


# Returned by materialized() when the navigation needs a query
NOT_LOADED = _NotLoaded()

INCLUDE_DELETED = "include_deleted"


class QueryExecutor(Protocol):
    """Loads related entities for the cascade walk."""

    def materialized(self, entity: Any, navigation_name: str) -> Any:
        """Already-loaded navigation value, or NOT_LOADED. Never performs I/O."""
        ...

    def load_navigation(self, entity: Any, descriptor: RelationshipDescriptor) -> Sequence[Any]:
        """Query the navigation's targets that are not soft-deleted."""
        ...


class SqlAlchemyQueryExecutor:
    """QueryExecutor over a SQLAlchemy session."""

    def __init__(self, session: Session):
        self._session = session

    def materialized(self, entity: Any, navigation_name: str) -> Any:
        state = inspect(entity)
        if navigation_name in state.dict:
            return state.dict[navigation_name]
        if state.key is None:
            # Transient or pending: nothing persisted to load
            return None
        return NOT_LOADED

    def load_navigation(self, entity: Any, descriptor: RelationshipDescriptor) -> Sequence[Any]:
        target = descriptor.target_type
        navigation = getattr(type(entity), descriptor.navigation_name)

        stmt = select(target).where(with_parent(entity, navigation))
        if issubclass(target, SoftDeleteMixin):
            stmt = stmt.where(target.is_deleted.is_(False))
        # The deleted filter is explicit above
        stmt = stmt.execution_options(**{INCLUDE_DELETED: True})

        with self._session.no_autoflush:
            return list(self._session.scalars(stmt).all())


def _filter_soft_deleted(execute_state: ORMExecuteState) -> None:
    if (
        execute_state.is_select
        and not execute_state.is_column_load
        and not execute_state.is_relationship_load
        and not execute_state.execution_options.get(INCLUDE_DELETED, False)
    ):
        execute_state.statement = execute_state.statement.options(
            with_loader_criteria(
                SoftDeleteMixin,
                lambda cls: cls.is_deleted.is_(False),
                include_aliases=True,
            )
        )


def install_soft_delete_filter(target: Any) -> None:
    """
    Attach the global soft-delete filter to a Session class, sessionmaker
    or session instance. Installing twice is harmless.
    """
    if not event.contains(target, "do_orm_execute", _filter_soft_deleted):
        event.listen(target, "do_orm_execute", _filter_soft_deleted)


class PipelineSession(Session):
    """Session that hides soft-deleted rows from ordinary queries."""

    pass


install_soft_delete_filter(PipelineSession)
