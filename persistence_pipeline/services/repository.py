"""
Repository facade over the unit of work.

Reads go straight to the session; every mutation goes through the unit of
work, so audit stamps, soft deletes and events are applied on save.

Usage:
    from persistence_pipeline.services.repository import Repository

    uow = UnitOfWork(db, registry)
    post_repo = Repository(Post, uow)

    post = post_repo.find_by_id(42)
    page = post_repo.get_list(Post.blog_id == 1, order_by=Post.id, index=0, size=20)
    post_repo.delete(post, save_immediately=True)  # soft delete with cascade

    # With eager loading
    post_repo.get(Post.id == 42, options=[selectinload(Post.comments)])
"""

from __future__ import annotations

from typing import Any, Generic, Iterable, Sequence, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from persistence_pipeline.models import Base, SoftDeleteMixin
from persistence_pipeline.schemas import Paginate
from persistence_pipeline.services.query import INCLUDE_DELETED
from persistence_pipeline.services.unit_of_work import SaveResult, UnitOfWork

ModelT = TypeVar("ModelT", bound=Base)


class Repository(Generic[ModelT]):
    """
    Generic add/update/delete/query/paginate for one model.

    Every mutating method accepts save_immediately; otherwise the change
    is saved by the next save_changes() of any repository sharing the
    unit of work.
    """

    def __init__(self, model: type[ModelT], unit_of_work: UnitOfWork):
        self._model = model
        self._uow = unit_of_work

    @property
    def model(self) -> type[ModelT]:
        """The SQLAlchemy model class."""
        return self._model

    @property
    def unit_of_work(self) -> UnitOfWork:
        return self._uow

    @property
    def session(self) -> Session:
        """The database session."""
        return self._uow.session

    # =========================================================================
    # Queries
    # =========================================================================

    def _apply_deleted_filter(self, query: Select, with_deleted: bool) -> Select:
        """Hide soft-deleted rows unless asked for them."""
        if with_deleted:
            return query.execution_options(**{INCLUDE_DELETED: True})
        if issubclass(self._model, SoftDeleteMixin):
            query = query.where(self._model.is_deleted.is_(False))
        return query

    def _apply_options(self, query: Select, options: list[Any] | None) -> Select:
        """Apply eager loading options."""
        if options:
            query = query.options(*options)
        return query

    def _fetch(self, query: Select, tracking: bool) -> list[ModelT]:
        """
        Run a select. Untracked reads detach whatever the query brought into
        the session (eager-loaded relations included); entities the session
        already tracked stay attached.
        """
        if tracking:
            return list(self.session.scalars(query).all())

        tracked = list(self.session.identity_map.values())
        before = {id(entity) for entity in tracked}
        with self.session.no_autoflush:
            items = list(self.session.scalars(query).all())
        for entity in list(self.session.identity_map.values()):
            if id(entity) not in before:
                self.session.expunge(entity)
        return items

    def query(self, *criteria: Any, with_deleted: bool = False) -> Select:
        """Select statement for the model, filtered by criteria."""
        query = select(self._model)
        if criteria:
            query = query.where(*criteria)
        return self._apply_deleted_filter(query, with_deleted)

    def get(
        self,
        *criteria: Any,
        options: list[Any] | None = None,
        with_deleted: bool = False,
        tracking: bool = True,
    ) -> ModelT | None:
        """
        First entity matching the criteria.

        Args:
            criteria: SQLAlchemy where clauses
            options: SQLAlchemy loader options (selectinload, joinedload)
            with_deleted: Include soft-deleted entities
            tracking: False returns entities detached from the session, so
                changes to them are not saved. Relations not loaded eagerly
                through options cannot be loaded later.

        Returns:
            Entity or None if not found.
        """
        query = self._apply_options(self.query(*criteria, with_deleted=with_deleted), options)
        items = self._fetch(query.limit(1), tracking)
        return items[0] if items else None

    def find_by_id(
        self,
        entity_id: Any,
        *,
        options: list[Any] | None = None,
        with_deleted: bool = False,
        tracking: bool = True,
    ) -> ModelT | None:
        """Find entity by primary key."""
        return self.get(self._model.id == entity_id, options=options, with_deleted=with_deleted, tracking=tracking)

    def get_list(
        self,
        *criteria: Any,
        options: list[Any] | None = None,
        order_by: Any | None = None,
        index: int = 0,
        size: int = 10,
        with_deleted: bool = False,
        tracking: bool = True,
    ) -> Paginate:
        """
        One page of entities matching the criteria.

        Args:
            criteria: SQLAlchemy where clauses
            options: SQLAlchemy loader options
            order_by: Column, expression or list of them
            index: Zero-based page index
            size: Page size
            with_deleted: Include soft-deleted entities
            tracking: False returns detached entities

        Returns:
            Paginate with the page items and the total count.
        """
        if size < 1:
            raise ValueError(f"Page size must be at least 1, got {size}")
        if index < 0:
            raise ValueError(f"Page index must not be negative, got {index}")

        query = self.query(*criteria, with_deleted=with_deleted)
        count = self._count(query, with_deleted)
        if count == 0:
            return Paginate.from_items([], index, size, 0)

        if order_by is not None:
            order = order_by if isinstance(order_by, (list, tuple)) else [order_by]
            query = query.order_by(*order)
        query = self._apply_options(query, options)
        items = self._fetch(query.offset(index * size).limit(size), tracking)
        return Paginate.from_items(items, index, size, count)

    def any(self, *criteria: Any, with_deleted: bool = False) -> bool:
        """Whether any entity matches the criteria. Loads no entities."""
        query = select(self.query(*criteria, with_deleted=with_deleted).exists())
        if with_deleted:
            query = query.execution_options(**{INCLUDE_DELETED: True})
        return bool(self.session.scalar(query))

    def count(self, *criteria: Any, with_deleted: bool = False) -> int:
        """Count entities matching the criteria. Loads no entities."""
        return self._count(self.query(*criteria, with_deleted=with_deleted), with_deleted)

    def _count(self, query: Select, with_deleted: bool) -> int:
        count_query = select(func.count()).select_from(query.order_by(None).subquery())
        if with_deleted:
            count_query = count_query.execution_options(**{INCLUDE_DELETED: True})
        return self.session.scalar(count_query) or 0

    # =========================================================================
    # Mutations
    # =========================================================================

    def add(self, entity: ModelT, save_immediately: bool = False) -> ModelT:
        """Add entity to the unit of work."""
        self.session.add(entity)
        self._save_if(save_immediately)
        return entity

    def add_range(self, entities: Iterable[ModelT], save_immediately: bool = False) -> list[ModelT]:
        """Add multiple entities to the unit of work."""
        entities = list(entities)
        self.session.add_all(entities)
        self._save_if(save_immediately)
        return entities

    def update(self, entity: ModelT, save_immediately: bool = False) -> ModelT:
        """Attach a changed entity (possibly detached) to the unit of work."""
        self.session.add(entity)
        self._save_if(save_immediately)
        return entity

    def update_range(self, entities: Iterable[ModelT], save_immediately: bool = False) -> list[ModelT]:
        """Attach multiple changed entities to the unit of work."""
        entities = list(entities)
        self.session.add_all(entities)
        self._save_if(save_immediately)
        return entities

    def delete(
        self,
        entity: ModelT,
        permanent: bool = False,
        save_immediately: bool = False,
    ) -> ModelT:
        """
        Delete an entity.

        Soft-deletable entities are soft deleted together with their cascade
        dependents unless permanent is True; other entities are removed.

        Raises:
            IntegrityPolicyViolation: One-to-one guard failed
            RelationshipLoadFailure: Cascade walk failed
        """
        self._uow.request_delete(entity, permanent=permanent)
        self._save_if(save_immediately)
        return entity

    def delete_range(
        self,
        entities: Sequence[ModelT],
        permanent: bool = False,
        save_immediately: bool = False,
    ) -> Sequence[ModelT]:
        """Delete multiple entities. A failure stops at the failing entity."""
        for entity in entities:
            self._uow.request_delete(entity, permanent=permanent)
        self._save_if(save_immediately)
        return entities

    def save_changes(self, actor_id: str | None = None) -> SaveResult:
        """Run the save pipeline for the whole unit of work."""
        return self._uow.save(actor_id=actor_id)

    def _save_if(self, save_immediately: bool) -> None:
        if save_immediately:
            self._uow.save()
