"""
Persistence pipeline for SQLAlchemy.

Stamps audit metadata, enforces optimistic-concurrency tokens, soft deletes
across relationship graphs and dispatches buffered domain events on save.

Usage:
    from persistence_pipeline import (
        Base, EntityMixin, FullAuditedMixin, RelationshipRegistry,
        PipelineSession, UnitOfWork, Repository,
    )

    registry = RelationshipRegistry.from_registry(Base.registry).freeze()
    with get_db_context(build_session_factory(engine, PipelineSession)) as db:
        posts = Repository(Post, UnitOfWork(db, registry))
        posts.delete(posts.find_by_id(42), save_immediately=True)
"""

from persistence_pipeline.models import (
    AuditedMixin,
    Base,
    ConcurrencyStampMixin,
    CreationAuditedMixin,
    DomainEventRecord,
    EntityMixin,
    EventSourceMixin,
    ExtraPropertiesMixin,
    FullAuditedMixin,
    ModificationAuditedMixin,
    SoftDeleteMixin,
    event_sequence,
)
from persistence_pipeline.schemas import (
    AuditedEntityDto,
    CreationAuditedEntityDto,
    FullAuditedEntityDto,
    Paginate,
)
from persistence_pipeline.services import (
    DeleteOutcome,
    DomainEvent,
    InProcessEventDispatcher,
    PipelineSession,
    RedisEventDispatcher,
    RelationshipRegistry,
    Repository,
    SaveResult,
    UnitOfWork,
)

__all__ = [
    # Models
    "Base",
    "EntityMixin",
    "CreationAuditedMixin",
    "ModificationAuditedMixin",
    "SoftDeleteMixin",
    "ConcurrencyStampMixin",
    "EventSourceMixin",
    "ExtraPropertiesMixin",
    "AuditedMixin",
    "FullAuditedMixin",
    "DomainEventRecord",
    "event_sequence",
    # Schemas
    "Paginate",
    "CreationAuditedEntityDto",
    "AuditedEntityDto",
    "FullAuditedEntityDto",
    # Pipeline
    "RelationshipRegistry",
    "PipelineSession",
    "UnitOfWork",
    "Repository",
    "SaveResult",
    "DeleteOutcome",
    "DomainEvent",
    "InProcessEventDispatcher",
    "RedisEventDispatcher",
]
