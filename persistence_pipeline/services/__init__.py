"""
Save pipeline services.

Stages, in the order save() runs them:
- classifier: snapshot and partition the pending mutations
- stamper: audit stamps and concurrency tokens
- soft_delete: cascading soft delete
- events: pre-commit event flush

unit_of_work ties them together; repository is the facade callers use.
"""

from persistence_pipeline.services.classifier import (
    ChangeSet,
    Mutation,
    MutationKind,
    classify,
    collect_mutations,
)
from persistence_pipeline.services.events import (
    DomainEvent,
    EventFlusher,
    EventType,
    InProcessEventDispatcher,
    RedisEventDispatcher,
)
from persistence_pipeline.services.metadata import (
    CascadeBehavior,
    RelationshipDescriptor,
    RelationshipRegistry,
)
from persistence_pipeline.services.query import (
    INCLUDE_DELETED,
    PipelineSession,
    SqlAlchemyQueryExecutor,
    install_soft_delete_filter,
)
from persistence_pipeline.services.repository import Repository
from persistence_pipeline.services.soft_delete import DeleteOutcome, DeletionPlan, SoftDeleteResolver
from persistence_pipeline.services.stamper import AuditStamper, StampLedger
from persistence_pipeline.services.unit_of_work import SaveResult, UnitOfWork

__all__ = [
    # Classification
    "ChangeSet",
    "Mutation",
    "MutationKind",
    "classify",
    "collect_mutations",
    # Stamping
    "AuditStamper",
    "StampLedger",
    # Metadata and queries
    "CascadeBehavior",
    "RelationshipDescriptor",
    "RelationshipRegistry",
    "INCLUDE_DELETED",
    "PipelineSession",
    "SqlAlchemyQueryExecutor",
    "install_soft_delete_filter",
    # Soft delete
    "DeleteOutcome",
    "DeletionPlan",
    "SoftDeleteResolver",
    # Events
    "DomainEvent",
    "EventType",
    "EventFlusher",
    "InProcessEventDispatcher",
    "RedisEventDispatcher",
    # Pipeline
    "SaveResult",
    "UnitOfWork",
    "Repository",
]
