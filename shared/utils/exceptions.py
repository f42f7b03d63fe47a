"""
Centralized pipeline exceptions for consistent error handling.

Every error is typed and logs itself once, with structured context, when
raised. None of them is used for normal control flow.

Usage:
    from shared.utils.exceptions import IntegrityPolicyViolation, ConcurrencyConflict

    raise IntegrityPolicyViolation(entity, "exclusively referenced through a unique foreign key")
    raise ConcurrencyConflict("Post", 42)
"""

from typing import Any

from shared.config.logging import get_logger

logger = get_logger(__name__)


def describe_entity(entity: Any) -> tuple[str, Any]:
    """Return (type name, id) for log context and messages."""
    return type(entity).__name__, getattr(entity, "id", None)


class PipelineError(Exception):
    """
    Base exception with automatic logging.

    All pipeline exceptions inherit from this class
    to ensure consistent logging and message format.
    """

    def __init__(
        self,
        detail: str,
        log_level: str = "warning",
        **log_context: Any,
    ):
        # Log the error with context
        log_fn = getattr(logger, log_level, logger.warning)
        log_fn(detail, error_type=type(self).__name__, **log_context)

        self.detail = detail
        self.context = log_context
        super().__init__(detail)


# =============================================================================
# Delete policy errors
# =============================================================================


class IntegrityPolicyViolation(PipelineError):
    """
    A soft delete would break the store's integrity policy.

    Raised when the entity is held only through one-to-one relationships:
    the unique foreign key would stay occupied by the soft-deleted row and
    block re-creation with the same key. No entity state is changed.
    """

    def __init__(self, entity: Any, reason: str | None = None, **log_context: Any):
        entity_type, entity_id = describe_entity(entity)
        reason = reason or (
            "entity has a one-to-one relationship; soft delete would keep the "
            "unique foreign key occupied and block re-creation with the same key"
        )
        super().__init__(
            f"Cannot soft delete {entity_type} {entity_id}: {reason}",
            entity_type=entity_type,
            entity_id=entity_id,
            **log_context,
        )
        self.entity = entity


class RelationshipLoadFailure(PipelineError):
    """
    Metadata lookup or lazy load failed during a cascade walk.

    The whole cascade for the top-level request is aborted and nothing
    is soft-deleted.
    """

    def __init__(
        self,
        entity: Any,
        navigation: str | None = None,
        cause: BaseException | None = None,
        **log_context: Any,
    ):
        entity_type, entity_id = describe_entity(entity)
        if navigation:
            detail = f"Failed to load '{navigation}' of {entity_type} {entity_id}"
        else:
            detail = f"Failed to resolve relationships of {entity_type} {entity_id}"
        if cause is not None:
            detail = f"{detail}: {cause}"
        super().__init__(
            detail,
            log_level="error",
            entity_type=entity_type,
            entity_id=entity_id,
            navigation=navigation,
            **log_context,
        )
        self.entity = entity
        self.navigation = navigation
        self.cause = cause


class MetadataLookupError(RelationshipLoadFailure):
    """No relationship metadata is registered for the entity type."""

    def __init__(self, entity_type: type, **log_context: Any):
        self.entity_type = entity_type
        PipelineError.__init__(
            self,
            f"No relationship metadata registered for {entity_type.__name__}",
            log_level="error",
            entity_type=entity_type.__name__,
            **log_context,
        )
        self.entity = None
        self.navigation = None
        self.cause = None


# =============================================================================
# Commit errors
# =============================================================================


class ConcurrencyConflict(PipelineError):
    """
    Stale concurrency stamp detected at commit.

    Never retried by the pipeline; retry policy is the caller's decision.
    """

    def __init__(
        self,
        entity_type: str | None = None,
        entity_id: Any = None,
        cause: BaseException | None = None,
        **log_context: Any,
    ):
        if entity_type and entity_id is not None:
            detail = f"{entity_type} {entity_id} was changed by another unit of work"
        elif entity_type:
            detail = f"A {entity_type} row was changed by another unit of work"
        else:
            detail = "A row was changed by another unit of work"
        super().__init__(
            detail,
            entity_type=entity_type,
            entity_id=entity_id,
            **log_context,
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.cause = cause


class DispatchFailure(PipelineError):
    """
    An event dispatch call failed during the pre-commit flush.

    Events dispatched before the failing one have already been observed by
    their consumers; dispatched_count reports how many. The store commit
    does not run.
    """

    def __init__(
        self,
        payload: Any,
        dispatched_count: int,
        cause: BaseException | None = None,
        **log_context: Any,
    ):
        payload_type = type(payload).__name__
        detail = (
            f"Dispatch of {payload_type} failed after {dispatched_count} "
            f"event(s) were already dispatched"
        )
        if cause is not None:
            detail = f"{detail}: {cause}"
        super().__init__(
            detail,
            log_level="error",
            payload_type=payload_type,
            dispatched_count=dispatched_count,
            **log_context,
        )
        self.payload = payload
        self.dispatched_count = dispatched_count
        self.cause = cause


class SaveCancelled(PipelineError):
    """Cancellation was observed before commit; no events were dispatched."""

    def __init__(self, stage: str, **log_context: Any):
        super().__init__(
            f"Save cancelled before {stage}",
            log_level="info",
            stage=stage,
            **log_context,
        )
        self.stage = stage


# =============================================================================
# Entity errors
# =============================================================================


class IdentityReassignmentError(PipelineError):
    """An entity's identity key was changed after it was first assigned."""

    def __init__(self, entity: Any, new_id: Any, **log_context: Any):
        entity_type, entity_id = describe_entity(entity)
        super().__init__(
            f"{entity_type} identity is immutable: cannot change {entity_id} to {new_id}",
            entity_type=entity_type,
            entity_id=entity_id,
            new_id=new_id,
            **log_context,
        )
