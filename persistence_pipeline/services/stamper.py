"""
Audit stamping for the save pipeline.

- Added entities: creation time (unless the caller set one) and creator id
- Modified entities: modification time, modifier id and a fresh
  concurrency token, every time

The StampLedger guarantees that no entity is stamped twice in one save
cycle, even when the soft-delete resolver turns extra rows into updates
after the regular stamping pass.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from persistence_pipeline.models import (
    ConcurrencyStampMixin,
    CreationAuditedMixin,
    ModificationAuditedMixin,
    new_concurrency_stamp,
    utcnow,
)
from persistence_pipeline.services.classifier import Mutation, MutationKind
from shared.config.logging import get_logger

logger = get_logger(__name__)

_TICK = timedelta(microseconds=1)


class StampLedger:
    """Entities already stamped in the current save cycle."""

    def __init__(self) -> None:
        # Holds the entities so their ids stay unique for the whole cycle
        self._stamped: dict[int, Any] = {}

    def __contains__(self, entity: Any) -> bool:
        return id(entity) in self._stamped

    def __len__(self) -> int:
        return len(self._stamped)

    def record(self, entity: Any) -> None:
        self._stamped[id(entity)] = entity


class AuditStamper:
    """
    Applies audit metadata and rotates concurrency tokens.

    Args:
        clock: Returns the current timezone-aware time
        token_factory: Returns a fresh opaque concurrency token
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        token_factory: Callable[[], str] = new_concurrency_stamp,
    ):
        self._clock = clock
        self._token_factory = token_factory

    def now(self) -> datetime:
        return self._clock()

    def stamp_created(self, entity: Any, actor_id: str | None) -> bool:
        """Stamp creation audit. Returns False if the entity is not creation-audited."""
        if not isinstance(entity, CreationAuditedMixin):
            return False
        entity.set_creation_time(self._clock())
        entity.set_creator_id(actor_id)
        return True

    def stamp_modified(self, entity: Any, actor_id: str | None) -> bool:
        """
        Overwrite modification audit. Returns False if the entity is not
        modification-audited.

        The new time is strictly later than the previous one, even when the
        clock has not advanced between two saves.
        """
        if not isinstance(entity, ModificationAuditedMixin):
            return False
        now = self._clock()
        previous = entity.last_modification_time
        if previous is not None and now <= previous:
            now = previous + _TICK
        entity.set_last_modification_time(now)
        entity.set_last_modifier_id(actor_id)
        return True

    def rotate_concurrency_token(self, entity: Any) -> str | None:
        """
        Replace the concurrency token. The store compares the previously
        loaded token at commit; a mismatch is reported by the unit of work.
        """
        if not isinstance(entity, ConcurrencyStampMixin):
            return None
        token = self._token_factory()
        entity.concurrency_stamp = token
        return token

    def stamp(self, mutation: Mutation, actor_id: str | None, ledger: StampLedger) -> bool:
        """Stamp one mutation unless already stamped this cycle."""
        entity = mutation.entity
        if entity in ledger:
            return False

        if mutation.kind is MutationKind.ADDED:
            self.stamp_created(entity, actor_id)
            if isinstance(entity, ConcurrencyStampMixin) and not entity.concurrency_stamp:
                entity.concurrency_stamp = self._token_factory()
        elif mutation.kind is MutationKind.MODIFIED:
            self.stamp_modified(entity, actor_id)
            self.rotate_concurrency_token(entity)
        else:
            return False

        ledger.record(entity)
        return True

    def stamp_all(
        self,
        mutations: Iterable[Mutation],
        actor_id: str | None,
        ledger: StampLedger,
    ) -> int:
        """Stamp every mutation. Returns how many entities were stamped."""
        stamped = sum(1 for mutation in mutations if self.stamp(mutation, actor_id, ledger))
        if stamped:
            logger.debug("Audit stamps applied", stamped=stamped, actor_id=actor_id)
        return stamped
