"""
Execution context for the persistence pipeline.

Holds the acting user id and the correlation id of the current unit of work
in context variables, so they follow the caller across threads and tasks
without being threaded through every signature.
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

# Context variables (safe across threads and asyncio tasks)
actor_id_var: ContextVar[str | None] = ContextVar("actor_id", default=None)
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


def get_actor_id() -> str | None:
    """Get the acting user id of the current context."""
    return actor_id_var.get()


def get_correlation_id() -> str:
    """Get the current correlation id."""
    return correlation_id_var.get()


@contextmanager
def actor_context(actor_id: str | None) -> Iterator[None]:
    """
    Run a block on behalf of an actor.

    Usage:
        with actor_context("user-42"):
            uow.save()  # creator/modifier/deleter ids are "user-42"
    """
    token = actor_id_var.set(actor_id)
    try:
        yield
    finally:
        actor_id_var.reset(token)


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Iterator[str]:
    """
    Tag every log record emitted inside the block with a correlation id.
    Generates a new UUID when none is given.
    """
    correlation_id = correlation_id or uuid.uuid4().hex
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)


class ContextIdentityProvider:
    """
    Identity provider backed by the actor context variable.

    Usage:
        uow = UnitOfWork(session, registry, identity=ContextIdentityProvider())
    """

    def current_actor_id(self) -> str | None:
        return actor_id_var.get()


class StaticIdentityProvider:
    """Identity provider that always reports the same actor (jobs, scripts, tests)."""

    def __init__(self, actor_id: str | None):
        self._actor_id = actor_id

    def current_actor_id(self) -> str | None:
        return self._actor_id


class CorrelationIdFilter:
    """
    Logging filter that adds correlation_id and actor_id to log records.

    Usage:
        import logging
        handler = logging.StreamHandler()
        handler.addFilter(CorrelationIdFilter())
    """

    def filter(self, record) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        record.actor_id = actor_id_var.get()
        return True
