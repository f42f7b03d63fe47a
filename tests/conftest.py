"""
Pytest configuration and fixtures for pipeline tests.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy.pool import StaticPool

from persistence_pipeline.models import Base, event_sequence
from persistence_pipeline.services.events import InProcessEventDispatcher
from persistence_pipeline.services.metadata import RelationshipRegistry
from persistence_pipeline.services.query import PipelineSession
from persistence_pipeline.services.stamper import AuditStamper
from persistence_pipeline.services.unit_of_work import UnitOfWork
from shared.infrastructure.context import StaticIdentityProvider
from shared.infrastructure.db import build_engine, build_session_factory

# Registers the sample tables on Base.metadata
import sample_models  # noqa: F401


ACTOR_ID = "user-42"

# SQLite in-memory database shared by every session of a test
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = build_engine(SQLALCHEMY_DATABASE_URL, poolclass=StaticPool, echo=False)
TestingSessionLocal = build_session_factory(engine, session_class=PipelineSession)


@pytest.fixture(autouse=True)
def reset_event_sequence():
    """Every test starts with the process-wide event counter at zero."""
    event_sequence.reset()
    yield
    event_sequence.reset()


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    Uses SQLite in-memory for isolation.
    """
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="session")
def metadata():
    """Relationship metadata for every sample model."""
    return RelationshipRegistry.from_registry(Base.registry).freeze()


@pytest.fixture
def dispatched():
    """Payloads observed by the in-process dispatcher, in dispatch order."""
    return []


@pytest.fixture
def dispatcher(dispatched):
    dispatcher = InProcessEventDispatcher()
    dispatcher.subscribe("*", dispatched.append)
    return dispatcher


@pytest.fixture
def uow(db_session, metadata, dispatcher):
    """Unit of work acting as ACTOR_ID."""
    return UnitOfWork(
        db_session,
        metadata,
        identity=StaticIdentityProvider(ACTOR_ID),
        dispatcher=dispatcher,
    )


@pytest.fixture
def make_uow(metadata, dispatcher):
    """Build further units of work, e.g. with a fake clock."""

    def _make(session, actor_id=ACTOR_ID, **kwargs):
        kwargs.setdefault("dispatcher", dispatcher)
        return UnitOfWork(session, metadata, identity=StaticIdentityProvider(actor_id), **kwargs)

    return _make


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, delta):
        self.now = self.now + delta


@pytest.fixture
def fake_clock():
    return FakeClock(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def fake_stamper(fake_clock):
    return AuditStamper(clock=fake_clock)
