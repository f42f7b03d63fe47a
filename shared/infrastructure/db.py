"""
Database configuration and session management.
Uses SQLAlchemy 2.0 patterns.
"""

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from shared.config.settings import settings, DATABASE_URL


def build_engine(url: str | None = None, **engine_kwargs: Any) -> Engine:
    """
    Create an engine for the configured store.

    SQLite URLs get check_same_thread disabled so sessions can be handed
    between threads of the same process.
    """
    url = url or DATABASE_URL
    if url.startswith("sqlite"):
        engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        engine_kwargs.setdefault("pool_pre_ping", True)  # Verify connections before using
    engine_kwargs.setdefault("echo", settings.database_echo)
    return create_engine(url, **engine_kwargs)


def build_session_factory(
    bind: Engine,
    session_class: type[Session] = Session,
) -> sessionmaker:
    """
    Create a session factory.

    Pass persistence_pipeline.services.query.PipelineSession as session_class
    to hide soft-deleted rows from ordinary queries.
    """
    return sessionmaker(
        bind=bind,
        class_=session_class,
        autoflush=False,
        expire_on_commit=True,
    )


# Create engine lazily connected on first use
engine = build_engine()

# Session factory
SessionLocal = build_session_factory(engine)


@contextmanager
def get_db_context(factory: sessionmaker | None = None) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with get_db_context() as db:
            uow = UnitOfWork(db, registry)
            ...

    The session is always closed on exit.
    """
    db = (factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()


def safe_commit(db: Session) -> None:
    """
    Safe commit with automatic rollback on failure.

    Raises the original exception after rolling back.
    """
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
