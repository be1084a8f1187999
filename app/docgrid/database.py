"""
Database configuration and session management.

This module sets up the SQLAlchemy engine and session factory. PostgreSQL is
the production target; SQLite works for local development and tests.
"""

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import get_settings

settings = get_settings()
DATABASE_URL = settings.database_url


def _engine_kwargs(url: str) -> dict:
    """Pool options for the configured backend."""
    if url.startswith("sqlite"):
        # SQLite connections are shared between the request thread and
        # FastAPI's threadpool
        return {"connect_args": {"check_same_thread": False}}
    # - pool_pre_ping: Verify connections are alive before using them
    # - pool_size: Number of connections to keep in pool
    # - max_overflow: Number of connections to allow beyond pool_size
    return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}


# Create SQLAlchemy engine
engine = create_engine(
    DATABASE_URL,
    echo=settings.sql_debug,
    **_engine_kwargs(DATABASE_URL),
)

# Create session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

# Base class for declarative models
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency yielding one session per request.

    The extraction store commits per record on this session; it is closed
    once the response has been sent.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """
    Create the grid tables (projects, columns, documents, audit log,
    collections) if they do not exist yet.
    """
    # Registers the ORM classes on Base.metadata
    from . import models_db  # noqa: F401

    Base.metadata.create_all(bind=engine)
