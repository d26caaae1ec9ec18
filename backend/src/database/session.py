"""
Database engine and session factory.

The engine is created lazily from DATABASE_URL so that importing models
or routers never opens a connection. Routes receive a session through the
get_db_session() FastAPI dependency; workers use get_db_session_sync().
"""

import logging
import os
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from src.db_base import Base

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def _get_database_url() -> str:
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable is required")
    # Heroku-style URLs use the deprecated postgres:// scheme
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def get_engine() -> Engine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        database_url = _get_database_url()
        kwargs = {"pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
        _engine = create_engine(database_url, **kwargs)
        logger.info("Database engine created", extra={"dialect": _engine.dialect.name})
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _session_factory


def get_db_session() -> Generator[Session, None, None]:
    """
    FastAPI dependency yielding a request-scoped session.

    The session is always closed; uncommitted work is rolled back.
    """
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


def get_db_session_sync() -> Session:
    """Return a new session for workers and scripts. Caller must close it."""
    return get_session_factory()()


def init_db() -> None:
    """Create all tables registered on Base (development and tests)."""
    # Import models so that every table is registered on the metadata
    import src.models  # noqa: F401
    import src.platform.audit  # noqa: F401

    Base.metadata.create_all(bind=get_engine())
    logger.info("Database schema initialized")
