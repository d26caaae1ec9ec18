"""Database engine and session management."""

from src.database.session import (
    get_db_session,
    get_db_session_sync,
    get_engine,
    init_db,
)

__all__ = [
    "get_db_session",
    "get_db_session_sync",
    "get_engine",
    "init_db",
]
