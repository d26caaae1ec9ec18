"""
Shared SQLAlchemy declarative base.

Every model in the application registers on this Base so that a single
metadata.create_all() builds the full schema (used by tests and init_db).
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
