"""Shared declarative base for all ORM models.

Keeping one ``Base`` puts all table metadata in one place, so creating the
schema (``scripts/create_tables.py``, test fixtures) sees every model.
"""

from datetime import datetime

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


def db_now() -> datetime:
    """Current time at the precision of a MySQL ``DATETIME`` column."""

    return datetime.now().replace(microsecond=0)
