"""
SQLAlchemy models for the update publisher.

This module provides the declarative base class and imports all models
to ensure they are registered with SQLAlchemy's metadata.
"""

from sqlalchemy.orm import declarative_base

# All models inherit from this Base class
Base = declarative_base()


# Imported after Base so they register with Base.metadata (needed by Alembic)
from publisher.src.models.version import AppVersion  # noqa: E402
from publisher.src.models.build import Build  # noqa: E402

__all__ = [
    "Base",
    "AppVersion",
    "Build",
]
