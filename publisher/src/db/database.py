"""
Database connection and session management.

The engine is configured from ``PUBLISHER_DB_URL``. SQLite (development and
single-operator setups) uses a static pool with foreign keys enforced;
PostgreSQL gets a regular connection pool.
"""

from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from publisher.src.config.settings import get_settings
from publisher.src.utils.logging_config import get_logger


logger = get_logger("db")

DATABASE_URL = get_settings().database_url


def create_db_engine(url: str) -> Engine:
    """
    Create an engine for the given URL.

    Args:
        url: SQLAlchemy database URL

    Returns:
        Configured Engine
    """
    if url.startswith("sqlite"):
        # SQLite doesn't support pool_size, max_overflow, or pool_recycle
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
            future=True
        )
    return create_engine(
        url,
        pool_size=10,
        max_overflow=5,
        pool_pre_ping=True,    # Verify connections before checkout
        pool_recycle=3600,
        echo=False,
        future=True
    )


engine = create_db_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True
)


@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign keys on SQLite so build rows cascade with their version."""
    if type(dbapi_conn).__module__.startswith("sqlite3"):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for FastAPI routes to get database session.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def dispose_engine():
    """Dispose of the engine and close all connections."""
    engine.dispose()
    logger.info("Database connections closed", extra={"event": "db.dispose"})
