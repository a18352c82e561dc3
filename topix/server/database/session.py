"""SQLAlchemy engine and session management.

This module provides the declarative base, engine construction for the
embedded SQLite store, and the session factory used by the Headline Store.
"""

import logging
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# SQLAlchemy declarative base for ORM models
Base = declarative_base()


def _set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints and WAL journaling for SQLite.

    Args:
        dbapi_conn: Database API connection
        connection_record: Connection record
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create a SQLAlchemy engine for the embedded store.

    Creates the database directory if it doesn't exist. In-memory databases
    share a single connection so every session sees the same data.

    Args:
        database_url: SQLAlchemy database URL
        echo: Log SQL statements

    Returns:
        Configured SQLAlchemy engine
    """
    in_memory = database_url in ("sqlite://", "sqlite:///:memory:")

    if not in_memory and database_url.startswith("sqlite:///"):
        db_dir = Path(database_url[len("sqlite:///"):]).parent
        if not db_dir.exists():
            db_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created database directory: {db_dir}")

    kwargs = {"connect_args": {"check_same_thread": False}, "echo": echo}
    if in_memory:
        kwargs["poolclass"] = StaticPool  # Keep connection alive for in-memory database

    engine = create_engine(database_url, **kwargs)
    event.listen(engine, "connect", _set_sqlite_pragma)

    logger.info(f"Database engine initialized: {database_url}")
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Get SQLAlchemy session factory bound to an engine.

    Args:
        engine: Engine to bind

    Returns:
        Configured sessionmaker instance
    """
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


def check_database_connection(engine: Optional[Engine]) -> bool:
    """Check if database connection is working.

    Args:
        engine: Engine to probe

    Returns:
        True if connection is successful, False otherwise
    """
    if engine is None:
        return False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False


def commit_session(db: Session) -> None:
    """Commit the session, rolling back on failure.

    The store shares one session, so a failed flush must not leave it in a
    pending-rollback state for later callers.

    Raises:
        SQLAlchemyError: The original error, after rollback
    """
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database commit failed, rolled back: {e}")
        raise
