"""
SQLAlchemy declarative base and database session configuration

SQLite supports a single writer, so the engine keeps exactly one pooled
connection. Every registry and credential mutation serializes through it
and uniqueness constraints reject lost races.
"""
import logging
import os
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Database URL from environment or default to a local SQLite file
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/wgpanel.db")

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA cache_size=-64000",
    "PRAGMA busy_timeout=5000",
)

# Create declarative base
Base = declarative_base()

# Create sessionmaker; bound in configure_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False)

engine: Optional[Engine] = None


def _apply_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        # auto_vacuum only takes effect before the first table is created
        cursor.execute("PRAGMA auto_vacuum=INCREMENTAL")
        for pragma in SQLITE_PRAGMAS:
            cursor.execute(pragma)
    finally:
        cursor.close()


def build_engine(database_url: str) -> Engine:
    """
    Create a single-writer SQLAlchemy engine

    Args:
        database_url: SQLAlchemy URL (sqlite:///path or sqlite:// for memory)

    Returns:
        Configured engine
    """
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        new_engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    else:
        db_file = database_url.replace("sqlite:///", "", 1)
        Path(db_file).parent.mkdir(parents=True, exist_ok=True)
        new_engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            pool_size=1,
            max_overflow=0,
            pool_timeout=30,
            echo=False,
        )

    event.listen(new_engine, "connect", _apply_sqlite_pragmas)
    return new_engine


def configure_engine(database_url: str = DATABASE_URL) -> Engine:
    """
    Create the process-wide engine and bind the session factory to it

    Args:
        database_url: SQLAlchemy URL

    Returns:
        The new engine
    """
    global engine
    if engine is not None:
        engine.dispose()
    engine = build_engine(database_url)
    SessionLocal.configure(bind=engine)
    logger.info(f"Configured database engine for {database_url}")
    return engine


def get_db() -> Generator:
    """
    Database session dependency for FastAPI

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """
    Initialize database by creating all tables

    Raises:
        sqlalchemy.exc.OperationalError: If the storage engine is unavailable
    """
    if engine is None:
        configure_engine()

    # Import models so they register with Base.metadata
    import wgpanel.models  # noqa: F401

    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    Base.metadata.create_all(bind=engine)


def optimize_db() -> None:
    """
    Reclaim free pages and refresh query planner statistics
    """
    with engine.begin() as conn:
        conn.execute(text("PRAGMA incremental_vacuum(100)"))
        conn.execute(text("PRAGMA optimize"))
