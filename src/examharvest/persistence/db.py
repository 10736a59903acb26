"""
Database connection and session management.

Provides engine creation with SQLite tuning, transactional session scopes
and schema initialization.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event, make_url
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from examharvest.core.logging import json_dumps

from .models import Base


DEFAULT_DATABASE_URL = "sqlite:///data/examharvest.db"


# =============================================================================
# Global Engine References
# =============================================================================

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


# =============================================================================
# SQLite Configuration
# =============================================================================


def _configure_sqlite(engine: Engine) -> None:
    """Configure SQLite for concurrent workers.

    Enables:
    - Foreign key enforcement
    - WAL mode so readers don't block the writer
    - A busy timeout so competing writers wait instead of failing
    """
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()


def normalize_url(url: str) -> str:
    """Route PostgreSQL URLs to the psycopg 3 driver.

    postgres://   -> postgresql+psycopg://
    postgresql:// -> postgresql+psycopg://
    """
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def display_url(url: str) -> str:
    """URL safe to print: the password is masked."""
    return make_url(normalize_url(url)).render_as_string(hide_password=True)


# =============================================================================
# Engine Creation
# =============================================================================


def create_db_engine(
    url: str = DEFAULT_DATABASE_URL,
    echo: bool = False,
    pool_size: int = 5,
) -> Engine:
    """Create a new engine (not cached).

    Args:
        url: SQLAlchemy database URL
        echo: Whether to log SQL statements
        pool_size: Connection pool size (ignored for SQLite)

    Returns:
        SQLAlchemy Engine instance
    """
    url = normalize_url(url)

    # Ensure data directory exists for SQLite
    if url.startswith("sqlite:///") and url != "sqlite:///:memory:":
        db_path = url.replace("sqlite:///", "")
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=echo,
            json_serializer=json_dumps,
            connect_args={"check_same_thread": False},
        )
        _configure_sqlite(engine)
    else:
        engine = create_engine(
            url,
            echo=echo,
            json_serializer=json_dumps,
            pool_size=pool_size,
            max_overflow=10,
            pool_pre_ping=True,
        )

    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def get_engine(
    url: str = DEFAULT_DATABASE_URL,
    echo: bool = False,
    pool_size: int = 5,
) -> Engine:
    """Get or create the process-wide engine."""
    global _engine, _session_factory

    if _engine is not None:
        return _engine

    _engine = create_db_engine(url, echo=echo, pool_size=pool_size)
    _session_factory = create_session_factory(_engine)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Get the process-wide session factory, initializing with defaults."""
    if _session_factory is None:
        get_engine()

    assert _session_factory is not None
    return _session_factory


# =============================================================================
# Session Management
# =============================================================================


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Run a unit of work: commit on success, roll back on error."""
    session = factory()

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get a synchronous database session.

    Usage:
        with get_session() as session:
            session.execute(...)

    Yields:
        SQLAlchemy Session instance
    """
    with session_scope(get_session_factory()) as session:
        yield session


# =============================================================================
# Database Initialization
# =============================================================================


def init_db(url: str = DEFAULT_DATABASE_URL, echo: bool = False) -> None:
    """Initialize the database schema.

    Creates all tables if they don't exist. For production use,
    prefer Alembic migrations.
    """
    engine = get_engine(url, echo=echo)
    Base.metadata.create_all(bind=engine)


def drop_db(url: str = DEFAULT_DATABASE_URL) -> None:
    """Drop all database tables.

    WARNING: This will delete all data!
    """
    engine = get_engine(url)
    Base.metadata.drop_all(bind=engine)


# =============================================================================
# Cleanup
# =============================================================================


def dispose_engines() -> None:
    """Dispose of the process-wide engine.

    Should be called on application shutdown.
    """
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
        _engine = None
        _session_factory = None
