"""
Database Session Management

Engines and session factories for the job and result tables. PostgreSQL
when DATABASE_URL is set, a local SQLite file otherwise. Every function
takes its engine, session factory or settings explicitly so tests can
run against in-memory SQLite; the module-level ones are built lazily
from get_settings().
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from src.utils.config import Settings, get_settings

from .models import Base

logger = logging.getLogger(__name__)

# =============================================================================
# DATABASE URL CONFIGURATION
# =============================================================================

def get_database_url(settings: Optional[Settings] = None) -> str:
    """DATABASE_URL when set, else sqlite:///<SQLITE_PATH>."""
    settings = settings or get_settings()
    url = settings.DATABASE_URL

    if url:
        # SQLAlchemy only accepts the postgresql:// scheme
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        return url

    logger.warning(f"No DATABASE_URL set, using SQLite: {settings.SQLITE_PATH}")
    return f"sqlite:///{settings.SQLITE_PATH}"


# =============================================================================
# ENGINE CONFIGURATION
# =============================================================================

def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(url: Optional[str] = None, settings: Optional[Settings] = None) -> Engine:
    """
    Create an engine for the result store.

    PostgreSQL gets a pre-pinged QueuePool sized from DB_POOL_SIZE and
    DB_MAX_OVERFLOW. SQLite connections may be shared across threads
    (the API's background jobs) and enforce foreign keys.
    """
    settings = settings or get_settings()
    url = url or get_database_url(settings)

    if url.startswith("postgresql"):
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=1800,
            pool_pre_ping=True,
            echo=settings.SQL_DEBUG,
        )
        logger.info(f"Created PostgreSQL engine (pool {settings.DB_POOL_SIZE}+{settings.DB_MAX_OVERFLOW})")
        return engine

    engine = create_engine(
        url,
        connect_args={"check_same_thread": False},
        echo=settings.SQL_DEBUG,
    )
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    logger.info("Created SQLite engine")
    return engine


# Global engine (lazy initialization)
_engine = None

def get_engine() -> Engine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


# =============================================================================
# SESSION MANAGEMENT
# =============================================================================

# Session factory (lazy initialization)
_SessionLocal = None

def make_session_factory(engine: Engine) -> sessionmaker:
    """Sessions keep loaded records usable after commit."""
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def get_session_factory() -> sessionmaker:
    """Get or create session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = make_session_factory(get_engine())
    return _SessionLocal


@contextmanager
def get_db_context(session_factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Commits on success, rolls back on any exception.

    Usage:
        with get_db_context() as db:
            db.query(ProcessingJobRecord).all()
    """
    SessionLocal = session_factory or get_session_factory()
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# =============================================================================
# DATABASE INITIALIZATION
# =============================================================================

def init_db(engine: Optional[Engine] = None, drop_all: bool = False) -> None:
    """
    Create the job, result and node metrics tables.

    Args:
        engine: Engine to use (default: global engine)
        drop_all: Drop existing tables first, losing stored jobs and results
    """
    engine = engine or get_engine()

    if drop_all:
        logger.warning("Dropping all database tables!")
        Base.metadata.drop_all(bind=engine)

    Base.metadata.create_all(bind=engine)
    logger.info(f"Database ready: {', '.join(sorted(Base.metadata.tables))}")


def check_db_connection(engine: Optional[Engine] = None) -> bool:
    """True when the database answers a trivial query."""
    engine = engine or get_engine()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {e}")
        return False
    return True
