"""
Database Session Management

Engine construction, session factories and table creation for the SQL link
store. PostgreSQL in production, SQLite for local runs and tests.

Both backends bound how long a statement may wait: SQLite through its busy
timeout (writers queue on the reserved lock), PostgreSQL through
statement_timeout.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from ..utils.config import Settings, get_settings
from .models import Base

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT_SECONDS = 30
POSTGRES_STATEMENT_TIMEOUT_MS = 10_000


# =============================================================================
# DATABASE URL CONFIGURATION
# =============================================================================

def get_database_url(settings: Optional[Settings] = None) -> str:
    """DATABASE_URL when set, else a SQLite file at SQLITE_PATH."""
    settings = settings or get_settings()
    url = settings.DATABASE_URL

    if url:
        # Hosted PostgreSQL URLs often use postgres:// but SQLAlchemy needs postgresql://
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        return url

    logger.warning(f"No DATABASE_URL found, using SQLite: {settings.SQLITE_PATH}")
    return f"sqlite:///{settings.SQLITE_PATH}"


# =============================================================================
# ENGINE CONFIGURATION
# =============================================================================

def create_db_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """
    Create database engine with appropriate settings.

    PostgreSQL: Connection pooling, pre-ping, statement timeout
    SQLite: Busy timeout so concurrent writers queue instead of failing
    """
    url = url or get_database_url()
    if echo is None:
        echo = get_settings().SQL_DEBUG

    if url.startswith("postgresql"):
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=1800,
            pool_pre_ping=True,
            connect_args={"options": f"-c statement_timeout={POSTGRES_STATEMENT_TIMEOUT_MS}"},
            echo=echo,
        )
        logger.info("Created PostgreSQL engine with connection pooling")
        return engine

    engine = create_engine(
        url,
        connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS},
        echo=echo,
    )

    # Quota pools and project-vendor rows reference their parents
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    logger.info("Created SQLite engine")
    return engine


_engine: Optional[Engine] = None
_SessionLocal: Optional[Callable[[], Session]] = None


def get_engine() -> Engine:
    """Process-wide engine built from settings on first use."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


# =============================================================================
# SESSION MANAGEMENT
# =============================================================================

def make_session_factory(engine: Engine) -> Callable[[], Session]:
    # Records are converted to domain objects after commit
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def get_session_factory() -> Callable[[], Session]:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = make_session_factory(get_engine())
    return _SessionLocal


@contextmanager
def get_db_context(
    session_factory: Optional[Callable[[], Session]] = None,
) -> Generator[Session, None, None]:
    """
    Transactional session scope: commit on success, roll back on any error.

    Usage:
        with get_db_context() as db:
            db.query(SurveyLinkRecord).all()
    """
    db = (session_factory or get_session_factory())()
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
    Create all tables that do not exist yet.

    Args:
        engine: Engine to use (defaults to the process-wide engine)
        drop_all: Drop every table first (tests and local resets only)
    """
    engine = engine or get_engine()

    if drop_all:
        logger.warning("Dropping all database tables!")
        Base.metadata.drop_all(bind=engine)

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready")
