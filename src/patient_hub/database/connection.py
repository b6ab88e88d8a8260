"""Database configuration and connection setup.

The SQLModel engine is created lazily, after application settings have been
loaded and possibly overridden by CLI flags. ``init_db`` creates the engine
from explicit settings and makes sure the tables exist.
"""

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from loguru import logger
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, text
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from patient_hub.exceptions import PersistenceError
from patient_hub.settings import Settings, get_settings

_engine: Engine | None = None


def _is_sqlite_memory(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:")


def _build_engine(settings: Settings) -> Engine:
    """Create and return a new engine from ``settings``.

    Raises:
        ValueError: if database URL not configured.
    """
    database_url = settings.database_url
    if not database_url:
        raise ValueError("Database URL missing: provide PATIENT_HUB_DATABASE_URL env or --database-url CLI argument")

    if database_url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if _is_sqlite_memory(database_url):
            # One shared connection, otherwise every session sees its own empty database
            kwargs["poolclass"] = StaticPool
    else:
        kwargs = {
            "pool_pre_ping": True,
            "pool_recycle": 3600,
            "pool_size": 5,
            "max_overflow": 10,
            "pool_timeout": 30,
            "connect_args": {"connect_timeout": 10},
        }

    engine_local = create_engine(database_url, echo=settings.sql_log, **kwargs)
    logger.info(f"SQL echo is {'enabled' if settings.sql_log else 'disabled'}")
    return engine_local


def get_engine() -> Engine:
    """Return a singleton engine instance, creating it lazily from the cached settings."""
    global _engine
    if _engine is None:
        _engine = _build_engine(get_settings())
    return _engine


def init_db(settings: Settings | None = None) -> Engine:
    """Create the engine from ``settings`` and create missing tables.

    Args:
        settings: Settings to build the engine from; defaults to the cached settings

    Returns:
        The engine now used by all sessions
    """
    global _engine
    # Register table models on SQLModel.metadata
    from patient_hub.models import db_model  # noqa: F401

    logger.info("Initializing database...")
    dispose_db()
    _engine = _build_engine(settings or get_settings())
    SQLModel.metadata.create_all(_engine)
    return _engine


def dispose_db() -> None:
    """Dispose of the database engine if it was created."""
    global _engine
    if _engine is not None:
        logger.info("Closing database connections")
        _engine.dispose()
        _engine = None


@retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
    retry=retry_if_exception_type(Exception),
    before_sleep=before_sleep_log(logger, "DEBUG"),
)
def _create_session() -> Session:
    """Create a database session with retry logic.

    Connection failures dispose the engine so the next attempt builds a fresh one.

    Raises:
        Exception: If all retry attempts fail
    """
    global _engine
    try:
        session = Session(get_engine())
        session.execute(text("SELECT 1"))
        return session
    except Exception as e:
        if _engine is not None:
            logger.warning("Database connection failed, disposing engine for retry...")
            _engine.dispose()
            _engine = None
        logger.error(f"Failed to create database session: {e}")
        raise


@contextmanager
def borrow_db_session() -> Generator[Session, None, None]:
    """Public context manager for ad-hoc database usage.

    Use this function for health checks, utility scripts, or any
    non-FastAPI context. For FastAPI route handlers, use get_db_session()
    as a dependency instead.

    Example:
        from patient_hub.database import borrow_db_session
        with borrow_db_session() as session:
            session.exec(text("SELECT 1"))

    Raises:
        PersistenceError: If no connection could be opened after retrying
    """
    try:
        session = _create_session()
    except SQLAlchemyError as e:
        raise PersistenceError(f"Database unavailable: {e.__class__.__name__}") from e
    session_id = id(session)

    try:
        yield session
    except Exception as e:  # noqa: BLE001
        logger.error(f"Error during database session {session_id}: {e}")
        raise
    finally:
        session.close()
        logger.trace(f"Database session {session_id} closed and resources released")


def get_db_session() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a database session.

    Usage in route:
        def endpoint(session: Session = Depends(get_db_session)): ...
    """
    with borrow_db_session() as session:
        yield session


def is_healthy(session: Session) -> dict[str, Any]:
    """Check if the database connection is healthy.

    Args:
        session: The database session to use for the health check.

    Returns:
        A dictionary containing the database health status and connection info.
    """
    try:
        session.exec(text("SELECT 1")).one()
        return {"status": "healthy", "connection": "active"}
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        return {"status": "unhealthy", "error": str(e), "connection": "failed"}
