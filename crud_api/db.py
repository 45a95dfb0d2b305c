"""Database engine and session management for the CRUD API template."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from . import config

LOGGER = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base declarative class used by all ORM models."""


class DatabaseNotInitializedError(RuntimeError):
    """Raised when the engine is used before init_engine() was called."""


_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_engine(url: Optional[str] = None) -> Engine:
    """Create the process-wide engine and session factory.

    Args:
        url: SQLAlchemy URL. Defaults to ``config.DATABASE_URL``.
    Returns:
        Engine: The configured engine.
    """
    global _engine, _session_factory

    if _engine is not None:
        close_engine()

    database_url = url or config.DATABASE_URL
    engine_kwargs = {
        "future": True,
        "pool_pre_ping": True,
    }
    if database_url.startswith("sqlite"):
        # SQLite requires disabling same-thread checks for multi-threaded FastAPI workers.
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url in {"sqlite://", "sqlite:///"}:
            # A single shared connection keeps the in-memory schema alive.
            engine_kwargs["poolclass"] = StaticPool
        else:
            directory = os.path.dirname(database_url.replace("sqlite:///", "", 1))
            if directory:
                os.makedirs(directory, exist_ok=True)

    engine = create_engine(database_url, **engine_kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    _engine = engine
    _session_factory = sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
        future=True,
    )
    LOGGER.info("Database engine initialised for %s", engine.url.render_as_string(hide_password=True))
    return engine


def is_initialized() -> bool:
    return _engine is not None


def get_engine() -> Engine:
    if _engine is None:
        raise DatabaseNotInitializedError("Database not initialized. Call init_engine() first.")
    return _engine


def connect() -> None:
    """Open and release one connection so startup fails loudly on a bad URL."""
    with get_engine().connect() as connection:
        connection.execute(text("SELECT 1"))


def close_engine() -> None:
    """Dispose of the connection pool. Safe to call more than once."""
    global _engine, _session_factory
    if _engine is None:
        return
    _engine.dispose()
    LOGGER.info("Database engine disposed")
    _engine = None
    _session_factory = None


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    if _session_factory is None:
        raise DatabaseNotInitializedError("Database not initialized. Call init_engine() first.")
    session = _session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def optional_scope(tx: Optional[Session] = None) -> Generator[Session, None, None]:
    """Reuse a caller's transaction when given one, otherwise open a new scope."""
    if tx is not None:
        yield tx
        return
    with session_scope() as session:
        yield session


def init_database() -> None:
    """Ensure all ORM tables are created in the configured database."""
    # Import models within the function to avoid circular imports.
    from .auth import models  # noqa: F401  # pylint: disable=unused-import

    Base.metadata.create_all(bind=get_engine())
