"""Database connection management.

Engines and session factories are built explicitly and passed to the
services that need them; there is no module-level engine.

Usage:
    engine = create_db_engine(config.database_url)
    init_db(engine)
    session_factory = create_session_factory(engine)

    with session_scope(session_factory) as session:
        session.add(...)
"""

import json
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from work_item_sync.db.models import Base


# seconds a connection waits on a locked SQLite database
SQLITE_BUSY_TIMEOUT = 30.0


def _json_serializer(value: Any) -> str:
    return json.dumps(value, default=str)


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create a SQLAlchemy engine.

    In-memory SQLite databases share one connection so every session sees
    the same data. File databases use WAL so readers do not block the
    writer, and wait on a lock instead of failing at once.

    Args:
        database_url: SQLAlchemy database URL.
        echo: Log emitted SQL.

    Returns:
        Configured engine.
    """
    kwargs: dict[str, Any] = {"echo": echo, "json_serializer": _json_serializer}
    is_sqlite = database_url.startswith("sqlite")
    in_memory = database_url in ("sqlite://", "sqlite:///:memory:")
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}
        if in_memory:
            kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, **kwargs)

    if is_sqlite:
        event.listen(engine, "connect", _set_sqlite_pragma)
        if not in_memory:
            event.listen(engine, "connect", _set_sqlite_journal)

    return engine


def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    """Enable foreign keys so ON DELETE CASCADE is honoured."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _set_sqlite_journal(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Build the session factory used by services.

    Objects stay usable after commit so results can be returned to callers.
    """
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


@contextmanager
def session_scope(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations.

    Commits on success, rolls back on any exception.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()
