"""
Database engine, session factory, and metadata shared across the application.

The backing store is reached through short-lived sessions: repositories hold
a ``sessionmaker`` and open one session per operation, so concurrent fan-out
from worker threads never shares a Session.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.core.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def create_database_engine(db_url: str, **kwargs: Any) -> Engine:
    """Create an engine for ``db_url``; SQLite connections may be used from worker threads."""
    engine_kwargs: dict[str, Any] = {"future": True, "pool_pre_ping": True}
    if db_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    engine_kwargs.update(kwargs)
    new_engine = create_engine(db_url, **engine_kwargs)

    if db_url.startswith("sqlite"):

        @event.listens_for(new_engine, "connect")
        def _sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    return new_engine


def create_session_factory(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind, expire_on_commit=False)


def init_db(bind: Engine) -> None:
    """Create all tables known to the metadata."""
    # Import models so they register on Base.metadata
    from app import models  # noqa: F401

    Base.metadata.create_all(bind=bind)
    logger.info("Database schema ensured")


engine: Engine = create_database_engine(settings.database_url)
SessionLocal = create_session_factory(engine)


__all__ = [
    "Base",
    "SessionLocal",
    "create_database_engine",
    "create_session_factory",
    "engine",
    "init_db",
]
