"""SQLAlchemy engine and session factory."""

from __future__ import annotations

import logging

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignores REFERENCES clauses unless this is set per connection.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(database_url: str) -> Engine:
    """Create an engine for *database_url*.

    SQLite connections are shared with the worker threads the repositories
    run queries on, so ``check_same_thread`` is disabled and foreign keys are
    switched on for every new connection.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, connect_args={"check_same_thread": False})
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    else:
        engine = create_engine(database_url, pool_size=20, pool_pre_ping=True)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    # Rows are returned to callers after the session closes.
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    from modelia.core import db_models  # noqa: F401  # registers models with Base

    Base.metadata.create_all(bind=engine)
    logger.info(f"Database schema ready at {engine.url.render_as_string(hide_password=True)}")
