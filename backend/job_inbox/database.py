"""Primary store: engine setup, savepoint support and request-scoped sessions."""

from __future__ import annotations

from typing import Generator

import structlog
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from job_inbox.config import AppConfig
from job_inbox.models import Base

logger = structlog.get_logger(__name__)

# Set by init_db() at startup
_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def _sqlite_pragmas(dbapi_conn: object, _connection_record: object) -> None:
    cursor = dbapi_conn.cursor()  # type: ignore[union-attr]
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def enable_sqlite_savepoints(engine: Engine) -> Engine:
    """Let SQLAlchemy issue BEGIN itself so SAVEPOINTs nest correctly.

    The pysqlite driver defers BEGIN until the first DML statement, so a
    ``session.begin_nested()`` opened before any write would otherwise become
    the outer transaction. Ingestion relies on savepoints to discard a single
    failed message or best-effort step without losing the rest of the request.
    """

    @event.listens_for(engine, "connect")
    def _driver_autocommit(dbapi_conn, _connection_record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def init_db(config: AppConfig) -> Engine:
    """Create the engine and any missing tables; prepare the session factory."""
    global _engine, _SessionLocal

    is_sqlite = config.database_url.startswith("sqlite")
    _engine = create_engine(
        config.database_url,
        connect_args={"check_same_thread": False} if is_sqlite else {},
        pool_pre_ping=True,
    )
    if is_sqlite:
        event.listen(_engine, "connect", _sqlite_pragmas)
        enable_sqlite_savepoints(_engine)

    Base.metadata.create_all(bind=_engine)
    logger.info("database_initialized", url=config.database_url)

    _SessionLocal = sessionmaker(bind=_engine, autoflush=False)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized; call init_db() first")
    return _SessionLocal


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, committed on success.

    Ingestion flushes as it goes; anything flushed is committed here unless
    the handler raised, in which case the whole request is rolled back.
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
