"""
Engine and session management.

Sessions are created with autoflush=False; services flush explicitly and the
unit-of-work owner (request dependency, job entry point) commits or rolls back.
"""

import logging
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from marketplace.config.settings import DATABASE_URL
from marketplace.db_base import Base

logger = logging.getLogger(__name__)

SessionLocal = sessionmaker(autocommit=False, autoflush=False)

_engine: Optional[Engine] = None


def configure_sqlite_engine(engine: Engine) -> Engine:
    """
    Let SQLAlchemy own transaction boundaries on pysqlite connections.

    The driver's implicit BEGIN handling breaks SAVEPOINT, which the
    reservation and ledger services rely on for all-or-nothing operations.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(database_url: str = DATABASE_URL) -> Engine:
    """Create an engine for the given URL with SQLite quirks handled."""
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
        )
        return configure_sqlite_engine(engine)
    return create_engine(database_url, pool_pre_ping=True)


def get_engine() -> Engine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = build_engine()
        SessionLocal.configure(bind=_engine)
    return _engine


def init_db(engine: Optional[Engine] = None) -> None:
    """Create all tables known to the ORM metadata."""
    import marketplace.models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())


def get_db_session_sync() -> Generator[Session, None, None]:
    """
    Yield a session that commits on success and rolls back on error.

    Usage:
        for session in get_db_session_sync():
            ...
    """
    get_engine()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        logger.warning("Rolling back database session after error")
        session.rollback()
        raise
    finally:
        session.close()
