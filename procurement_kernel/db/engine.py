"""
procurement_kernel.db.engine -- Process-wide database handle for the SQL gateway.

One engine and one session factory per process, installed with
``init_engine_from_url`` and torn down with ``reset_engine``.

SQLite (tests, local runs) shares a single connection so an in-memory
database is seen by every session, and runs with foreign keys enforced so
the ``ON DELETE CASCADE`` from lines to request links behaves as it does
on PostgreSQL.  Other backends get a pre-pinged pool at READ COMMITTED.

Calling any accessor before ``init_engine_from_url`` raises RuntimeError.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from procurement_kernel.logging_config import get_logger

logger = get_logger("db.engine")


@dataclass(frozen=True)
class _Database:
    engine: Engine
    sessions: sessionmaker[Session]


_database: _Database | None = None


def _enforce_sqlite_foreign_keys(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
) -> Engine:
    """
    Install the process engine for ``database_url``, replacing any previous one.

    ``pool_size`` and ``max_overflow`` apply to pooled backends only.
    """
    global _database

    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        engine = create_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        _enforce_sqlite_foreign_keys(engine)
    else:
        engine = create_engine(
            url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            isolation_level="READ COMMITTED",
        )

    if _database is not None:
        _database.engine.dispose()
    _database = _Database(engine, sessionmaker(bind=engine, expire_on_commit=False))

    logger.info(
        "engine_initialized",
        extra={"dialect": engine.dialect.name, "database": url.database, "echo": echo},
    )
    return engine


def _current() -> _Database:
    if _database is None:
        raise RuntimeError("Database not initialized; call init_engine_from_url() first")
    return _database


def get_engine() -> Engine:
    return _current().engine


def get_session_factory() -> sessionmaker[Session]:
    """Session factory handed to ``SqlProcurementGateway``."""
    return _current().sessions


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """
    One unit of work: commit on normal exit, roll back and re-raise on error.

    Uses the process session factory unless ``factory`` is given.
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create the supplier order and purchase request tables if missing."""
    from procurement_kernel.db.base import Base
    import procurement_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())


def reset_engine() -> None:
    """Dispose of the process engine.  Safe to call when none is installed."""
    global _database

    if _database is not None:
        _database.engine.dispose()
        _database = None
