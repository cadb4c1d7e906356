"""
Module: approval_kernel.db.engine
Responsibility: Owns the process-wide engine and session factory, and the
    ``session_scope`` unit of work every collaborator-facing call runs in.
Architecture position: Kernel > DB.  Imports only db/base.py at module
    level; table creation pulls in models/ lazily so metadata is complete.

Invariants enforced:
    - On PostgreSQL, sessions run at READ COMMITTED and every action takes
      ``SELECT ... FOR UPDATE`` on its approval request row.
    - On SQLite (tests, local runs), pysqlite's own BEGIN handling is
      switched off and every transaction opens with ``BEGIN IMMEDIATE``:
      writers queue on the database lock and SAVEPOINTs nest correctly.

Failure modes:
    - RuntimeError from the accessors before ``init_engine_from_url()``.
    - Pool timeouts when more than pool_size + max_overflow threads hold a
      connection.
"""

import atexit
from contextlib import contextmanager
from typing import Any, Callable, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from approval_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."


def _begin_immediate_on_sqlite(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _dialect_options(database_url: str, pool_recycle: int) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"pool_recycle": pool_recycle, "isolation_level": "READ COMMITTED"}


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the engine and session factory for ``database_url``.

    Calling it again replaces both; sessions already handed out keep their
    old connection until closed.
    """
    global _engine, _SessionFactory

    _engine = create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        **_dialect_options(database_url, pool_recycle),
    )
    if _engine.dialect.name == "sqlite":
        _begin_immediate_on_sqlite(_engine)

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
        },
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for per-thread sessions (sweeps, threaded callers)."""
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    factory: Callable[[], Session] | None = None,
) -> Generator[Session, None, None]:
    """
    One transaction: commit on clean exit, rollback and re-raise otherwise.

    ``factory`` overrides the module factory, e.g. a test sessionmaker
    bound to a separate engine.
    """
    session = factory() if factory is not None else get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _metadata():
    # Registers every mapped table, including the sequence counter that
    # lives beside its service.
    import approval_kernel.models  # noqa: F401
    import approval_kernel.services.sequence_service  # noqa: F401
    from approval_kernel.db.base import Base

    return Base.metadata


def create_tables() -> None:
    metadata = _metadata()
    metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(metadata.tables)})


def drop_tables() -> None:
    """Drop every approval table. Destroys data; tests and ``--reset`` only."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
