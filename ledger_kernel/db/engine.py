"""
Module: ledger_kernel.db.engine
Responsibility: Process-wide engine and session factory, transactional
    scope, schema create/drop.
Architecture position: Kernel > DB.  Imports models only inside
    create_tables/drop_tables.

Invariants enforced:
    - Balance decisions are read-then-write (available balance, advance
      remaining).  They must not interleave:
        * PostgreSQL runs at READ COMMITTED and serializes per employee on
          the employee_balance_locks row (UPDATE of its version).
        * SQLite has no row locks, so every transaction opens with
          BEGIN IMMEDIATE and holds the database write lock until it ends.
          pysqlite's implicit transactions are switched off so SQLAlchemy
          controls BEGIN and SAVEPOINT (idempotent appends need SAVEPOINT).

Failure modes:
    - RuntimeError from get_engine/get_session/get_session_factory before
      init_engine_from_url().
    - OperationalError ("database is locked") when an SQLite writer waits
      longer than SQLITE_BUSY_TIMEOUT_SECONDS.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from ledger_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

SQLITE_BUSY_TIMEOUT_SECONDS = 30

_engine: Engine | None = None
_factory: sessionmaker[Session] | None = None


def _sqlite_write_lock_on_begin(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _manual_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _engine_options(dialect: str, pool_size: int, max_overflow: int, pool_timeout: int) -> dict:
    options = {
        "poolclass": QueuePool,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_timeout": pool_timeout,
    }
    if dialect == "sqlite":
        options["connect_args"] = {
            "check_same_thread": False,
            "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
        }
    else:
        options.update(
            pool_pre_ping=True,
            pool_recycle=1800,
            isolation_level="READ COMMITTED",
        )
    return options


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
) -> Engine:
    """
    Create the process-wide engine for ``database_url``.

    ``postgresql://`` and file-based ``sqlite:///`` URLs are supported.  A
    second call replaces the first engine.
    """
    global _engine, _factory

    dialect = make_url(database_url).get_backend_name()
    options = _engine_options(dialect, pool_size, max_overflow, pool_timeout)
    _engine = create_engine(database_url, echo=echo, **options)
    if dialect == "sqlite":
        _sqlite_write_lock_on_begin(_engine)
    _factory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": dialect, "pool_size": pool_size, "max_overflow": max_overflow},
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for callers that need one session per thread."""
    if _factory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _factory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Commit on clean exit, roll back on error, always close.

    Usage:
        with session_scope() as session:
            LedgerOrchestrator(session, auto_commit=False).run_daily_accrual()
    """
    session = get_session()
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
    """Create every ledger table that does not exist yet."""
    import ledger_kernel.models  # noqa: F401  (registers the tables)
    from ledger_kernel.db.base import Base

    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables() -> None:
    """Drop every ledger table.  Tests and local resets only."""
    import ledger_kernel.models  # noqa: F401
    from ledger_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _factory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
