"""
Module: vendor_kernel.db.engine
Responsibility: Engine and session factory lifecycle for the process, plus
    the ``session_scope`` transaction helper used by callers of the services.
Architecture position: Kernel > DB.  May import from db/base.py.
    create_tables / drop_tables import the models package so that
    Base.metadata knows every table.

Invariants enforced:
    - Services never commit.  Commit and rollback belong to the caller,
      usually through ``session_scope``.
    - PostgreSQL runs at READ COMMITTED; correctness of concurrent writes
      relies on conditional UPDATEs (see services/repository.py), not on
      isolation level or application locks.
    - SQLite connections enforce foreign keys.  In-memory SQLite uses a
      StaticPool so every session sees the same database.

Failure modes:
    - RuntimeError from get_engine / get_session / get_session_factory
      before init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from vendor_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_NOT_INITIALISED = "Engine not initialized. Call init_engine_from_url() first."

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_engine(database_url: str, echo: bool) -> Engine:
    url = make_url(database_url)
    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    engine = create_engine(database_url, echo=echo, **options)
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


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
    Create the process engine and session factory, replacing any previous one.

    Args:
        database_url: ``postgresql://...`` or ``sqlite://...``.
        echo: If True, log all SQL statements.
        pool_size, max_overflow, pool_pre_ping, pool_timeout, pool_recycle:
            QueuePool settings; ignored for SQLite.
    """
    global _engine, _session_factory

    dialect = make_url(database_url).get_backend_name()
    if dialect == "sqlite":
        engine = _sqlite_engine(database_url, echo)
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    _engine = engine
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": dialect, "echo": echo})
    return engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALISED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _session_factory is None:
        raise RuntimeError(_NOT_INITIALISED)
    return _session_factory


def get_session() -> Session:
    """A new session from the process factory.  Caller closes it."""
    return get_session_factory()()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    One unit of work: commit on normal exit, roll back and re-raise otherwise.

    Usage:
        with session_scope() as session:
            PaymentWorkflowService(session).approve(payment_id, actor)
    """
    session = get_session()
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every table known to the models package."""
    from vendor_kernel.db.base import Base
    import vendor_kernel.models  # noqa: F401  registers all tables

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """Drop every table.  Tests and local tooling only."""
    from vendor_kernel.db.base import Base
    import vendor_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_factory
    engine, _engine, _session_factory = _engine, None, None
    if engine is not None:
        engine.dispose()


atexit.register(reset_engine)
