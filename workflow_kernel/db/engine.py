"""
Engine and session plumbing for the workflow store.

Responsibility:
    Owns the process-wide SQLAlchemy engine and session factory, the
    per-dialect connection settings, and ``session_scope`` -- the one
    place a transaction is committed or rolled back.

Architecture position:
    Kernel > DB.  Imports only ``db.base`` and logging; ``create_tables``
    and ``drop_tables`` import ``workflow_kernel.models`` lazily so the
    metadata is complete.

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; transitions take FOR UPDATE row
      locks and ``statement_timeout`` bounds how long a lock wait can take.
    - SQLite (local runs and tests) has no row locks.  The version column
      on workflow_requests is what turns a lost update into a conflict
      there, and the driver busy timeout bounds waits on the file lock.

Failure modes:
    - RuntimeError when the engine is used before ``init_engine_from_url``.
    - OperationalError on lock or statement timeout.  The gateway's unit of
      work reports it as PersistenceUnavailableError.
"""

import atexit
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from workflow_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _sqlite_engine(url: URL, echo: bool, busy_timeout_ms: int) -> Engine:
    engine = create_engine(
        url,
        echo=echo,
        connect_args={
            "timeout": busy_timeout_ms / 1000,
            "check_same_thread": False,
        },
    )

    @event.listens_for(engine, "connect")
    def _foreign_keys_on(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def _postgres_engine(
    url: URL,
    echo: bool,
    statement_timeout_ms: int,
    pool_size: int,
    max_overflow: int,
    pool_timeout: int,
    pool_recycle: int,
) -> Engine:
    return create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=True,
        isolation_level="READ COMMITTED",
        connect_args={"options": f"-c statement_timeout={statement_timeout_ms}"},
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 5,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    statement_timeout_ms: int = 5000,
) -> Engine:
    """
    Build the workflow engine and session factory, replacing any previous one.

    ``statement_timeout_ms`` is the PostgreSQL statement timeout and the
    SQLite busy timeout.  The pool settings only apply to PostgreSQL.
    """
    global _engine, _session_factory

    url = make_url(database_url)
    backend = url.get_backend_name()
    if _engine is not None:
        _engine.dispose()

    if backend == "sqlite":
        _engine = _sqlite_engine(url, echo, statement_timeout_ms)
    else:
        _engine = _postgres_engine(
            url, echo, statement_timeout_ms,
            pool_size, max_overflow, pool_timeout, pool_recycle,
        )
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "backend": backend,
            "database": url.database,
            "pool_size": None if backend == "sqlite" else pool_size,
            "statement_timeout_ms": statement_timeout_ms,
        },
    )
    return _engine


def _require_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Workflow store not initialized; call init_engine_from_url() first")
    return _engine


def get_engine() -> Engine:
    return _require_engine()


def get_session_factory() -> sessionmaker[Session]:
    """
    The shared session factory.

    The gateway and the notification emitter each take a factory, so the
    notification store can be pointed at a different engine.
    """
    _require_engine()
    return _session_factory


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """
    One transaction: commit on clean exit, roll back and re-raise otherwise.

    The session is always closed.  Uses the shared factory unless one is
    passed in.
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    from workflow_kernel.db.base import Base
    import workflow_kernel.models  # noqa: F401

    Base.metadata.create_all(_require_engine())
    logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})


def drop_tables() -> None:
    """Drop every workflow table.  Tests and local resets only."""
    from workflow_kernel.db.base import Base
    import workflow_kernel.models  # noqa: F401

    Base.metadata.drop_all(_require_engine())


def reset_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"


atexit.register(reset_engine)
