"""
Engine and session management.

One process-wide engine is created by ``init_engine_from_url``.  The run
guard and request handlers take ``get_session_factory()`` and own their
commits; kernel services only ever receive a ``Session``.

PostgreSQL (psycopg2) is the production backend and runs at READ
COMMITTED; the drawdown generator locks contract rows with
``SELECT ... FOR UPDATE``.  SQLite URLs are accepted for local tooling and
tests, with ``enable_sqlite_savepoints`` applied so that nested
transactions behave as they do on PostgreSQL.
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from sda_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def init_engine_from_url(
    database_url: str,
    *,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 5,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the process-wide engine and session factory.

    Calling it again disposes the previous engine first.
    """
    global _engine, _session_factory
    reset_engine()

    if database_url.startswith("sqlite"):
        engine = enable_sqlite_savepoints(create_engine(database_url, echo=echo))
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    _engine = engine
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": engine.dialect.name, "echo": echo},
    )
    return engine


def enable_sqlite_savepoints(engine: Engine) -> Engine:
    """
    Let pysqlite nest SAVEPOINTs inside a real transaction.

    The driver otherwise delays BEGIN until the first write, so releasing
    the outermost SAVEPOINT would commit.
    """

    @event.listens_for(engine, "connect")
    def _driver_autocommit(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def _require_initialized() -> sessionmaker[Session]:
    if _session_factory is None:
        raise RuntimeError("Database engine is not initialized; call init_engine_from_url()")
    return _session_factory


def get_engine() -> Engine:
    _require_initialized()
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    return _require_initialized()


def get_session() -> Session:
    return _require_initialized()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    One unit of work: commit on success, roll back and re-raise on error.

    Usage::

        with session_scope() as session:
            ClaimPackager(session, clock).create_claim(org_id, filters, actor_id)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("session_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    from sda_kernel.db.base import Base
    import sda_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """Drop every kernel table.  Local tooling and tests only."""
    from sda_kernel.db.base import Base
    import sda_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


atexit.register(reset_engine)
