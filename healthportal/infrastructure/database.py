"""SQLAlchemy engine and session factory for the credential store."""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from healthportal.core.logging import get_logger

logger = get_logger(__name__)

Base = declarative_base()

_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def create_db_engine(database_url: str, timeout_seconds: float = 5.0) -> Engine:
    """Create an engine whose every connection attempt and lock wait is bounded.

    Args:
        database_url: SQLAlchemy URL
        timeout_seconds: Upper bound for connecting, waiting on the pool and
            (SQLite) waiting on a database lock

    Returns:
        Configured engine
    """
    connect_args = {}
    engine_kwargs = {"pool_pre_ping": True}

    if database_url.startswith("sqlite"):
        # SQLite requires check_same_thread=False for FastAPI (multi-threaded)
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout_seconds
        if database_url in _MEMORY_URLS:
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs["poolclass"] = StaticPool
    else:
        connect_args["connect_timeout"] = max(1, int(timeout_seconds))
        engine_kwargs["pool_timeout"] = timeout_seconds

    engine = create_engine(database_url, connect_args=connect_args, **engine_kwargs)

    if database_url.startswith("sqlite") and database_url not in _MEMORY_URLS:
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    logger.info(f"Database engine created for {engine.url.render_as_string(hide_password=True)}")
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create tables that do not exist yet."""
    # Registers UserRow on Base.metadata
    from healthportal.infrastructure import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
