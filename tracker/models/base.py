"""Database base configuration"""

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.requests import Request

logger = logging.getLogger(__name__)

Base = declarative_base()

# Backends with a native INSERT .. ON CONFLICT DO UPDATE.
SUPPORTED_BACKENDS = ("sqlite", "postgresql")


def _is_memory_sqlite(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url


def make_engine(database_url: str) -> Engine:
    """Create the SQLAlchemy engine for a database URL.

    SQLite file databases get "BEGIN IMMEDIATE" transactions so that the
    read-modify-write of a patch and a concurrent sync upsert are serialized
    by the database lock instead of racing. In-memory SQLite shares a single
    connection across threads (tests, local experiments).

    Raises ArgumentError for backends the item upsert cannot target.
    """
    backend = make_url(database_url).get_backend_name()
    if backend not in SUPPORTED_BACKENDS:
        raise ArgumentError(
            f"Unsupported database backend '{backend}'; expected one of {', '.join(SUPPORTED_BACKENDS)}"
        )

    if backend != "sqlite":
        return create_engine(database_url, pool_pre_ping=True)

    if _is_memory_sqlite(database_url):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False, "timeout": 15},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record):
        # Let SQLAlchemy emit BEGIN itself (see _begin_immediate).
        dbapi_connection.isolation_level = None
        # WAL lets listing reads proceed while a sync batch is being written.
        # Must run outside a transaction.
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db(request: Request):
    """Get database session bound to the application's engine"""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Engine):
    """Initialize database"""
    # Ensure all models are imported so SQLAlchemy metadata is populated.
    import tracker.models  # noqa: F401  (import for side-effects)

    Base.metadata.create_all(bind=engine)
    logger.info(f"Database ready ({engine.dialect.name})")
