"""SQLAlchemy engine creation and configuration.

The engine is created once per process and provides connection pooling
for all store operations. SQLite connections get WAL journaling, foreign
key enforcement and a busy timeout on connect.
"""

from functools import lru_cache
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

from chatstore.config import get_settings
from chatstore.errors import StoreErrorCode, UnavailableError
from chatstore.logging import get_logger

logger = get_logger(__name__)


def _is_memory_url(database_url: str) -> bool:
    url = make_url(database_url)
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


def _ensure_sqlite_dir(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite" or _is_memory_url(database_url):
        return
    Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def _install_sqlite_pragmas(engine: Engine, busy_timeout_ms: int, wal: bool) -> None:
    @event.listens_for(engine, "connect")
    def _set_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        try:
            if wal:
                cursor.execute("PRAGMA journal_mode = WAL")
                cursor.execute("PRAGMA synchronous = NORMAL")
            cursor.execute("PRAGMA foreign_keys = ON")
            cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        finally:
            cursor.close()


def create_db_engine(database_url: str | None = None, busy_timeout_ms: int | None = None) -> Engine:
    """Create a SQLAlchemy engine with the given URL.

    Args:
        database_url: Connection string. If None, uses settings.
        busy_timeout_ms: SQLite busy timeout. If None, uses settings.

    Returns:
        Configured SQLAlchemy engine.

    Raises:
        UnavailableError(E_PERSISTENCE_DISABLED): If persistence is turned off
            and no explicit URL was given.

    Note:
        In-memory SQLite URLs share a single connection (StaticPool) so that
        every session sees the same database.
    """
    settings = get_settings()
    if database_url is None:
        if not settings.persist_transcripts:
            raise UnavailableError(
                StoreErrorCode.E_PERSISTENCE_DISABLED, "Persistence is disabled"
            )
        database_url = settings.database_url
    if busy_timeout_ms is None:
        busy_timeout_ms = settings.db_busy_timeout_ms

    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True, echo=False)

    if _is_memory_url(database_url):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
        _install_sqlite_pragmas(engine, busy_timeout_ms, wal=False)
        return engine

    _ensure_sqlite_dir(database_url)
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
        echo=False,
    )
    _install_sqlite_pragmas(engine, busy_timeout_ms, wal=True)
    logger.debug("db_engine_created", backend="sqlite")
    return engine


@lru_cache
def get_engine() -> Engine:
    """Get the cached database engine.

    Returns:
        The application's SQLAlchemy engine instance.
    """
    return create_db_engine()


def create_schema(engine: Engine | None = None) -> None:
    """Create all tables that do not exist yet.

    Args:
        engine: Target engine. If None, uses the default engine.
    """
    from chatstore.db.models import Base

    if engine is None:
        engine = get_engine()
    Base.metadata.create_all(engine)
