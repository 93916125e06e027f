"""
Local store setup - SQLite engine, session factory and schema bootstrap
"""
from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker
from typing import Optional
import logging
import os

from exam_tether.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()

# Bound to an engine by init_db()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)

# Columns added after the first release; older store files get them on open
_LATE_COLUMNS = [
    ("quiz_questions", "image_url", "TEXT"),
    ("quiz_questions", "passage_text", "TEXT"),
]

_engine: Optional[Engine] = None


class StoreUnavailableError(Exception):
    """Raised when the local store cannot be opened at start-up"""


def create_store_engine(db_path: str, busy_timeout_ms: Optional[int] = None) -> Engine:
    """
    Create a SQLite engine tuned for many readers and one writer

    - WAL journal so readers never wait on the writer
    - busy_timeout so writers queue for a bounded time instead of failing at once
    - foreign keys enforced (questions reference quizzes)
    """
    directory = os.path.dirname(os.path.abspath(db_path))
    os.makedirs(directory, exist_ok=True)

    timeout_ms = busy_timeout_ms if busy_timeout_ms is not None else settings.DB_BUSY_TIMEOUT_MS

    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": timeout_ms / 1000},
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={int(timeout_ms)}")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def _add_missing_columns(engine: Engine) -> None:
    inspector = inspect(engine)
    with engine.begin() as conn:
        for table, column, column_type in _LATE_COLUMNS:
            existing = {c["name"] for c in inspector.get_columns(table)}
            if column not in existing:
                conn.exec_driver_sql(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")
                logger.info(f"Added missing column {table}.{column}")


def init_db(engine: Optional[Engine] = None) -> Engine:
    """
    Open the local store, create tables and bind SessionLocal

    Raises:
        StoreUnavailableError: store file is locked or cannot be opened
    """
    global _engine

    # Register models on Base.metadata
    from exam_tether import models  # noqa: F401

    engine = engine or create_store_engine(settings.database_path)

    try:
        Base.metadata.create_all(bind=engine)
        _add_missing_columns(engine)
    except OperationalError as e:
        engine.dispose()
        message = str(e.orig) if e.orig is not None else str(e)
        if "locked" in message:
            raise StoreUnavailableError(
                "Database is in use by another process. "
                "Close every other offline server and try again."
            ) from e
        raise StoreUnavailableError(f"Failed to open database: {message}") from e

    if _engine is not None and _engine is not engine:
        _engine.dispose()
    _engine = engine
    SessionLocal.configure(bind=engine)

    return engine


def dispose_db() -> None:
    """Release pooled connections (on shutdown)"""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None


def get_db():
    """FastAPI dependency yielding a request-scoped session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def is_initialized() -> bool:
    return _engine is not None
