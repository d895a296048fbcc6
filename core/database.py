"""
core/database.py -- Engine construction and storage error translation.

Both stores (auth/store.py and plans/store.py) build their engines here so the
timeout and SQLite pragma policy is identical everywhere:

  - SQLite: check_same_thread=False (TestClient and the FastAPI threadpool
    share connections across threads), a busy timeout so concurrent writers
    wait instead of failing immediately, WAL journal mode for concurrent read
    safety, and foreign key enforcement (off by default in SQLite).
  - Other drivers: connect timeout and pool checkout timeout.

connect() and transaction() wrap engine.connect()/engine.begin() and turn
driver-level failures (locked database, refused connection, exhausted pool)
into core.errors.StorageUnavailable. IntegrityError is deliberately NOT
translated -- it carries meaning (duplicate email, duplicate like) that the
caller maps to a Conflict.

Layer rule: core/ is the kernel. No imports from api/, auth/, plans/, or client/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from core.errors import StorageUnavailable

logger = logging.getLogger("cropcase.database")


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(db_url: str, timeout: float = 5.0) -> Engine:
    """Create an Engine with bounded waits for the given database URL."""
    if db_url.startswith("sqlite"):
        engine = create_engine(db_url, connect_args={"check_same_thread": False, "timeout": timeout})
        event.listen(engine, "connect", _set_sqlite_pragmas)
        return engine
    connect_args: dict = {}
    if db_url.startswith("postgresql"):
        connect_args["connect_timeout"] = max(1, int(timeout))
    return create_engine(db_url, connect_args=connect_args, pool_timeout=timeout, pool_pre_ping=True)


@contextmanager
def connect(engine: Engine) -> Iterator[Connection]:
    """Yield a connection; driver and pool failures become StorageUnavailable."""
    try:
        with engine.connect() as conn:
            yield conn
    except (OperationalError, PoolTimeoutError) as exc:
        logger.error("Storage operation failed: %s", exc.__class__.__name__)
        raise StorageUnavailable() from exc


@contextmanager
def transaction(engine: Engine) -> Iterator[Connection]:
    """Yield a connection inside BEGIN/COMMIT; rolls back on any exception."""
    try:
        with engine.begin() as conn:
            yield conn
    except (OperationalError, PoolTimeoutError) as exc:
        logger.error("Storage transaction failed: %s", exc.__class__.__name__)
        raise StorageUnavailable() from exc


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Serialize a UTC datetime with fixed precision so stored strings sort chronologically."""
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(now_utc())


def from_iso(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
