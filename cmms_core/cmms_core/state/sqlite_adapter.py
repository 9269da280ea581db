"""SQLite adapter for local-only CMMS operation.

Provides an async SQLAlchemy engine backed by ``aiosqlite`` that uses the
same ORM table definitions as the production PostgreSQL backend, so the
API can run without an external database and the test suite can use an
in-memory store.

Key differences from the PostgreSQL backend:

* No connection pooling (SQLite is single-writer).
* JSONB columns fall back to SQLite's JSON (stored as TEXT).
* In-memory databases share one connection so every session sees the
  same data.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

_BUSY_TIMEOUT_MS = 5000


def get_local_engine(
    db_path: Path | str = ".cmms/state.db",
) -> AsyncEngine:
    """Create an async SQLAlchemy engine backed by SQLite via aiosqlite.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Parent directories are
        created automatically.  Use ``:memory:`` for ephemeral
        in-memory databases (useful for testing).
    """
    db_path = Path(db_path) if db_path != ":memory:" else db_path

    if isinstance(db_path, Path):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{db_path}",
            echo=False,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_async_engine(
            "sqlite+aiosqlite://",
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_conn: object, _: object) -> None:
        cursor = dbapi_conn.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        # Concurrent request sessions wait for the writer instead of failing.
        cursor.execute(f"PRAGMA busy_timeout={_BUSY_TIMEOUT_MS}")
        cursor.close()

    logger.info("Created SQLite engine: %s", engine.url)
    return engine

