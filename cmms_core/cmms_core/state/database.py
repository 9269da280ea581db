"""Async SQLAlchemy engine and session plumbing for the CMMS state store.

The URL scheme picks the backend:
  - ``postgresql+asyncpg://`` → pooled PostgreSQL engine whose server-side
    ``statement_timeout`` matches the store-call budget
  - ``sqlite+aiosqlite://``   → SQLite engine (local runs and tests)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)

_session_factories: dict[int, async_sessionmaker[AsyncSession]] = {}


def get_engine(
    database_url: str,
    *,
    pool_size: int = 10,
    max_overflow: int = 20,
    statement_timeout_seconds: float = 30.0,
) -> AsyncEngine:
    """Create an async engine for *database_url*.

    Parameters
    ----------
    database_url:
        PostgreSQL (asyncpg) or SQLite (aiosqlite) connection string.
    pool_size, max_overflow:
        PostgreSQL pool sizing; ignored for SQLite.
    statement_timeout_seconds:
        Server-side cap on a single statement (PostgreSQL only).  Lock
        waits are capped at the same value.
    """
    if database_url.startswith("sqlite"):
        from cmms_core.state.sqlite_adapter import get_local_engine

        # sqlite+aiosqlite:///path/to/db, or no path for in-memory
        db_path = database_url.split("///", 1)[-1] if "///" in database_url else ""
        return get_local_engine(db_path or ":memory:")

    timeout_ms = str(max(int(statement_timeout_seconds * 1000), 1))
    engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_timeout=10,
        connect_args={"server_settings": {"statement_timeout": timeout_ms, "lock_timeout": timeout_ms}},
    )
    logger.info(
        "Created PostgreSQL engine pool_size=%d max_overflow=%d statement_timeout=%sms",
        pool_size,
        max_overflow,
        timeout_ms,
    )
    return engine


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to *engine*, created once per engine."""
    factory = _session_factories.get(id(engine))
    if factory is None:
        factory = async_sessionmaker(engine, expire_on_commit=False)
        _session_factories[id(engine)] = factory
    return factory


def forget_engine(engine: AsyncEngine) -> None:
    """Drop the cached factory for a disposed *engine*."""
    _session_factories.pop(id(engine), None)


async def create_all_tables(engine: AsyncEngine) -> None:
    """Create every ORM table that does not exist yet.

    Used for local SQLite and dev databases; deployed environments run
    the Alembic migrations instead.
    """
    from cmms_core.state.tables import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def session_scope(factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits on clean exit and rolls back on error."""
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
