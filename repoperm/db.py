"""Async SQLAlchemy database layer backing the persistent permission cache."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from sqlalchemy import delete, select, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from repoperm.models import Base, CacheEntry

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# Engine & session factory
# ------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def configure(db_path: Path | str) -> None:
    """Set the database path and create the async engine."""
    global _engine, _session_factory
    url = f"sqlite+aiosqlite:///{db_path}"
    _engine = create_async_engine(url, echo=False)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database not configured – call db.configure() first")
    return _session_factory


@asynccontextmanager
async def session() -> AsyncIterator[AsyncSession]:
    """Async context manager yielding a ready-to-use SQLAlchemy session."""
    factory = _get_session_factory()
    async with factory() as sess:
        yield sess
        await sess.commit()


async def init_db() -> None:
    """Create the cache table if it does not exist yet."""
    if _engine is None:
        raise RuntimeError("Database not configured – call db.configure() first")
    async with _engine.begin() as conn:
        await conn.execute(text("PRAGMA journal_mode=WAL"))
        await conn.run_sync(Base.metadata.create_all)
    logger.debug("Permission cache database initialised")


async def dispose() -> None:
    """Dispose of the engine and reset module state."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


# ------------------------------------------------------------------
# Cache helpers
# ------------------------------------------------------------------


async def cache_get(key: str) -> bytes | None:
    async with session() as sess:
        stmt = select(CacheEntry.value).where(CacheEntry.key == key).limit(1)
        result = await sess.execute(stmt)
        row = result.first()
        return None if row is None else bytes(row[0])


async def cache_set(key: str, value: bytes, ts: int) -> None:
    async with session() as sess:
        stmt = sqlite_insert(CacheEntry).values(key=key, value=value, updated_ts=ts)
        stmt = stmt.on_conflict_do_update(
            index_elements=[CacheEntry.key],
            set_={
                "value": stmt.excluded.value,
                "updated_ts": stmt.excluded.updated_ts,
            },
        )
        await sess.execute(stmt)


async def cache_delete(key: str) -> None:
    async with session() as sess:
        await sess.execute(delete(CacheEntry).where(CacheEntry.key == key))


async def cache_purge_older_than(ts: int) -> int:
    """Delete entries last written before *ts*; returns the number removed."""
    async with session() as sess:
        result = await sess.execute(
            delete(CacheEntry).where(CacheEntry.updated_ts < ts)
        )
        return result.rowcount or 0
