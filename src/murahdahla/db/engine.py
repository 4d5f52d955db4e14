"""SQLite storage for servers, groups, races and submissions.

The bot and the HTTP views share one engine per process. ``get_session``
is a unit of work that commits when its block exits cleanly; repository
methods only flush, and ``db.repository.transaction`` wraps this for the
core.
"""

from __future__ import annotations

import logging
import weakref
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import Engine, event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from murahdahla.db.models import Base

logger = logging.getLogger(__name__)

SQLITE_PRAGMAS = (
    "journal_mode=WAL",
    "synchronous=NORMAL",
    "busy_timeout=15000",
    # Removing a group or server relies on ON DELETE CASCADE, off by default.
    "foreign_keys=ON",
)


def create_engine(database_url: str) -> AsyncEngine:
    """Engine for *database_url* with the pragmas the race tables rely on.

    A command handler may write while an API request reads the same file;
    WAL plus a 15 second busy wait turns that into a short queue.
    """
    connect_args: dict[str, object] = {"timeout": 15}

    engine = create_async_engine(database_url, echo=False, connect_args=connect_args)

    @event.listens_for(engine.sync_engine, "connect")
    def _apply_pragmas(dbapi_conn: object, connection_record: object) -> None:
        cursor = dbapi_conn.cursor()  # type: ignore[union-attr]
        for pragma in SQLITE_PRAGMAS:
            cursor.execute(f"PRAGMA {pragma}")
        cursor.close()

    return engine


async def create_tables(engine: AsyncEngine) -> None:
    """Create any missing tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("db_tables_ready")


# One session factory per engine instance. Weakly keyed so a disposed test
# engine never hands its factory to a new engine.
_session_factories: weakref.WeakKeyDictionary[Engine, async_sessionmaker[AsyncSession]] = (
    weakref.WeakKeyDictionary()
)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return a cached session factory bound to *engine*."""
    factory = _session_factories.get(engine.sync_engine)
    if factory is None:
        factory = async_sessionmaker(engine, expire_on_commit=False)
        _session_factories[engine.sync_engine] = factory
    return factory


@asynccontextmanager
async def get_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Session for one unit of work: committed on a clean exit, else rolled back."""
    factory = create_session_factory(engine)
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:  # rollback, then let transaction() map the error
            await session.rollback()
            raise
