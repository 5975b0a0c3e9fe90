"""Engine construction and unit-of-work sessions for the Clubhouse store.

Hosted deployments point ``API_DATABASE_URL`` at PostgreSQL through
asyncpg. Local runs and the test-suite use a SQLite file (or ``:memory:``)
through aiosqlite, built by :mod:`clubhouse_core.state.sqlite_adapter`.
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

# Server-side limits for onboarding and webhook transactions, in milliseconds.
_PG_SERVER_SETTINGS = {
    "statement_timeout": "30000",
    "lock_timeout": "10000",
}

_factories_by_engine: dict[int, async_sessionmaker[AsyncSession]] = {}


def _sqlite_path(database_url: str) -> str:
    """``sqlite+aiosqlite:///clubhouse.db`` -> ``clubhouse.db``; no path means in-memory."""
    _, sep, path = database_url.partition("///")
    return path if sep and path else ":memory:"


def get_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
) -> AsyncEngine:
    """Build the engine that backs tenants, memberships, tokens and audit rows.

    *pool_size* and *max_overflow* size the asyncpg pool; SQLite engines
    keep a single writer and ignore both.
    """
    if database_url.startswith("sqlite"):
        from clubhouse_core.state.sqlite_adapter import get_local_engine

        return get_local_engine(_sqlite_path(database_url))

    engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_timeout=10,
        connect_args={"server_settings": dict(_PG_SERVER_SETTINGS)},
    )
    logger.info("Clubhouse store on PostgreSQL (pool %d + %d overflow)", pool_size, max_overflow)
    return engine


def get_dialect_name(session: AsyncSession) -> str:
    """Name of the backend behind *session*; repositories branch on it for upserts."""
    dialect = getattr(session.get_bind(), "dialect", None)
    return str(getattr(dialect, "name", ""))


@asynccontextmanager
async def get_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """One onboarding step as a unit of work: commit on success, roll back on error."""
    factory = _factories_by_engine.get(id(engine))
    if factory is None:
        factory = _factories_by_engine[id(engine)] = async_sessionmaker(engine, expire_on_commit=False)

    async with factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        await session.commit()
