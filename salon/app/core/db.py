"""Async database access for the booking core.

The engine is created lazily on first use so importing services never opens
a connection. Booking commits and the outbox worker each open their own
short-lived session through ``get_session``.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..domain.models import Base

logger = logging.getLogger(__name__)


# =====================================================
# 🔧 Connection target
# =====================================================
DATABASE_URL_ENV = "DATABASE_URL"
DEFAULT_URL = "postgresql+asyncpg://salon_user:salon_pass@db:5432/salon_db"

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def database_url() -> str:
    """URL from the environment, read at engine creation time."""
    return os.getenv(DATABASE_URL_ENV) or DEFAULT_URL


# =====================================================
# ⚙️ Engine / sessions
# =====================================================
def _make_engine(url: str) -> AsyncEngine:
    if url.startswith("postgresql"):
        # Bookings arrive in bursts; stale pooled connections are dropped before use
        return create_async_engine(url, pool_pre_ping=True, pool_size=10, max_overflow=5)
    return create_async_engine(url)


def get_engine() -> AsyncEngine:
    global _engine, _session_factory
    if _engine is None:
        _engine = _make_engine(database_url())
        # Committed Booking rows are returned to callers after the session closes
        _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
        logger.debug("Database engine created")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    get_engine()
    assert _session_factory is not None
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Yield a session; callers commit or roll back explicitly."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        await session.close()


def is_postgres(session: AsyncSession) -> bool:
    """True when advisory locks and row locking options are available."""
    return session.get_bind().dialect.name == "postgresql"


# =====================================================
# 🧩 Schema helpers
# =====================================================
async def init_db(force: bool = False) -> None:
    """Create tables from model metadata (dev and tests; production uses Alembic)."""
    async with get_engine().begin() as conn:
        if force:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Booking schema ready (force=%s)", force)


def _reset_engine_for_tests() -> None:
    global _engine, _session_factory
    _engine = None
    _session_factory = None


__all__ = [
    "database_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "is_postgres",
    "init_db",
    "_reset_engine_for_tests",
]
