# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Async SQLAlchemy engine on the asyncpg driver. Every repository call
# (cache, metrics, request log, chat session data) opens its own short
# session from `get_session_factory()` and commits explicitly:
#
#   async with get_session_factory()() as session:
#       session.add(row)
#       await session.commit()
#
# The engine is created lazily so that the in-memory store backend and the
# test suite never need a database driver or a reachable PostgreSQL.
# =============================================================================

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ai_engine.config import settings

logger = logging.getLogger(__name__)

_async_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_async_engine() -> AsyncEngine:
    """
    Lazily create and cache the async engine.

    - echo follows settings.debug (logs every SQL statement)
    - pool_size=5 / max_overflow=10: persistent connections plus burst headroom
    """
    global _async_engine
    if _async_engine is None:
        _async_engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            pool_size=5,
            max_overflow=10,
        )
    return _async_engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Lazily create and cache the session factory.

    expire_on_commit=False keeps attributes readable after commit; without
    it, touching a loaded row outside the session triggers a lazy load,
    which fails in async context.
    """
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            bind=get_async_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session_factory


async def create_tables() -> None:
    """Create all tables that don't exist yet (development convenience)."""
    from ai_engine.db.models import Base

    engine = get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")


async def dispose_engine() -> None:
    """Close pooled connections on application shutdown."""
    global _async_engine, _async_session_factory
    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _async_session_factory = None
