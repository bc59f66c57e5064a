"""
Database Layer

Async SQLAlchemy setup backing the pgvector record store.

Design:
    - Lazy initialization: engine created on first use, not at import.
    - get_session_factory: returns a reusable async session maker.
    - dispose_engine: called from the FastAPI lifespan on shutdown.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from docintel.core.config import settings

logger = logging.getLogger(__name__)

# Module-level singletons (lazy)
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async SQLAlchemy engine (singleton)."""
    global _engine  # noqa: PLW0603
    if _engine is None:
        _engine = create_async_engine(settings.DATABASE_URL, echo=False, pool_size=5)
        logger.info(
            "Database engine created: %s@%s",
            settings.POSTGRES_USER,
            settings.POSTGRES_HOST,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory (singleton)."""
    global _session_factory  # noqa: PLW0603
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            expire_on_commit=False,
        )
    return _session_factory


async def dispose_engine() -> None:
    """Dispose the engine at application shutdown."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database engine disposed")
