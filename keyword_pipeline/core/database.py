"""Async SQLAlchemy database setup for checkpoint persistence."""

import logging

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from keyword_pipeline.config import settings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def create_engine_for_url(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine with pool options suited to the backend."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_recycle=300,  # Recycle connections every 5 min to avoid server-side timeouts
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session factory bound to the given engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = create_engine_for_url(settings.database_url, echo=settings.database_echo)
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Return the process-wide session factory."""
    global _session_maker
    if _session_maker is None:
        _session_maker = create_session_factory(get_engine())
    return _session_maker


@asynccontextmanager
async def get_session_context(
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    *,
    commit_on_exit: bool = True,
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session as context manager."""
    maker = session_maker or get_session_maker()
    async with maker() as session:
        try:
            yield session
            if commit_on_exit:
                await session.commit()
        except Exception as e:
            logger.warning(f"Database session error: {repr(e)}, rolling back")
            try:
                await session.rollback()
            except Exception:
                logger.warning("Rollback also failed (connection likely closed)")
            raise


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Initialize database (create tables if needed)."""
    logger.info("Initializing database tables")
    from keyword_pipeline.models.base import Base
    import keyword_pipeline.models.checkpoint  # noqa: F401  (register tables)

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(engine: AsyncEngine | None = None) -> None:
    """Drop all pipeline tables."""
    logger.info("Dropping database tables")
    from keyword_pipeline.models.base import Base
    import keyword_pipeline.models.checkpoint  # noqa: F401

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def close_db() -> None:
    """Close database connections."""
    global _engine, _session_maker
    logger.info("Closing database connections")
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_maker = None
