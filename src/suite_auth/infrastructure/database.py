"""
Database engine and session factory for the auth store.

PostgreSQL (asyncpg) in production, SQLite (aiosqlite) for development and tests.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from suite_auth.models import Base

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> str:
    """Convert postgresql:// to postgresql+asyncpg:// if needed"""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def create_engine(database_url: str, echo: bool = False, pooled: bool = True) -> AsyncEngine:
    """
    Create the async engine.

    Args:
        database_url: SQLAlchemy URL
        echo: Enable SQL logging
        pooled: Disable to use NullPool (tests)

    Returns:
        AsyncEngine
    """
    url = normalize_database_url(database_url)
    kwargs = {"echo": echo, "pool_pre_ping": True}
    if not pooled:
        kwargs["poolclass"] = NullPool

    engine = create_async_engine(url, **kwargs)
    logger.info(f"Database engine created ({engine.url.get_backend_name()})")
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Don't expire objects after commit
        autoflush=False,
    )


async def init_models(engine: AsyncEngine) -> None:
    """
    Create all tables defined in SQLAlchemy models.

    Should only be used in development/testing.
    In production, use Alembic migrations instead.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_models(engine: AsyncEngine) -> None:
    """
    Drop all database tables.

    WARNING: This will delete all data!
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
