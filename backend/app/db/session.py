"""
Database session configuration.

This module handles database engine creation and session management
using SQLAlchemy with async support for PostgreSQL. The database is one of
the interchangeable backends of the key-value store.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from backend.app.core.config import settings

# Create declarative base for models
Base = declarative_base()


def create_engine(url: str = None, **kwargs) -> AsyncEngine:
    """Create the async engine, pooled per settings unless overridden."""
    options = {
        "echo": settings.db_echo,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "future": True,
    }
    options.update(kwargs)
    return create_async_engine(url or settings.database_url, **options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create async session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create all registered tables (idempotent)."""
    # Register models with Base before create_all
    from backend.app.models import kv_entry  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
