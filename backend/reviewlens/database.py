"""Database engine and session management for the analysis cache store."""

import os
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine, AsyncSession
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for models."""
    pass


def create_engine_for(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given database URL.

    SQLite parent directories are created on demand so the default
    ``./data/analysis_cache.db`` location works on a fresh checkout.

    Args:
        database_url: SQLAlchemy URL (e.g. sqlite+aiosqlite:///./data/cache.db)
        echo: Log SQL statements

    Returns:
        Async engine
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        directory = os.path.dirname(url.database)
        if directory:
            os.makedirs(directory, exist_ok=True)

    return create_async_engine(database_url, echo=echo)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database - create all tables."""
    # Import models so they're registered with Base
    from reviewlens.models import cache_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
