"""Database engine and session factory."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from booking_engine.config import Settings, settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def build_engine(url: str | None = None, config: Settings = settings, **kwargs) -> AsyncEngine:
    """Create an async engine.

    PostgreSQL (asyncpg) gets a sized pool; other URLs, such as the sqlite
    databases used in tests, take their pool options from kwargs.
    """
    url = url or config.database_url
    options: dict = {"echo": config.debug, "pool_pre_ping": True}
    if url.startswith("postgresql"):
        options.update(pool_size=config.db_pool_size, max_overflow=config.db_max_overflow)
    options.update(kwargs)
    return create_async_engine(url, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables. Development and tests only."""
    # Register models with Base.metadata
    import booking_engine.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(engine: AsyncEngine) -> None:
    """Drop all tables. Use only in development/testing."""
    import booking_engine.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
