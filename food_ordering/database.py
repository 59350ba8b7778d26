"""
Database Connection Module
Builds the SQLAlchemy async engine and session factory from settings.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from food_ordering.core.config import Settings


# Base class for all our models
class Base(DeclarativeBase):
    pass


def create_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async engine described by ``settings.database_url``.

    SQLite (used by the test suite) gets its default pool; server
    databases get a sized connection pool.
    """
    options = {"echo": settings.database_echo}
    if not settings.database_url.startswith("sqlite"):
        options["pool_size"] = settings.database_pool_size
        options["max_overflow"] = settings.database_max_overflow
        options["pool_pre_ping"] = True
    return create_async_engine(settings.database_url, **options)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory - creates new database sessions."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Objects remain accessible after commit
    )


async def init_db(engine: AsyncEngine) -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # Register models on Base.metadata
    from food_ordering import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
