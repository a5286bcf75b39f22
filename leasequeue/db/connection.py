"""
Database connection management.
Handles async SQLAlchemy engine and session creation.
"""

import logging

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from leasequeue.config import Settings
from leasequeue.db.models import Base
from leasequeue.exceptions import StoreConnectionError

logger = logging.getLogger(__name__)


def create_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async database engine described by the settings.

    Pool sizing only applies to server databases; SQLite picks its own pool.

    Args:
        settings: Queue settings.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    options: dict = {
        "echo": settings.log_level.upper() == "DEBUG",
        "pool_pre_ping": True,
    }
    if make_url(settings.database_url).get_backend_name() != "sqlite":
        options["pool_size"] = settings.database_pool_size
        options["max_overflow"] = settings.database_max_overflow

    return create_async_engine(settings.database_url, **options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory used by the store."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def check_connection(engine: AsyncEngine) -> None:
    """
    Open a connection and run a trivial query.

    Raises:
        StoreConnectionError: If the database cannot be reached.
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(
            "Database connection failed",
            extra={"url": engine.url.render_as_string(hide_password=True)},
        )
        raise StoreConnectionError(
            "There was an error while attempting to connect to the database."
        ) from e

    logger.info("Database connection initialized")


async def create_schema(engine: AsyncEngine) -> None:
    """Create the messages table if it does not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_engine(engine: AsyncEngine) -> None:
    """Dispose of the engine and its pooled connections."""
    await engine.dispose()
    logger.info("Database connection closed")
