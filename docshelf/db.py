# docshelf/db.py
import logging

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from docshelf.config import Settings

logger = logging.getLogger(__name__)


def build_engine(settings: Settings) -> AsyncEngine:
    # Engine: tune pool size via the URL query string if needed
    return create_async_engine(settings.database_url, echo=False)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models(engine: AsyncEngine, metadata: MetaData) -> None:
    """
    Development helper that creates tables from metadata.
    In production, prefer Alembic migrations instead of create_all().
    """
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    logger.info("Database tables created/checked")


async def close_engine(engine: AsyncEngine) -> None:
    """Call this on app shutdown to cleanly dispose connection pool."""
    await engine.dispose()
    logger.info("Database engine disposed")
