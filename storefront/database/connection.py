"""
Database connection management with SQLAlchemy async engine.

The engine and session factory live on a ``Database`` object that the
application builds at startup and hands to request handlers through
dependency injection, so no module-level handle with store credentials is
reachable from arbitrary code.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from storefront.core.config import Settings
from storefront.core.logging import get_logger

logger = get_logger(__name__)


def to_async_database_url(url: str) -> str:
    """
    Convert PostgreSQL URL to async format.

    Args:
        url: Database connection URL

    Returns:
        Async-compatible database URL with asyncpg driver
    """
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def create_engine(settings: Settings) -> AsyncEngine:
    """
    Create async SQLAlchemy engine with connection pooling.

    Args:
        settings: Application settings

    Returns:
        Configured async SQLAlchemy engine
    """
    database_url = to_async_database_url(settings.database_url)

    pool_kwargs: dict = {}
    if settings.environment == "test":
        pool_kwargs["poolclass"] = NullPool
    else:
        pool_kwargs["pool_size"] = settings.db_pool_size
        pool_kwargs["max_overflow"] = settings.db_max_overflow

    engine = create_async_engine(
        database_url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_recycle=3600,
        connect_args={
            "server_settings": {
                "application_name": settings.app_name,
            },
            "command_timeout": settings.store_timeout_seconds * 2,
            "timeout": 10,
        },
        **pool_kwargs,
    )

    logger.info(
        "Database engine created",
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        environment=settings.environment,
    )

    return engine


class Database:
    """
    Owns the async engine and session factory for one application instance.
    """

    def __init__(self, settings: Settings, engine: Optional[AsyncEngine] = None):
        self.settings = settings
        self.engine = engine or create_engine(settings)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Create async database session with automatic cleanup.

        Commits when the block exits cleanly and rolls back otherwise.

        Yields:
            Async database session
        """
        session = self.session_factory()

        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(
                "Database session rolled back",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        finally:
            await session.close()

    async def check_health(self) -> bool:
        """
        Check database connectivity.

        Returns:
            True if a trivial query succeeds, False otherwise
        """
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(
                "Database health check failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def dispose(self) -> None:
        """
        Close all database connections and dispose of the engine.
        """
        await self.engine.dispose()
        logger.info("Database connections closed and engine disposed")
