"""Database connection and session management"""

import logging
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from trainermatch.config import settings

logger = logging.getLogger(__name__)

# Create async engine
engine = create_async_engine(
    str(settings.database_url),
    echo=settings.app_debug and settings.log_level.upper() == "DEBUG",
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
)

# Create session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Create declarative base
Base = declarative_base()


async def init_db() -> bool:
    """Initialize database connection and create tables if needed.

    Returns False when running without a database (mock mode).
    """
    if not settings.is_database_configured():
        logger.warning("Database not configured - using in-memory cache and static roster")
        return False

    try:
        # Import models to register them with Base.metadata
        from trainermatch.db import models  # noqa: F401

        logger.info("Connecting to database...")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database connection established successfully")
        return True
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}", exc_info=True)
        # Cache degrades to recomputation; the app still starts
        logger.warning("Running without database connection")
        return False


async def close_db() -> None:
    """Close database connections"""
    await engine.dispose()
    logger.info("Database connections closed")

