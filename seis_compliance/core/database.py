from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from seis_compliance.config import settings

logger = logging.getLogger(__name__)

# Async engine used only for readiness checks; repositories use core.sql
engine: AsyncEngine | None = None


async def init_database():
    """Initialize database connection if DATABASE_URL is provided."""
    global engine

    if not settings.database_url:
        logger.info("No DATABASE_URL provided, running with in-memory repositories")
        return

    url = make_url(settings.database_url)
    if url.drivername.startswith("sqlite"):
        logger.info("SQLite DATABASE_URL provided, skipping async engine for health checks")
        return
    if url.drivername in {"postgresql", "postgres", "postgresql+psycopg2"}:
        url = url.set(drivername="postgresql+asyncpg")

    try:
        engine = create_async_engine(
            url,
            echo=settings.debug,
            pool_pre_ping=True,
            pool_recycle=300,
        )

        logger.info("Database connection initialized successfully")

    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def dispose_database() -> None:
    """Release pooled connections on shutdown."""
    global engine
    if engine is not None:
        await engine.dispose()
    engine = None


async def check_database_health() -> bool:
    """Check if database is accessible."""
    if not engine:
        return True  # No database configured, consider healthy

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
