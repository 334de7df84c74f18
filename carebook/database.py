"""Database configuration and connection management."""

import asyncio
from collections.abc import AsyncGenerator
from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.sql import Executable

from carebook.config import settings
from carebook.core.exceptions import ServiceUnavailableException

logger = structlog.get_logger()

# Convert sync PostgreSQL URL to async
DATABASE_URL = settings.database_url.replace("postgresql://", "postgresql+asyncpg://")

# Create async engine with connection pooling
engine: AsyncEngine = create_async_engine(
    DATABASE_URL,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    pool_recycle=3600,
    pool_timeout=settings.store_timeout_seconds,
    connect_args={
        "server_settings": {
            "application_name": settings.app_name,
            # Server-side guard matching the client-side store timeout
            "statement_timeout": str(int(settings.store_timeout_seconds * 1000)),
        },
    },
)

# Async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def execute_with_timeout(
    db: AsyncSession,
    statement: Executable,
    timeout: float | None = None,
    store: str = "database",
) -> Any:
    """
    Execute a statement, bounding it by the store timeout.

    Args:
        db: Database session
        statement: SQLAlchemy statement to execute
        timeout: Seconds to wait, defaults to ``STORE_TIMEOUT_SECONDS``
        store: Store name used in logs

    Returns:
        SQLAlchemy result

    Raises:
        ServiceUnavailableException: On timeout or a connection-level failure
    """
    timeout = timeout or settings.store_timeout_seconds
    try:
        return await asyncio.wait_for(db.execute(statement), timeout=timeout)
    except TimeoutError:
        logger.error("store_unavailable", store=store, reason="timeout", timeout=timeout)
        raise ServiceUnavailableException(f"The {store} did not respond in time")
    except (OperationalError, InterfaceError) as e:
        logger.error("store_unavailable", store=store, reason="connection", error=str(e))
        raise ServiceUnavailableException(f"The {store} is unavailable")
    except DBAPIError as e:
        if e.connection_invalidated:
            logger.error("store_unavailable", store=store, reason="invalidated", error=str(e))
            raise ServiceUnavailableException(f"The {store} is unavailable")
        raise


async def check_database_connection() -> bool:
    """Check if database connection is healthy."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (OSError, DBAPIError):
        return False
