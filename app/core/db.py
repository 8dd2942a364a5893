import asyncio
import logging
import re
from collections.abc import AsyncGenerator
from functools import lru_cache

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import get_settings
from app.models.base import Base

logger = logging.getLogger(__name__)


def get_async_database_url(url: str) -> str:
    """Convert database URL to async-compatible format using psycopg driver."""
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    elif url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg://", 1)

    if "channel_binding=" in url:
        url = re.sub(r'[&?]channel_binding=[^&]*', '', url)
        url = url.replace('?&', '?').rstrip('?')

    return url


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """Build the process-wide engine on first use."""
    settings = get_settings()
    database_url = get_async_database_url(settings.database_url)

    connect_args = {}
    if "postgresql" in database_url or "postgres" in database_url:
        connect_args = {
            "connect_timeout": 10,
        }

    logger.info(f"[DB] Creating database engine with URL: {database_url.split('@')[0]}@***")
    return create_async_engine(
        database_url,
        future=True,
        echo=settings.debug,
        pool_pre_ping=True,  # Verify connections before using
        pool_recycle=3600,   # Recycle connections after 1 hour
        pool_timeout=10,     # Wait up to 10 seconds for a connection from pool
        max_overflow=10,     # Allow extra connections beyond pool_size
        connect_args=connect_args,
    )


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=get_engine(),
        expire_on_commit=False,
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory()() as session:
        yield session


async def init_database() -> None:
    """Create all tables. Production schemas are managed outside this service.

    Best-effort: if create_all fails the app keeps running against the
    existing schema.
    """
    import app.models  # noqa: F401  registers every table on Base.metadata

    logger.info("[DB] Initializing database tables...")
    try:
        async with get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("[DB] Database tables initialized successfully")
    except Exception as e:
        logger.warning(f"[DB] create_all failed, continuing with existing schema: {e}")


async def test_database_connection() -> bool:
    """Test database connection with timeout."""

    async def _test_connection():
        async with get_engine().connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.fetchone()

    try:
        await asyncio.wait_for(_test_connection(), timeout=10.0)
        logger.info("[DB] Database connection test successful")
        return True
    except asyncio.TimeoutError:
        logger.error("[DB] Database connection test timed out after 10 seconds")
        return False
    except Exception as e:
        logger.error(f"[DB] Database connection test failed: {type(e).__name__}: {e}", exc_info=True)
        return False
