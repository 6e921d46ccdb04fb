"""Database engine and session configuration for ORM models."""

import asyncio
import logging
from typing import AsyncGenerator, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

import db.models  # noqa: F401  registers tables on Base.metadata
from core.config import DATABASE_URL
from db.base import Base

logger = logging.getLogger(__name__)


def _make_async_url(url: str) -> Optional[str]:
    """Convert a DB URL to the async driver form.

    Returns None if the URL scheme is not supported for async operations.
    """
    if url.startswith("postgis://"):
        return url.replace("postgis://", "postgresql+psycopg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    if url.startswith("sqlite+aiosqlite://"):
        return url
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if "+" in url.split("://", 1)[0]:
        # Already names an explicit driver
        return url
    return None


# AsyncEngine and session factory bound to it if URL is provided
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker[AsyncSession]] = None

if DATABASE_URL:
    ASYNC_DATABASE_URL = _make_async_url(DATABASE_URL)
    if ASYNC_DATABASE_URL:
        engine = create_async_engine(ASYNC_DATABASE_URL, echo=False)
        AsyncSessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)
    else:
        logger.warning("Unsupported DATABASE_URL scheme; database features disabled")


async def init_db() -> None:
    """Initialize the database by creating all tables defined on Base metadata."""
    if engine is None:
        return
    max_attempts = 15
    delay = 1.0
    for attempt in range(1, max_attempts + 1):
        try:
            async with engine.begin() as conn:
                # run_sync executes a synchronous callable in the async engine
                await conn.run_sync(Base.metadata.create_all)
            return
        except OperationalError as exc:
            if attempt >= max_attempts:
                raise
            logger.warning(
                "Database not ready (attempt %s/%s): %s",
                attempt,
                max_attempts,
                exc,
            )
            await asyncio.sleep(delay)
            delay = min(delay * 1.5, 5.0)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Async generator yielding a database session for dependency injection."""
    if AsyncSessionLocal is None:
        raise RuntimeError(
            "Database session factory is not configured; "
            "set DATABASE_URL (postgresql:// or sqlite://) before starting the API."
        )
    async with AsyncSessionLocal() as session:
        yield session
