"""SQLAlchemy 2.x async database setup with pgvector.

The engine is created lazily from settings; connection credentials come from
the environment only. The catalog is read once at startup, never written.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import DatabaseSettings, settings

logger = logging.getLogger(__name__)


def build_engine(db: DatabaseSettings | None = None) -> AsyncEngine:
    """Create the async engine for the catalog database."""
    db = db or settings.db
    return create_async_engine(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_pre_ping=True,
    )


engine: AsyncEngine = build_engine()

AsyncSessionMaker = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


async def database_ready() -> bool:
    """Whether the catalog database answers a trivial query."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Database health check failed: {e}")
        return False
    return True
