"""Async SQLAlchemy engine and session factory builders.

All database operations use the SQLAlchemy 2.0 async session pattern.
The engine is created once at process startup (FastAPI lifespan or CLI)
and handed to every component explicitly; nothing here holds global state.
"""

from collections.abc import AsyncGenerator

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


def build_engine(database_url: str) -> AsyncEngine:
    """Create the async engine. Pool options only apply to server databases."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=False)
    return create_async_engine(
        database_url,
        echo=False,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    # Model modules register themselves on Base.metadata when imported.
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_schema_ready")


async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits on success and rolls back on error."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("postgres_session_error", error=str(e))
            raise
        except Exception:
            await session.rollback()
            raise


async def close_engine(engine: AsyncEngine) -> None:
    """Gracefully dispose of the async engine connection pool."""
    logger.info("postgres_shutdown")
    await engine.dispose()
