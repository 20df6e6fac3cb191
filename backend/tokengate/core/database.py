"""Database configuration and session management."""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

# Declarative base for models (can be imported without engine)
Base = declarative_base()

# Global engine and session factory (initialized on first use)
engine = None
AsyncSessionLocal = None


def get_engine():
    """Get or create async engine."""
    global engine
    if engine is None:
        from tokengate.core.config import settings

        kwargs = {
            "echo": settings.ENVIRONMENT == "development",
            "future": True,
        }
        if settings.ENVIRONMENT == "test":
            kwargs["poolclass"] = NullPool
        engine = create_async_engine(settings.DATABASE_URL, **kwargs)
    return engine


def get_session_factory():
    """Get or create async session factory."""
    global AsyncSessionLocal
    if AsyncSessionLocal is None:
        AsyncSessionLocal = sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )
    return AsyncSessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for FastAPI routes to get database session.

    Store methods commit their own single-row writes, so the session is only
    rolled back here when a request fails midway.

    Usage:
        @app.get("/balance")
        async def balance(db: AsyncSession = Depends(get_db)):
            ...
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def close_db() -> None:
    """Close database connections."""
    global engine, AsyncSessionLocal
    if engine is not None:
        await engine.dispose()
    engine = None
    AsyncSessionLocal = None
