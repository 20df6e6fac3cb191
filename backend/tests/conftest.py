"""Pytest configuration and shared fixtures for backend tests."""

import os
import sys

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

# Add parent directory to path for tokengate module discovery
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment BEFORE importing tokengate modules
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./tokengate_test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("MIDTRANS_SERVER_KEY", "SB-Mid-server-test-key")
os.environ.setdefault("LEDGER_MAX_RETRIES", "10")

from tokengate.core.database import Base
from tokengate.models import Account


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite database file.

    A file (not ``:memory:``) so that separate sessions see the same data,
    which the concurrency tests rely on.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'tokengate.db'}",
        echo=False,
        future=True,
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_account(db_session):
    """Factory that inserts an account with the given state."""

    async def _make(user_id: str = "user-1", **fields) -> Account:
        fields.setdefault("email", f"{user_id}@example.com")
        fields.setdefault("full_name", "Test User")
        fields.setdefault("balance", 0)
        account = Account(id=user_id, **fields)
        db_session.add(account)
        await db_session.commit()
        await db_session.refresh(account)
        return account

    return _make
