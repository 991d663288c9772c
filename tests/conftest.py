"""
Pytest configuration and shared fixtures.

Every test gets a fresh SQLite database file unless TEST_DATABASE_URL
points at another database.
"""

import itertools
import os
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from pathlib import Path
from typing import Any

# Must be set before app modules read settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./referral_test.db")
os.environ.setdefault("TELEGRAM_BOT_USERNAME", "tap_test_bot")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)

from app.config.database import create_engine, create_session_maker  # noqa: E402
from app.models import Base, User  # noqa: E402
from app.services.referral_service import ReferralService  # noqa: E402

# ==================== PYTEST CONFIGURATION ====================


def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')",
    )
    config.addinivalue_line("markers", "critical: marks tests as critical")
    config.addinivalue_line("markers", "integration: marks integration tests")
    config.addinivalue_line("markers", "e2e: marks end-to-end tests")


# ==================== DATABASE FIXTURES ====================

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


@pytest_asyncio.fixture
async def async_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine with a clean schema for one test."""
    url = TEST_DATABASE_URL or (
        f"sqlite+aiosqlite:///{tmp_path / 'referral_test.db'}"
    )
    engine = create_engine(url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(
    async_engine: AsyncEngine,  # pylint: disable=redefined-outer-name
) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return create_session_maker(async_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],  # pylint: disable=redefined-outer-name
) -> AsyncGenerator[AsyncSession, None]:
    """
    Create database session for tests.

    Args:
        session_factory: Session factory

    Yields:
        AsyncSession: Database session
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def stub_broker() -> Generator[Any, None, None]:
    """Dramatiq stub broker with empty queues."""
    from jobs.broker import broker

    broker.flush_all()
    yield broker
    broker.flush_all()


# ==================== MODEL FIXTURES ====================


@pytest.fixture
def create_user_helper(
    db_session: AsyncSession,  # pylint: disable=redefined-outer-name
) -> Callable[..., Awaitable[User]]:
    """
    Factory fixture creating committed users.

    Usage:
        user = await create_user_helper(username="alice")
    """
    telegram_ids = itertools.count(700000001)

    async def _create(
        telegram_id: int | None = None,
        username: str | None = None,
        referral_code: str | None = None,
        xp: int = 0,
    ) -> User:
        telegram_id = telegram_id or next(telegram_ids)
        user = User(
            telegram_id=telegram_id,
            username=username or f"user{telegram_id}",
            referral_code=referral_code,
            referral_chain=[],
            xp=xp,
            total_referral_xp=0,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create


@pytest.fixture
def bind_user_helper(
    db_session: AsyncSession,  # pylint: disable=redefined-outer-name
) -> Callable[[int, int], Awaitable[list[int]]]:
    """
    Factory fixture binding a user to a referrer through the service.

    Returns the ancestor ids of the new chain.
    """

    async def _bind(user_id: int, referrer_id: int) -> list[int]:
        service = ReferralService(db_session)
        code_info = await service.request_or_generate_code(referrer_id)
        result = await service.apply_code(user_id, code_info["referral_code"])
        assert result.success, result.reason
        return [link.user_id for link in result.chain]

    return _bind


@pytest_asyncio.fixture
async def test_referral_chain(
    create_user_helper: Callable[..., Awaitable[User]],  # pylint: disable=redefined-outer-name
    bind_user_helper: Callable[[int, int], Awaitable[list[int]]],  # pylint: disable=redefined-outer-name
) -> list[int]:
    """
    Create a four user chain: root <- level1 <- level2 <- level3.

    Returns:
        User ids [root, level1, level2, level3]
    """
    ids = [(await create_user_helper()).id for _ in range(4)]

    for referrer_id, user_id in zip(ids, ids[1:]):
        await bind_user_helper(user_id, referrer_id)

    return ids
