"""
Shared pytest fixtures: in-memory database, fake repository and fake PortPro client.
"""
from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import app.models  # noqa: F401  registers every table on Base.metadata
from app.core.config import Settings, get_settings
from app.models.base import Base
from tests.fakes import FakeLoadRepository

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def fake_repository() -> FakeLoadRepository:
    return FakeLoadRepository()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        portpro_access_token="access-token",
        portpro_refresh_token="refresh-token",
        portpro_reconcile_batch_delay_seconds=0,
    )


@pytest.fixture
def clean_settings(monkeypatch):
    """Clear the cached settings around a test that sets environment variables."""
    for name in (
        "PORTPRO_ACCESS_TOKEN",
        "PORTPRO_REFRESH_TOKEN",
        "QSTASH_CURRENT_SIGNING_KEY",
        "QSTASH_NEXT_SIGNING_KEY",
        "CRON_SECRET",
        "AUTH_JWT_SECRET",
        "PORTPRO_WEBHOOK_SECRET",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


