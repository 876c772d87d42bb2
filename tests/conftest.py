"""
Shared pytest fixtures – in-memory SQLite for unit tests (no real Postgres needed).
"""
from __future__ import annotations

import asyncio
from typing import AsyncGenerator, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from app.config import Settings, get_settings
from app.deps import get_http_client, get_llm_client, get_session_factory
from app.main import app
from app.models import Base

# Use aiosqlite for tests (no Postgres needed)
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"
TEST_SECRET = "testsecret"
TEST_ORIGIN = "https://shop.example.com"


class FakeLLM:
    """Stands in for LLMClient: canned reply, optional error or delay."""

    def __init__(
        self,
        reply: str = "",
        exc: Optional[Exception] = None,
        delay: float = 0.0,
        model: str = "fake-model",
    ) -> None:
        self.reply = reply
        self.exc = exc
        self.delay = delay
        self.model = model
        self.calls: List[list] = []

    async def complete(self, messages, *, temperature, max_tokens, json_mode=True) -> str:
        self.calls.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        return self.reply

    async def close(self) -> None:
        pass


@pytest.fixture
def make_llm():
    return FakeLLM


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        shopify_webhook_secret=TEST_SECRET,
        llm_api_key=None,
        allowed_origin=TEST_ORIGIN,
        llm_timeout_seconds=1.0,
        catalog_timeout_seconds=1.0,
    )


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, settings) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_llm_client] = lambda: None
    app.dependency_overrides[get_http_client] = lambda: None

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()
