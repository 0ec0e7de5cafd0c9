"""Shared test fixtures for the GitLab bridge."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from bridge.config import Settings
from bridge.context import BridgeContext, create_context
from bridge.main import create_app
from bridge.models.base import Base
from tests.fake_gitlab import API_URL, FakeGitlab

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    import httpx

TEST_API_KEY = "test-api-key-with-at-least-32-characters"
TEST_OWNER = "alice"


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (DB schema,
    context, pipeline, staging manager) because ASGITransport does not
    trigger it. The periodic sweep is not started.
    """
    from bridge.database import create_engine as create_db_engine
    from bridge.services.temp_repo_service import TempRepoManager
    from bridge.services.upload_service import UploadPipeline

    app = create_app(settings)
    settings.validate_runtime_security()

    engine, session_factory = create_db_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.settings = settings

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    context = create_context(settings, session_factory, transport=transport)
    app.state.context = context
    app.state.upload_pipeline = UploadPipeline(context)
    app.state.temp_repo_manager = TempRepoManager(context)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await context.aclose()
    await engine.dispose()


@pytest.fixture
def fake_gitlab() -> FakeGitlab:
    return FakeGitlab(owner=TEST_OWNER)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database and no request pacing."""
    db_path = tmp_path / "test.db"
    return Settings(
        _env_file=None,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        gitlab_api_url=API_URL,
        gitlab_token="glpat-test-token",
        gitlab_owner=TEST_OWNER,
        rate_limit_min_interval_seconds=0,
        rate_limit_max_backoff_seconds=0.01,
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def bridge_context(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    fake_gitlab: FakeGitlab,
) -> AsyncGenerator[BridgeContext]:
    """Context wired to the in-memory GitLab."""
    context = create_context(test_settings, session_factory, transport=fake_gitlab.transport())
    yield context
    await context.aclose()
