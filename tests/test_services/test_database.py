"""Tests for the database engine and schema."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import inspect, text

from bridge.database import create_engine
from bridge.models.base import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

    from bridge.config import Settings


class TestDatabase:
    async def test_create_engine_from_settings(self, test_settings: Settings) -> None:
        engine, session_factory = create_engine(test_settings)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            async with session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                assert result.scalar() == 1
        finally:
            await engine.dispose()

    async def test_schema_has_bridge_tables(self, db_engine: AsyncEngine) -> None:
        async with db_engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        assert {"project_settings", "temp_repos"} <= set(tables)

    async def test_session_works(self, db_session: AsyncSession) -> None:
        result = await db_session.execute(text("SELECT 42"))
        assert result.scalar() == 42
