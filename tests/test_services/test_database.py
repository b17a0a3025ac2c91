"""Tests for catalog engine and table creation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import inspect, text

from biorepo.database import create_engine, ensure_sqlite_directory, init_db

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

    from biorepo.config import Settings


class TestDatabase:
    async def test_engine_connects(self, db_engine: AsyncEngine) -> None:
        async with db_engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            assert result.scalar() == 1

    async def test_session_works(self, db_session: AsyncSession) -> None:
        result = await db_session.execute(text("SELECT 42"))
        assert result.scalar() == 42

    async def test_projects_table_created(self, db_engine: AsyncEngine) -> None:
        async with db_engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        assert "projects" in tables

    async def test_init_db_is_idempotent(self, db_engine: AsyncEngine) -> None:
        await init_db(db_engine)

    async def test_create_engine_returns_factory(self, test_settings: Settings) -> None:
        engine, session_factory = create_engine(test_settings)
        try:
            async with session_factory() as session:
                assert (await session.execute(text("SELECT 1"))).scalar() == 1
        finally:
            await engine.dispose()


class TestEnsureSqliteDirectory:
    def test_creates_parent(self, tmp_path: Path) -> None:
        ensure_sqlite_directory(f"sqlite+aiosqlite:///{tmp_path / 'data' / 'catalog.db'}")
        assert (tmp_path / "data").is_dir()

    def test_memory_database_untouched(self) -> None:
        ensure_sqlite_directory("sqlite+aiosqlite:///:memory:")
