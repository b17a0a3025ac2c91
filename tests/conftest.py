"""Shared test fixtures for biorepo."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from biorepo.config import Settings
from biorepo.database import init_db
from biorepo.filesystem.layout import ProjectLayout
from biorepo.filesystem.manifest import Category, EntryStatus, ManifestEntry
from biorepo.services.catalog_service import SqlCatalog

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from pathlib import Path

T0 = datetime(2024, 3, 4, 13, 5, 59, tzinfo=UTC)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings isolated from the environment, with manifest dates in UTC."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}",
        manifest_timezone="UTC",
        compress_threads=1,
    )


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """An empty request project directory, ``<tmp>/repository/1234R``."""
    root = tmp_path / "repository" / "1234R"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def layout(project_dir: Path) -> ProjectLayout:
    return ProjectLayout.for_path(project_dir)


@pytest.fixture
def write_file() -> Callable[..., Path]:
    """Create a file with content and an optional fixed mtime."""

    def _write(
        root: Path, relative: str, content: bytes | str = b"data", mtime: datetime | None = None
    ) -> Path:
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            content = content.encode()
        path.write_bytes(content)
        if mtime is not None:
            ts = mtime.timestamp()
            os.utime(path, (ts, ts))
        return path

    return _write


@pytest.fixture
def make_entry() -> Callable[..., ManifestEntry]:
    """Build a ManifestEntry with sensible defaults."""

    def _make(
        path: str,
        *,
        size: int = 100,
        modified_at: datetime = T0,
        checksum: str = "0" * 32,
        category: Category = Category.OTHER,
        archivable: bool = False,
        status: EntryStatus = EntryStatus.RETAINED,
    ) -> ManifestEntry:
        return ManifestEntry(
            relative_path=path,
            category=category,
            archivable=archivable,
            size=size,
            modified_at=modified_at,
            checksum=checksum,
            status=status,
        )

    return _make


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the catalog tables."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(
    db_engine: AsyncEngine,
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def catalog(session_factory: async_sessionmaker[AsyncSession]) -> SqlCatalog:
    return SqlCatalog(session_factory)
