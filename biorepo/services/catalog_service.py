"""Project catalog: where projects live, where they go, and when they last moved."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import select

from biorepo.exceptions import DestinationError, ProjectNotFoundError
from biorepo.models.project import ProjectRecord
from biorepo.services.datetime_service import format_iso, parse_datetime

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Destination:
    bucket: str
    prefix: str
    profile: str | None = None


class Catalog(Protocol):
    async def get_project_path(self, project_id: str) -> str: ...

    async def get_destination(self, project_id: str) -> Destination: ...

    async def get_last_scan_time(self, project_id: str) -> datetime | None: ...

    async def get_last_upload_time(self, project_id: str) -> datetime | None: ...

    async def set_scan_time(self, project_id: str, when: datetime) -> None: ...

    async def set_upload_time(self, project_id: str, when: datetime) -> None: ...


def _parse_optional(value: str | None) -> datetime | None:
    return parse_datetime(value) if value else None


class SqlCatalog:
    """Catalog backed by the ``projects`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def _get(self, session: AsyncSession, project_id: str) -> ProjectRecord:
        record = await session.get(ProjectRecord, project_id)
        if record is None:
            raise ProjectNotFoundError(project_id)
        return record

    async def register_project(
        self,
        project_id: str,
        path: Path,
        *,
        bucket: str | None = None,
        prefix: str | None = None,
        profile: str | None = None,
    ) -> ProjectRecord:
        """Insert a project or update its path and destination fields."""
        async with self.session_factory() as session:
            record = await session.get(ProjectRecord, project_id)
            if record is None:
                record = ProjectRecord(id=project_id, path=str(path))
                session.add(record)
                logger.info("Registered project %s at %s", project_id, path)
            else:
                record.path = str(path)
            if bucket is not None:
                record.bucket = bucket
            if prefix is not None:
                record.prefix = prefix
            if profile is not None:
                record.profile = profile
            await session.commit()
            return record

    async def list_projects(self) -> list[ProjectRecord]:
        async with self.session_factory() as session:
            result = await session.execute(select(ProjectRecord).order_by(ProjectRecord.id))
            return list(result.scalars().all())

    async def get_project(self, project_id: str) -> ProjectRecord:
        async with self.session_factory() as session:
            return await self._get(session, project_id)

    async def get_project_path(self, project_id: str) -> str:
        return (await self.get_project(project_id)).path

    async def get_destination(self, project_id: str) -> Destination:
        record = await self.get_project(project_id)
        bucket, profile = record.bucket, record.profile
        if not bucket or not profile:
            missing = [
                name for name, value in (("bucket", bucket), ("profile", profile)) if not value
            ]
            msg = f"Project {project_id} has no {' or '.join(missing)} recorded"
            raise DestinationError(msg)
        return Destination(bucket=bucket, prefix=record.prefix or "", profile=profile)

    async def get_last_scan_time(self, project_id: str) -> datetime | None:
        return _parse_optional((await self.get_project(project_id)).scanned_at)

    async def get_last_upload_time(self, project_id: str) -> datetime | None:
        return _parse_optional((await self.get_project(project_id)).uploaded_at)

    async def set_scan_time(self, project_id: str, when: datetime) -> None:
        async with self.session_factory() as session:
            record = await self._get(session, project_id)
            record.scanned_at = format_iso(when)
            await session.commit()

    async def set_upload_time(self, project_id: str, when: datetime) -> None:
        async with self.session_factory() as session:
            record = await self._get(session, project_id)
            record.uploaded_at = format_iso(when)
            await session.commit()
