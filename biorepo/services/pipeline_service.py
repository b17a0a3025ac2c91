"""Per-project orchestration: scan → reconcile → persist, plan → upload, and removal."""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from biorepo.exceptions import ProjectPreconditionError
from biorepo.filesystem.archive import ArchiveBundler
from biorepo.filesystem.layout import ProjectLayout
from biorepo.filesystem.manifest import read_file_list, read_manifest, write_manifest_pair
from biorepo.filesystem.removal import delete_removed, hide_removed, restore_removed
from biorepo.filesystem.scanner import ScanSession, scan_directory
from biorepo.services.datetime_service import now_utc
from biorepo.services.reconcile_service import reconcile
from biorepo.services.remote_service import S3RemoteLister
from biorepo.services.upload_executor import AwsCliTransfer, UploadExecutor
from biorepo.services.upload_planner import plan_uploads

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Callable

    from biorepo.config import Settings
    from biorepo.filesystem.archive import BundleResult
    from biorepo.filesystem.removal import RemovalResult
    from biorepo.services.catalog_service import Catalog, Destination
    from biorepo.services.reconcile_service import ReconcileResult
    from biorepo.services.remote_service import RemoteLister, RemoteListing
    from biorepo.services.upload_executor import Transfer, UploadSummary
    from biorepo.services.upload_planner import UploadPlan

logger = logging.getLogger(__name__)


def format_human_size(value: float) -> str:
    """Format a byte count the way operators read it: ``1.5 GB``, ``12.0 MB``."""
    if value > 1_000_000_000:
        return f"{value / 1_073_741_824:.1f} GB"
    if value > 1_000_000:
        return f"{value / 1_048_576:.1f} MB"
    if value > 1000:
        return f"{value / 1024:.1f} KB"
    return f"{int(value)} B"


@dataclass
class ScanReport:
    project_id: str
    reconciled: ReconcileResult
    deleted: int
    failures: int
    bundle: BundleResult | None = None

    @property
    def total_bytes(self) -> int:
        return sum(entry.size for entry in self.reconciled.manifest)


@dataclass
class UploadReport:
    project_id: str
    destination: Destination
    plan: UploadPlan
    listing: RemoteListing
    summary: UploadSummary | None = None

    @property
    def failures(self) -> int:
        if self.summary is None:
            return 0
        unattempted = self.summary.total - len(self.summary.results)
        return self.summary.failed + unattempted


class ProjectPipeline:
    """Runs the scan and upload stages for one project at a time.

    The catalog timestamp for a stage is advanced only when that stage
    finished with zero failures; anything less leaves it untouched so the
    next run retries exactly what is still missing.
    """

    def __init__(
        self,
        catalog: Catalog,
        settings: Settings,
        *,
        lister_factory: Callable[[str | None], RemoteLister] = S3RemoteLister.from_profile,
        transfer_factory: Callable[[Destination], Transfer] | None = None,
        compress: bool = True,
    ) -> None:
        self.catalog = catalog
        self.settings = settings
        self.lister_factory = lister_factory
        self.transfer_factory = transfer_factory or self._aws_transfer
        self.compress = compress

    def _aws_transfer(self, destination: Destination) -> Transfer:
        return AwsCliTransfer(
            destination.bucket,
            profile=destination.profile,
            storage_class=self.settings.storage_class,
            timeout=self.settings.transfer_timeout_seconds,
            command=shlex.split(self.settings.aws_cli),
        )

    async def _layout(self, project_id: str) -> ProjectLayout:
        root = Path(await self.catalog.get_project_path(project_id))
        if not root.is_dir():
            raise ProjectPreconditionError(project_id, [f"project directory {root} not found"])
        return ProjectLayout(root=root, project_id=project_id)

    async def scan_project(
        self, project_id: str, *, bundle: bool = False, hide_bundled: bool = False
    ) -> ScanReport:
        """Scan, reconcile and persist the manifest pair for one project.

        Raises ProjectPreconditionError before touching anything when a
        hidden zipped-files or deleted-files folder is present.
        """
        layout = await self._layout(project_id)
        violations = layout.precondition_violations()
        if violations:
            raise ProjectPreconditionError(project_id, violations)

        tz = self.settings.manifest_timezone
        prior = read_manifest(layout.manifest_file, tz)
        logger.info("Scanning %s (%d entries in previous manifest)", layout.root, len(prior))

        session = ScanSession.create(layout, self.settings, compress=self.compress)
        scan_directory(layout.root, session)
        result = reconcile(
            prior,
            session.entries,
            session.checksums,
            layout.root,
            self.settings.mtime_tolerance_seconds,
            removed=session.removed,
        )
        write_manifest_pair(layout, result.manifest, result.removal_list, tz)

        report = ScanReport(
            project_id=project_id,
            reconciled=result,
            deleted=len(session.deleted),
            failures=session.failures + result.failures,
        )
        if bundle and self.settings.archive_enabled:
            report.bundle = ArchiveBundler(layout, hide_members=hide_bundled).bundle(
                result.manifest
            )

        if report.failures == 0:
            await self.catalog.set_scan_time(project_id, now_utc())
        logger.info(
            "%s: %d files (%s), %d new, %d retained, %d to remove, %d failures",
            project_id,
            len(result.manifest),
            format_human_size(report.total_bytes),
            result.new,
            result.retained,
            len(result.removal_list),
            report.failures,
        )
        return report

    async def upload_project(
        self,
        project_id: str,
        *,
        check_only: bool = False,
        dry_run: bool = False,
        stop: asyncio.Event | None = None,
    ) -> UploadReport:
        """Plan against remote state and upload what is missing or stale.

        ``check_only`` stops after planning. ``dry_run`` runs every task
        through the transfer in its dry-run mode and never records an upload.
        """
        layout = await self._layout(project_id)
        if not layout.manifest_file.exists():
            raise ProjectPreconditionError(
                project_id, [f"manifest {layout.manifest_name} not found, scan first"]
            )
        destination = await self.catalog.get_destination(project_id)
        last_upload = await self.catalog.get_last_upload_time(project_id)

        entries = read_manifest(layout.manifest_file, self.settings.manifest_timezone)
        lister = self.lister_factory(destination.profile)
        lister.ensure_bucket(destination.bucket)
        listing = lister.list(destination.bucket, destination.prefix, last_upload)
        plan = plan_uploads(
            entries.values(), listing, layout, self.settings, prefix=destination.prefix
        )
        logger.info(
            "%s: %d files (%s) to upload to s3://%s/%s",
            project_id,
            len(plan.tasks),
            format_human_size(plan.total_bytes),
            destination.bucket,
            destination.prefix,
        )
        report = UploadReport(
            project_id=project_id, destination=destination, plan=plan, listing=listing
        )
        if check_only:
            return report

        executor = UploadExecutor(self.transfer_factory(destination))
        summary = await executor.execute(
            plan.tasks, self.settings.upload_workers, stop=stop, dry_run=dry_run
        )
        report.summary = summary

        if summary.ok and not dry_run:
            await self.catalog.set_upload_time(project_id, now_utc())
        logger.info(
            "%s: uploaded %d of %d files (%s) in %.1f min at %s/s, %d failures%s",
            project_id,
            summary.succeeded,
            summary.total,
            format_human_size(summary.bytes_transferred),
            summary.elapsed / 60,
            format_human_size(summary.throughput),
            report.failures,
            " (dry run)" if dry_run else "",
        )
        return report

    async def _removal_inputs(self, project_id: str) -> tuple[ProjectLayout, list[str], set[str]]:
        layout = await self._layout(project_id)
        if not layout.removal_file.exists():
            raise ProjectPreconditionError(
                project_id, [f"removal list {layout.removal_name} not found, scan first"]
            )
        removal = read_file_list(layout.removal_file)
        keep = set(read_manifest(layout.manifest_file, self.settings.manifest_timezone))
        return layout, removal, keep

    async def hide_removed(self, project_id: str) -> RemovalResult:
        """Move the files on the removal list into the hidden deleted-files folder.

        Manifest entries are never moved, even if the list names them.
        """
        layout, removal, keep = await self._removal_inputs(project_id)
        return hide_removed(layout, removal, keep)

    async def delete_removed(self, project_id: str) -> RemovalResult:
        """Delete the files on the removal list, hidden or not."""
        layout, removal, keep = await self._removal_inputs(project_id)
        return delete_removed(layout, removal, keep)

    async def restore_removed(self, project_id: str) -> RemovalResult:
        """Move hidden files back into the project."""
        return restore_removed(await self._layout(project_id))
