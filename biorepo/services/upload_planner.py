"""Upload planning: diff the manifest against remote state."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from biorepo.filesystem.checksums import stat_file
from biorepo.filesystem.manifest import read_file_list
from biorepo.services.remote_service import normalize_prefix

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from pathlib import Path

    from biorepo.config import Settings
    from biorepo.filesystem.layout import ProjectLayout
    from biorepo.filesystem.manifest import ManifestEntry
    from biorepo.services.remote_service import RemoteListing

logger = logging.getLogger(__name__)

_AUTO_ANALYSIS_RE = re.compile(r"^AutoAnalysis_\w+\d{4}/")


@dataclass(frozen=True)
class UploadTask:
    local_path: Path
    remote_key: str
    size: int


@dataclass
class UploadPlan:
    tasks: list[UploadTask] = field(default_factory=list)
    legacy_mode: bool = False
    considered: int = 0
    archived_skipped: int = 0
    already_uploaded: int = 0
    auto_analysis_skipped: int = 0

    @property
    def total_bytes(self) -> int:
        return sum(task.size for task in self.tasks)

    @property
    def skipped(self) -> int:
        return self.archived_skipped + self.already_uploaded + self.auto_analysis_skipped


def remote_is_current(listing: RemoteListing, relative_path: str, local_time: datetime) -> bool:
    """True when the remote copy exists and is strictly newer than ``local_time``."""
    record = listing.get(relative_path)
    return record is not None and record.last_modified > local_time


def _bundle_members(layout: ProjectLayout) -> set[str]:
    if not layout.archive_file.exists():
        return set()
    return set(read_file_list(layout.archive_list_file))


def _metadata_tasks(
    layout: ProjectLayout, listing: RemoteListing, plan: UploadPlan
) -> list[tuple[str, Path, int]]:
    """Archive, archive list and manifest, compared by their on-disk mtime."""
    found: list[tuple[str, Path, int]] = []
    for path in (layout.archive_file, layout.archive_list_file, layout.manifest_file):
        if not path.exists():
            continue
        plan.considered += 1
        size, modified_at = stat_file(path)
        if remote_is_current(listing, path.name, modified_at):
            logger.debug("Skipping uploaded file %s", path.name)
            plan.already_uploaded += 1
            continue
        found.append((path.name, path, size))
    return found


def plan_uploads(
    entries: Iterable[ManifestEntry],
    listing: RemoteListing,
    layout: ProjectLayout,
    settings: Settings,
    prefix: str = "",
) -> UploadPlan:
    """Return the files the remote side lacks or holds stale copies of.

    An entry is skipped when the remote object at its path is strictly newer
    than the manifest ``Date``. Archivable entries already in the archive
    bundle are skipped; the bundle and its list are planned instead.

    Older projects were uploaded without the legacy ``Fastq/`` folder. The
    first manifest path whose stripped key exists remotely switches the plan
    into legacy mode, and from then on every legacy-prefixed path is compared
    and uploaded under its stripped key. A project whose remote layout mixes
    both conventions is not distinguished.
    """
    plan = UploadPlan()
    bundled = _bundle_members(layout)
    legacy_prefix = settings.legacy_prefix
    prefix = normalize_prefix(prefix)
    candidates = _metadata_tasks(layout, listing, plan)

    for entry in sorted(entries, key=lambda e: e.relative_path):
        path = entry.relative_path
        plan.considered += 1

        if entry.archivable and path in bundled:
            plan.archived_skipped += 1
            continue
        if not settings.include_auto_analysis and _AUTO_ANALYSIS_RE.match(path):
            plan.auto_analysis_skipped += 1
            continue

        alternate = None
        if legacy_prefix and path.startswith(legacy_prefix):
            alternate = path[len(legacy_prefix) :]
        if alternate and not plan.legacy_mode and alternate in listing:
            logger.warning("Old-style flat folder structure detected at %s", alternate)
            plan.legacy_mode = True

        compare = alternate if plan.legacy_mode and alternate else path
        if remote_is_current(listing, compare, entry.modified_at):
            logger.debug("Skipping uploaded file %s", path)
            plan.already_uploaded += 1
            continue
        candidates.append((path, layout.root / path, entry.size))

    for path, local_path, size in candidates:
        key = path
        if plan.legacy_mode and legacy_prefix and path.startswith(legacy_prefix):
            key = path[len(legacy_prefix) :]
        plan.tasks.append(
            UploadTask(local_path=local_path, remote_key=f"{prefix}{key}", size=size)
        )

    logger.info(
        "Collected %d files out of %d to upload (%d bundled, %d already uploaded, "
        "%d in AutoAnalysis folders)",
        len(plan.tasks),
        plan.considered,
        plan.archived_skipped,
        plan.already_uploaded,
        plan.auto_analysis_skipped,
    )
    return plan
