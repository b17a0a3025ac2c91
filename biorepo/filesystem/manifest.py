"""Manifest entries and the manifest / removal-list file formats."""

from __future__ import annotations

import csv
import logging
import os
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from biorepo.exceptions import ManifestFormatError
from biorepo.services.datetime_service import format_manifest_date, parse_manifest_date

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from pathlib import Path

    from biorepo.filesystem.layout import ProjectLayout

logger = logging.getLogger(__name__)


class Category(StrEnum):
    """Closed set of content classes recorded in the manifest ``Type`` column."""

    FASTQ = "Fastq"
    SEQUENCE = "Sequence"
    ALIGNMENT = "Alignment"
    VARIANT = "Variant"
    ANNOTATION = "Annotation"
    BROWSER_TRACK = "BrowserTrack"
    ANALYSIS = "Analysis"
    TEXT = "Text"
    SCRIPT = "Script"
    RESULTS = "Results"
    IMAGE = "Image"
    DOCUMENT = "Document"
    ARCHIVE = "Archive"
    ALIGNMENT_INDEX = "AlignmentIndex"
    OTHER = "Other"


class EntryStatus(StrEnum):
    """Scan-local reconciliation status; never written to disk."""

    RETAINED = "retained"
    NEW = "new"
    STALE_REMOVED = "stale-removed"


FIELD_COLUMNS = ("sample_id", "paired_end", "platform", "platform_unit_id")
MANIFEST_COLUMNS = ("File", "Type", "Archived", "Size", "Date", "MD5", *FIELD_COLUMNS)


@dataclass
class ManifestEntry:
    """One tracked file."""

    relative_path: str
    category: Category
    archivable: bool
    size: int
    modified_at: datetime
    checksum: str = ""
    fields: dict[str, str] = field(default_factory=dict)
    status: EntryStatus = EntryStatus.NEW


def _parse_category(value: str, path: str) -> Category:
    try:
        return Category(value)
    except ValueError:
        logger.warning("Unknown manifest type %r for %s, recording as Other", value, path)
        return Category.OTHER


def read_manifest(manifest_file: Path, tz_name: str = "UTC") -> dict[str, ManifestEntry]:
    """Load a manifest CSV into a path -> entry map. Missing file yields {}.

    Older manifests may lack the ``Archived`` or enrichment columns; those
    default to ``N`` and empty strings.
    """
    if not manifest_file.exists():
        return {}

    entries: dict[str, ManifestEntry] = {}
    with manifest_file.open(newline="", encoding="utf-8") as fh:
        reader = csv.DictReader(fh)
        if reader.fieldnames is None or "File" not in reader.fieldnames:
            msg = f"Manifest {manifest_file} has no File column"
            raise ManifestFormatError(msg)
        for line_no, row in enumerate(reader, start=2):
            path = row.get("File") or ""
            if not path:
                continue
            try:
                size = int(row.get("Size") or "")
                modified_at = parse_manifest_date(row.get("Date") or "", tz_name)
            except ValueError as exc:
                msg = f"{manifest_file}:{line_no}: bad Size or Date for {path}: {exc}"
                raise ManifestFormatError(msg) from exc
            entries[path] = ManifestEntry(
                relative_path=path,
                category=_parse_category(row.get("Type") or "", path),
                archivable=(row.get("Archived") or "N").upper() == "Y",
                size=size,
                modified_at=modified_at,
                checksum=row.get("MD5") or "",
                fields={
                    col: row[col] for col in FIELD_COLUMNS if row.get(col)
                },
                status=EntryStatus.RETAINED,
            )
    return entries


def _manifest_row(entry: ManifestEntry, tz_name: str) -> list[str]:
    return [
        entry.relative_path,
        str(entry.category),
        "Y" if entry.archivable else "N",
        str(entry.size),
        format_manifest_date(entry.modified_at, tz_name),
        entry.checksum,
        *(entry.fields.get(col, "") for col in FIELD_COLUMNS),
    ]


def _write_manifest_csv(target: Path, entries: Iterable[ManifestEntry], tz_name: str) -> None:
    with target.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.writer(fh, lineterminator="\n")
        writer.writerow(MANIFEST_COLUMNS)
        for entry in sorted(entries, key=lambda e: e.relative_path):
            writer.writerow(_manifest_row(entry, tz_name))


def write_file_list(target: Path, lines: Iterable[str]) -> None:
    with target.open("w", encoding="utf-8") as fh:
        for line in lines:
            fh.write(f"{line}\n")


def read_file_list(list_file: Path) -> list[str]:
    """Load a plain one-path-per-line list file. Missing file yields []."""
    if not list_file.exists():
        return []
    return [line for line in list_file.read_text(encoding="utf-8").splitlines() if line]


def _temp_path(target: Path) -> Path:
    # Dot-prefixed so a crash leftover is deleted as junk by the next scan
    return target.with_name(f".{target.name}.tmp")


def write_manifest_pair(
    layout: ProjectLayout,
    entries: Iterable[ManifestEntry],
    removal_list: Iterable[str],
    tz_name: str = "UTC",
) -> None:
    """Write the manifest and its removal list together or not at all.

    Both files are staged next to their targets and swapped in with
    ``os.replace``. If the second swap fails the previous manifest is
    restored, so a reader never sees a new manifest with a stale removal list.
    """
    manifest_tmp = _temp_path(layout.manifest_file)
    removal_tmp = _temp_path(layout.removal_file)
    backup = layout.manifest_file.with_name(f".{layout.manifest_name}.bak")

    try:
        _write_manifest_csv(manifest_tmp, entries, tz_name)
        write_file_list(removal_tmp, removal_list)
    except OSError:
        manifest_tmp.unlink(missing_ok=True)
        removal_tmp.unlink(missing_ok=True)
        raise

    had_previous = layout.manifest_file.exists()
    if had_previous:
        os.replace(layout.manifest_file, backup)
    try:
        os.replace(manifest_tmp, layout.manifest_file)
        os.replace(removal_tmp, layout.removal_file)
    except OSError:
        logger.error("Failed to swap in manifest pair for %s, restoring", layout.project_id)
        if had_previous:
            os.replace(backup, layout.manifest_file)
        else:
            layout.manifest_file.unlink(missing_ok=True)
        manifest_tmp.unlink(missing_ok=True)
        removal_tmp.unlink(missing_ok=True)
        raise
    if had_previous:
        backup.unlink(missing_ok=True)
