"""Bundling archivable entries into the project's single zip archive."""

from __future__ import annotations

import logging
import os
import shutil
import zipfile
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from biorepo.filesystem.manifest import read_file_list, write_file_list

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from biorepo.filesystem.layout import ProjectLayout
    from biorepo.filesystem.manifest import ManifestEntry

logger = logging.getLogger(__name__)

ZIP_COMPRESSLEVEL = 3


@dataclass
class BundleResult:
    archive: Path
    members: list[str]
    moved: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    rewritten: bool = True


class ArchiveBundler:
    """Writes ``<id>_ARCHIVE.zip`` and ``<id>_ARCHIVE_LIST.txt``.

    The archive is rebuilt only when its member list changed, so an unchanged
    project keeps the same archive file and timestamp and is not re-uploaded.
    With ``hide_members`` the bundled files are moved into the hidden
    zipped-files folder beside the project, which also blocks a re-scan until
    the folder is dealt with.
    """

    def __init__(self, layout: ProjectLayout, *, hide_members: bool = False) -> None:
        self.layout = layout
        self.hide_members = hide_members

    def bundle(self, entries: Iterable[ManifestEntry]) -> BundleResult | None:
        members = sorted(e.relative_path for e in entries if e.archivable)
        if not members:
            logger.debug("No archivable files in %s", self.layout.project_id)
            return None

        archive = self.layout.archive_file
        present: list[str] = []
        missing: list[str] = []
        for member in members:
            if (self.layout.root / member).is_file():
                present.append(member)
            else:
                logger.warning("Archivable file %s is missing, not bundled", member)
                missing.append(member)
        if not present:
            return None

        if archive.exists() and read_file_list(self.layout.archive_list_file) == present:
            logger.info("Archive %s is current", archive.name)
            result = BundleResult(
                archive=archive, members=present, missing=missing, rewritten=False
            )
        else:
            self._write_archive(present)
            write_file_list(self.layout.archive_list_file, present)
            logger.info("Bundled %d files into %s", len(present), archive.name)
            result = BundleResult(archive=archive, members=present, missing=missing)

        if self.hide_members:
            result.moved = self._hide(present)
        return result

    def _write_archive(self, members: list[str]) -> None:
        archive = self.layout.archive_file
        staging = archive.with_name(f".{archive.name}.tmp")
        try:
            with zipfile.ZipFile(
                staging, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=ZIP_COMPRESSLEVEL
            ) as zf:
                for member in members:
                    zf.write(self.layout.root / member, arcname=member)
        except OSError:
            staging.unlink(missing_ok=True)
            raise
        os.replace(staging, archive)

    def _hide(self, members: list[str]) -> list[str]:
        folder = self.layout.zipped_folder
        moved = move_members(self.layout.root, folder, members)
        logger.info("Moved %d bundled files to %s", len(moved), folder)
        return moved


def move_members(source: Path, target: Path, members: Iterable[str]) -> list[str]:
    """Move relative paths from ``source`` to the same place under ``target``.

    Parent directories are created as needed. A member whose destination
    already exists is left where it is. Returns the members that moved.
    """
    moved: list[str] = []
    for member in members:
        destination = target / member
        if os.path.lexists(destination):
            logger.warning("Not moving %s: %s already exists", member, destination)
            continue
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(source / member, destination)
        except OSError as exc:
            logger.warning("Cannot move %s to %s: %s", member, target, exc)
            continue
        moved.append(member)
    return moved
