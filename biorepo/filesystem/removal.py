"""Acting on a project's removal list: hide, delete or restore the listed files.

Hiding moves listed files into the deleted-files folder beside the project
and leaves a notice file in the project. Deleting removes them for good,
from the hidden folder or from the project itself. Paths kept in the
manifest and the pipeline's own files are never touched, whatever the list
says.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from biorepo.filesystem.archive import move_members
from biorepo.filesystem.layout import NOTICE_FILE

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable

    from biorepo.filesystem.layout import ProjectLayout

logger = logging.getLogger(__name__)

NOTICE_TEXT = """\
Some files of project {project_id} are no longer in this folder.

Files listed in {removal_name} were not kept for the repository and have
been moved to {folder_name} until they are deleted. Every file kept for the
repository is listed in {manifest_name}.
"""


@dataclass
class RemovalResult:
    project_id: str
    moved: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    protected: list[str] = field(default_factory=list)
    failures: int = 0


def _exists(path: Path) -> bool:
    return os.path.lexists(path)


def _is_inside(relative: str) -> bool:
    parts = PurePosixPath(relative).parts
    return bool(parts) and not PurePosixPath(relative).is_absolute() and ".." not in parts


def _select(
    layout: ProjectLayout, removal: Iterable[str], keep: Collection[str], result: RemovalResult
) -> list[str]:
    """Drop kept and unsafe paths from the removal list, in list order."""
    selected: list[str] = []
    seen: set[str] = set()
    for relative in removal:
        if relative in seen:
            continue
        seen.add(relative)
        if relative in keep or relative in layout.metadata_names:
            logger.warning("%s is kept in the manifest, not removing it", relative)
            result.protected.append(relative)
        elif not _is_inside(relative):
            logger.warning("Removal list entry %s is outside the project", relative)
            result.failures += 1
        else:
            selected.append(relative)
    return selected


def _prune_empty_parents(root: Path, members: Iterable[str]) -> None:
    for member in members:
        parent = (root / member).parent
        while parent != root and parent.is_relative_to(root):
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def write_notice(layout: ProjectLayout) -> Path:
    notice = layout.root / NOTICE_FILE
    notice.write_text(
        NOTICE_TEXT.format(
            project_id=layout.project_id,
            removal_name=layout.removal_name,
            folder_name=layout.deleted_folder.name,
            manifest_name=layout.manifest_name,
        ),
        encoding="utf-8",
    )
    return notice


def hide_removed(
    layout: ProjectLayout, removal: Iterable[str], keep: Collection[str]
) -> RemovalResult:
    """Move listed files into the hidden deleted-files folder."""
    result = RemovalResult(layout.project_id)
    pending: list[str] = []
    for relative in _select(layout, removal, keep, result):
        if _exists(layout.root / relative):
            pending.append(relative)
        else:
            result.missing.append(relative)
    if not pending:
        logger.info("%s: nothing to hide", layout.project_id)
        return result

    result.moved = move_members(layout.root, layout.deleted_folder, pending)
    result.failures += len(pending) - len(result.moved)
    _prune_empty_parents(layout.root, result.moved)
    if result.moved:
        write_notice(layout)
    logger.info(
        "%s: moved %d files to %s", layout.project_id, len(result.moved), layout.deleted_folder
    )
    return result


def delete_removed(
    layout: ProjectLayout, removal: Iterable[str], keep: Collection[str]
) -> RemovalResult:
    """Delete listed files from the hidden folder and from the project.

    The hidden folder is removed once it is empty.
    """
    result = RemovalResult(layout.project_id)
    folder = layout.deleted_folder
    for relative in _select(layout, removal, keep, result):
        targets = [base / relative for base in (folder, layout.root) if _exists(base / relative)]
        if not targets:
            result.missing.append(relative)
            continue
        for target in targets:
            try:
                _remove_path(target)
            except OSError as exc:
                logger.warning("Cannot delete %s: %s", target, exc)
                result.failures += 1
                break
        else:
            result.deleted.append(relative)

    _prune_empty_parents(layout.root, result.deleted)
    if folder.is_dir():
        _prune_empty_parents(folder, result.deleted)
        try:
            folder.rmdir()
        except OSError as exc:
            logger.warning("Hidden folder %s not removed: %s", folder, exc)
            result.failures += 1
    logger.info("%s: deleted %d listed files", layout.project_id, len(result.deleted))
    return result


def _hidden_members(folder: Path) -> list[str]:
    members: list[str] = []
    for dirpath, dirnames, filenames in os.walk(folder, followlinks=False):
        current = Path(dirpath)
        for name in dirnames:
            if (current / name).is_symlink():
                members.append((current / name).relative_to(folder).as_posix())
        members.extend((current / name).relative_to(folder).as_posix() for name in filenames)
    return sorted(members)


def restore_removed(layout: ProjectLayout) -> RemovalResult:
    """Move everything in the hidden deleted-files folder back into the project."""
    result = RemovalResult(layout.project_id)
    folder = layout.deleted_folder
    if not folder.is_dir():
        logger.info("%s: no hidden folder %s", layout.project_id, folder)
        return result

    members = _hidden_members(folder)
    result.moved = move_members(folder, layout.root, members)
    result.failures = len(members) - len(result.moved)
    _prune_empty_parents(folder, result.moved)
    if result.failures == 0:
        try:
            folder.rmdir()
        except OSError as exc:
            logger.warning("Hidden folder %s not removed: %s", folder, exc)
            result.failures += 1
        else:
            if not layout.zipped_folder.exists():
                (layout.root / NOTICE_FILE).unlink(missing_ok=True)
    logger.info("%s: restored %d files from %s", layout.project_id, len(result.moved), folder)
    return result
