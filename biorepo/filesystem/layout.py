"""Project directory layout and pipeline-owned file names."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

_PROJECT_ID_RE = re.compile(r"(A\d{1,5}|\d{3,5}R)/?$")
_OLD_PROJECT_ID_RE = re.compile(r"(\d{2,4})/?$")

NOTICE_FILE = "where_are_my_files.txt"


def project_id_from_path(path: Path) -> str:
    """Extract the project identifier from a project directory path.

    Analysis projects look like ``A1234``, request projects like ``1234R``,
    and very old projects are bare numbers. Anything else uses the last path
    component.
    """
    text = str(path)
    match = _PROJECT_ID_RE.search(text) or _OLD_PROJECT_ID_RE.search(text)
    if match:
        return match.group(1)
    return path.name


@dataclass(frozen=True)
class ProjectLayout:
    """Paths of a project directory and the files the pipeline owns.

    The manifest, archive and archive list live inside the project; the
    removal list and the hidden folders live beside it in the parent.
    """

    root: Path
    project_id: str

    @classmethod
    def for_path(cls, path: str | Path) -> ProjectLayout:
        root = Path(path)
        if not root.is_absolute():
            msg = f"Project path must be absolute: {path}"
            raise ValueError(msg)
        return cls(root=root, project_id=project_id_from_path(root))

    @property
    def parent(self) -> Path:
        return self.root.parent

    @property
    def manifest_name(self) -> str:
        return f"{self.project_id}_MANIFEST.csv"

    @property
    def removal_name(self) -> str:
        return f"{self.project_id}_REMOVE_LIST.txt"

    @property
    def archive_name(self) -> str:
        return f"{self.project_id}_ARCHIVE.zip"

    @property
    def archive_list_name(self) -> str:
        return f"{self.project_id}_ARCHIVE_LIST.txt"

    @property
    def manifest_file(self) -> Path:
        return self.root / self.manifest_name

    @property
    def removal_file(self) -> Path:
        return self.parent / self.removal_name

    @property
    def archive_file(self) -> Path:
        return self.root / self.archive_name

    @property
    def archive_list_file(self) -> Path:
        return self.root / self.archive_list_name

    @property
    def zipped_folder(self) -> Path:
        """Hidden folder that receives files after they are bundled."""
        return self.parent / f"{self.project_id}_ZIPPED_FILES"

    @property
    def deleted_folder(self) -> Path:
        """Hidden folder that receives files from the removal list."""
        return self.parent / f"{self.project_id}_DELETED_FILES"

    @property
    def metadata_names(self) -> frozenset[str]:
        """Top-level file names the scanner must never inventory."""
        return frozenset(
            {
                self.manifest_name,
                self.removal_name,
                self.archive_name,
                self.archive_list_name,
                NOTICE_FILE,
            }
        )

    def precondition_violations(self) -> list[str]:
        """Return reasons the project cannot be scanned, empty when it can."""
        violations: list[str] = []
        if self.zipped_folder.exists():
            violations.append(f"zipped files hidden folder {self.zipped_folder} exists")
        if self.deleted_folder.exists():
            violations.append(f"deleted files hidden folder {self.deleted_folder} exists")
        return violations
