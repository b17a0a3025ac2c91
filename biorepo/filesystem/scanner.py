"""Directory scanner: one depth-first walk that builds the observed entry set.

The walk never follows symlinks. Before anything is classified, each path
goes through the skip rules: symlinks, special files such as FIFOs and
regenerable files go to the removal list, junk is deleted, pipeline metadata
is ignored, and a few named subtrees are swept into the removal list
wholesale. Checksums are not computed here; the reconciler decides which
entries need them.
"""

from __future__ import annotations

import gzip
import logging
import os
import re
import shutil
import stat
import subprocess
from dataclasses import dataclass, field, replace
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from biorepo.filesystem.checksums import ChecksumCache, is_sidecar, stat_file
from biorepo.filesystem.classifier import Compressor, FileFacts, TranscodeEffect, classify
from biorepo.filesystem.manifest import EntryStatus, ManifestEntry

if TYPE_CHECKING:
    from biorepo.config import Settings
    from biorepo.filesystem.layout import ProjectLayout

logger = logging.getLogger(__name__)

_JUNK_NAMES = frozenset({".DS_Store", "Thumbs.db", ".snakemake_timestamp"})
_JUNK_RE = re.compile(r"^(?:\..+|.+~|fdt(?:CommandLine)?\.jar|libsnappyjava\.so)$", re.IGNORECASE)
_REGENERABLE_RE = re.compile(
    r"\.(?:sra|bai|csi|crai|tbi|vcf\.idx|stat)$|(?:^|/)fork\d+/|_STARtmp/",
    re.IGNORECASE,
)


class SubtreeAction(StrEnum):
    REMOVE = "remove"
    SKIP = "skip"


@dataclass(frozen=True)
class SubtreeRule:
    """A named top-level folder whose members are never tracked individually."""

    name: str
    pattern: re.Pattern[str]
    action: SubtreeAction
    message: str


SUBTREE_RULES: tuple[SubtreeRule, ...] = (
    SubtreeRule(
        "run_folder",
        re.compile(r"^RunFolder/"),
        SubtreeAction.REMOVE,
        "Illumina RunFolder present, skipping contents",
    ),
    SubtreeRule(
        "qc_folder",
        re.compile(
            r"^(?:bioanalysis|Sample.?QC|Library.?QC|Sequence.?QC|Cell.Prep.QC)(?:.?\w+)?/",
            re.IGNORECASE,
        ),
        SubtreeAction.REMOVE,
        "QC folder present, skipping contents",
    ),
    SubtreeRule(
        "upload_staging",
        re.compile(r"^upload_staging/"),
        SubtreeAction.SKIP,
        "Files were uploaded directly into upload_staging, skipping them",
    ),
)


class Transcoder:
    """Compresses files in place with pigz/bgzip when available.

    Falls back to the ``gzip`` module when no external tool is found or
    ``use_external`` is off. Returns the compressed path, or None on failure
    with the original file left untouched.
    """

    def __init__(self, threads: int = 4, *, use_external: bool = True) -> None:
        self.threads = threads
        self.use_external = use_external

    def _command(self, effect: TranscodeEffect) -> list[str] | None:
        if not self.use_external:
            return None
        source = str(effect.source)
        if effect.compressor is Compressor.BGZIP:
            bgzip = shutil.which("bgzip")
            if bgzip:
                return [bgzip, "-@", str(self.threads), source]
        pigz = shutil.which("pigz")
        if pigz:
            return [pigz, "-p", str(self.threads), source]
        tool = shutil.which("gzip")
        return [tool, source] if tool else None

    def _compress_in_process(self, effect: TranscodeEffect) -> None:
        target = effect.target
        try:
            with effect.source.open("rb") as src, gzip.open(target, "xb") as dst:
                shutil.copyfileobj(src, dst)
        except FileExistsError:
            raise
        except OSError:
            target.unlink(missing_ok=True)
            raise
        effect.source.unlink()

    def apply(self, effect: TranscodeEffect) -> Path | None:
        """Compress ``effect.source`` in place; None leaves the original untouched.

        An existing compressed file of the target name is never overwritten.
        """
        if effect.target.exists() or effect.target.is_symlink():
            logger.warning(
                "Not compressing %s: %s already exists", effect.source, effect.target.name
            )
            return None
        command = self._command(effect)
        try:
            if command is None:
                self._compress_in_process(effect)
            else:
                subprocess.run(command, check=True, capture_output=True, text=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            logger.warning("Failed to compress %s: %s", effect.source, exc)
            return None
        logger.info("Compressed %s with %s", effect.source.name, effect.compressor)
        return effect.target


@dataclass
class ScanSession:
    """Everything one walk accumulates, threaded through the walker."""

    layout: ProjectLayout
    settings: Settings
    checksums: ChecksumCache
    transcoder: Transcoder | None = None
    entries: dict[str, ManifestEntry] = field(default_factory=dict)
    removed: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    warned: set[str] = field(default_factory=set)
    failures: int = 0

    @classmethod
    def create(
        cls, layout: ProjectLayout, settings: Settings, *, compress: bool = True
    ) -> ScanSession:
        return cls(
            layout=layout,
            settings=settings,
            checksums=ChecksumCache(settings.duplicate_checksum_min_size),
            transcoder=Transcoder(settings.compress_threads) if compress else None,
        )

    @property
    def root(self) -> Path:
        return self.layout.root

    def warn_once(self, key: str, message: str, *args: object) -> None:
        if key in self.warned:
            return
        self.warned.add(key)
        logger.warning(message, *args)


def _relative(root: Path, path: Path) -> str:
    return path.relative_to(root).as_posix()


def _is_junk(name: str) -> bool:
    return name in _JUNK_NAMES or bool(_JUNK_RE.match(name))


def _delete_junk(path: Path, relative: str, session: ScanSession) -> None:
    try:
        path.unlink()
    except OSError as exc:
        logger.warning("Cannot delete junk file %s: %s", relative, exc)
        return
    logger.debug("Deleted junk file %s", relative)
    session.deleted.append(relative)


def _match_subtree(relative: str) -> SubtreeRule | None:
    for rule in SUBTREE_RULES:
        if rule.pattern.search(relative):
            return rule
    return None


def _record(path: Path, relative: str, session: ScanSession) -> None:
    try:
        size, modified_at = stat_file(path)
    except OSError as exc:
        logger.warning("Cannot stat %s: %s", relative, exc)
        session.failures += 1
        return

    facts = FileFacts(path=path, relative_path=relative, size=size)
    result, effect = classify(facts, session.settings)

    if effect is not None and session.transcoder is not None:
        target = session.transcoder.apply(effect)
        if target is None:
            result = replace(result, archivable=session.settings.archive_enabled)
        else:
            relative = _relative(session.root, target)
            try:
                size, modified_at = stat_file(target)
            except OSError as exc:
                logger.warning("Cannot stat compressed file %s: %s", relative, exc)
                session.failures += 1
                return
            facts = FileFacts(path=target, relative_path=relative, size=size)
            result, _ = classify(facts, session.settings)

    session.entries[relative] = ManifestEntry(
        relative_path=relative,
        category=result.category,
        archivable=result.archivable,
        size=size,
        modified_at=modified_at,
        fields=result.fields,
        status=EntryStatus.NEW,
    )


def _visit_file(path: Path, session: ScanSession) -> None:
    relative = _relative(session.root, path)
    name = path.name

    try:
        mode = path.lstat().st_mode
    except OSError as exc:
        logger.warning("Cannot stat %s: %s", relative, exc)
        session.failures += 1
        return
    if stat.S_ISLNK(mode):
        logger.warning("Symbolic link %s added to removal list", relative)
        session.removed.append(relative)
        return
    if not stat.S_ISREG(mode):
        logger.warning("Special file %s added to removal list", relative)
        session.removed.append(relative)
        return
    if relative in session.layout.metadata_names:
        return
    if _is_junk(name):
        _delete_junk(path, relative, session)
        return

    subtree = _match_subtree(relative)
    if subtree is not None:
        session.warn_once(f"subtree:{subtree.name}", "%s: %s", subtree.message, relative)
        if subtree.action is SubtreeAction.REMOVE:
            session.removed.append(relative)
        elif f"failed:{subtree.name}" not in session.warned:
            session.warned.add(f"failed:{subtree.name}")
            session.failures += 1
        return

    if _REGENERABLE_RE.search(relative):
        logger.debug("Regenerable file %s added to removal list", relative)
        session.removed.append(relative)
        return
    if is_sidecar(name):
        session.checksums.load_sidecar(path)
        session.removed.append(relative)
        return

    _record(path, relative, session)


def scan_directory(root: Path, session: ScanSession) -> ScanSession:
    """Walk ``root`` once in sorted order and fill ``session``.

    Directories are recursed into; symlinked directories are never entered
    and go to the removal list like any other symlink.
    """
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        current = Path(dirpath)
        kept: list[str] = []
        for dirname in sorted(dirnames):
            child = current / dirname
            if child.is_symlink():
                relative = _relative(root, child)
                logger.warning("Symbolic link %s added to removal list", relative)
                session.removed.append(relative)
                continue
            if dirname.startswith("."):
                session.warn_once(
                    f"hidden:{_relative(root, child)}",
                    "Hidden directory %s present",
                    _relative(root, child),
                )
            kept.append(dirname)
        dirnames[:] = kept

        for filename in sorted(filenames):
            _visit_file(current / filename, session)

    logger.info(
        "Scanned %s: %d files observed, %d for removal, %d junk deleted",
        session.layout.project_id,
        len(session.entries),
        len(session.removed),
        len(session.deleted),
    )
    return session
