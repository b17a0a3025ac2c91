"""Merge a fresh scan with the previous manifest without redoing unchanged work."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from biorepo.filesystem.manifest import EntryStatus, ManifestEntry

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from pathlib import Path

    from biorepo.filesystem.checksums import ChecksumCache

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Reconciled manifest (sorted by path) and the removal list."""

    manifest: list[ManifestEntry]
    removal_list: list[str]
    retained: int = 0
    new: int = 0
    stale: list[str] = field(default_factory=list)
    suspicious: list[str] = field(default_factory=list)
    unreadable: list[str] = field(default_factory=list)

    @property
    def failures(self) -> int:
        return len(self.unreadable)


def _unchanged(prior: ManifestEntry, current: ManifestEntry, tolerance: int) -> tuple[bool, bool]:
    """Return ``(retain, suspicious)`` for a path seen in both scans."""
    if prior.size != current.size:
        return False, False
    delta = abs((current.modified_at - prior.modified_at).total_seconds())
    return True, delta > tolerance


def reconcile(
    prior: Mapping[str, ManifestEntry],
    observed: Mapping[str, ManifestEntry],
    checksums: ChecksumCache,
    root: Path,
    tolerance_seconds: int,
    removed: Iterable[str] = (),
) -> ReconcileResult:
    """Merge ``observed`` (this scan) into ``prior`` (last manifest).

    A path seen in both with the same size is retained and its previous
    checksum, category and fields are carried forward untouched; when its
    mtime moved by more than ``tolerance_seconds`` a warning is logged but the
    entry is still retained. Everything else observed is new and checksummed
    here. Prior paths no longer observed go to the removal list, after any
    paths the scanner already set aside in ``removed``.

    Files that cannot be read for checksumming are left out of both lists,
    so the next run sees them as new again.
    """
    result = ReconcileResult(manifest=[], removal_list=[])
    kept: dict[str, ManifestEntry] = {}

    for path in sorted(observed):
        current = observed[path]
        previous = prior.get(path)
        if previous is not None and previous.checksum:
            retain, suspicious = _unchanged(previous, current, tolerance_seconds)
            if retain:
                if suspicious:
                    logger.warning(
                        "Same size, suspicious time delta for %s: %s -> %s",
                        path,
                        previous.modified_at,
                        current.modified_at,
                    )
                    result.suspicious.append(path)
                kept[path] = replace(previous, status=EntryStatus.RETAINED)
                result.retained += 1
                continue

        try:
            digest = checksums.checksum(root / path)
        except OSError as exc:
            logger.warning("Cannot checksum %s: %s", path, exc)
            result.unreadable.append(path)
            continue
        kept[path] = replace(current, checksum=digest, status=EntryStatus.NEW)
        result.new += 1

    for path, entry in kept.items():
        checksums.note(path, entry.checksum, entry.size)

    result.stale = sorted(path for path in prior if path not in observed)
    for path in result.stale:
        logger.debug("%s no longer present, adding to removal list", path)

    seen: set[str] = set()
    for path in [*removed, *result.stale]:
        if path in seen or path in kept:
            continue
        seen.add(path)
        result.removal_list.append(path)

    result.manifest = [kept[path] for path in sorted(kept)]
    logger.info(
        "Reconciled: %d retained, %d new, %d removed, %d unreadable",
        result.retained,
        result.new,
        len(result.stale),
        len(result.unreadable),
    )
    return result
