"""MD5 checksums with a sidecar-fed side table, plus stat collection."""

from __future__ import annotations

import hashlib
import logging
import re
from typing import TYPE_CHECKING

from biorepo.services.datetime_service import from_timestamp

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192

_DIGEST_RE = re.compile(r"^[0-9a-fA-F]{32}$")
# "<digest>  <path>" as written by md5sum, or "MD5 (<path>) = <digest>" from BSD md5
_GNU_LINE_RE = re.compile(r"^([0-9a-fA-F]{32})\s+\*?(.+?)\s*$")
_BSD_LINE_RE = re.compile(r"^MD5 \((.+)\) = ([0-9a-fA-F]{32})\s*$")
_MULTI_SIDECAR_RE = re.compile(r"^md5.*\.(?:txt|out)$", re.IGNORECASE)


def is_sidecar(name: str) -> bool:
    """Return True for checksum sidecar files the scanner should consume."""
    return name.lower().endswith(".md5") or bool(_MULTI_SIDECAR_RE.match(name))


def stat_file(path: Path) -> tuple[int, datetime]:
    """Return ``(size, modified_at)`` without following symlinks."""
    st = path.lstat()
    return st.st_size, from_timestamp(st.st_mtime)


def compute_md5(path: Path) -> str:
    """Hash a file in fixed-size chunks. Raises OSError if unreadable."""
    digest = hashlib.md5(usedforsecurity=False)
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class ChecksumCache:
    """Digest lookup that prefers precomputed sidecar values.

    The side table is keyed by bare file name, so a sidecar anywhere in the
    tree covers every file with that name. ``computed`` counts real hashing
    passes and is what callers use to verify that unchanged files are never
    re-read.
    """

    def __init__(self, duplicate_min_size: int = 0) -> None:
        self.side_table: dict[str, str] = {}
        self.computed = 0
        self.duplicate_min_size = duplicate_min_size
        self._seen: dict[str, str] = {}
        self.duplicates: list[tuple[str, str]] = []

    def load_sidecar(self, sidecar: Path) -> int:
        """Read digests from a sidecar into the side table; return how many.

        ``name.gz.md5`` holding a bare digest applies to ``name.gz``. Files
        like ``md5sum.txt`` hold one ``digest  path`` line per file.
        Unreadable or malformed sidecars are logged and ignored.
        """
        try:
            text = sidecar.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("Cannot read checksum file %s: %s", sidecar, exc)
            return 0

        loaded = 0
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        single_target = sidecar.name[:-4] if sidecar.name.lower().endswith(".md5") else None
        for line in lines:
            if single_target and _DIGEST_RE.match(line):
                self.side_table[single_target] = line.lower()
                loaded += 1
                continue
            gnu = _GNU_LINE_RE.match(line)
            bsd = _BSD_LINE_RE.match(line)
            if gnu:
                digest, name = gnu.group(1), gnu.group(2)
            elif bsd:
                name, digest = bsd.group(1), bsd.group(2)
            else:
                logger.debug("Skipping unrecognized checksum line in %s: %r", sidecar, line)
                continue
            self.side_table[name.rsplit("/", 1)[-1]] = digest.lower()
            loaded += 1
        logger.debug("Loaded %d checksums from %s", loaded, sidecar)
        return loaded

    def checksum(self, path: Path) -> str:
        """Return the MD5 of ``path``, from the side table when possible.

        Raises OSError when the file has to be read and cannot be.
        """
        cached = self.side_table.get(path.name)
        if cached is not None:
            return cached
        digest = compute_md5(path)
        self.computed += 1
        return digest

    def note(self, relative_path: str, digest: str, size: int) -> None:
        """Track a digest and warn when large distinct files share it."""
        if size <= self.duplicate_min_size:
            return
        previous = self._seen.get(digest)
        if previous is None:
            self._seen[digest] = relative_path
            return
        if previous != relative_path:
            self.duplicates.append((previous, relative_path))
            logger.warning(
                "Duplicate checksum %s for %s and %s", digest, previous, relative_path
            )
