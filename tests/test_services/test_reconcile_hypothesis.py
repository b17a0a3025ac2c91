"""Property-based tests for manifest reconciliation invariants."""

from __future__ import annotations

import hashlib
import string
from datetime import timedelta
from pathlib import Path

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from biorepo.filesystem.checksums import ChecksumCache
from biorepo.filesystem.manifest import Category, EntryStatus, ManifestEntry
from biorepo.services.reconcile_service import reconcile
from tests.conftest import T0

PROPERTY_SETTINGS = settings(
    max_examples=250,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

TOLERANCE = 3600
ROOT = Path("/repository/1234R")

_SEGMENT = st.text(alphabet=string.ascii_lowercase + string.digits, min_size=1, max_size=8)
_PATH = st.builds(
    lambda parts, ext: "/".join(parts) + f".{ext}",
    st.lists(_SEGMENT, min_size=1, max_size=3),
    st.sampled_from(["bam", "txt", "vcf.gz", "fastq.gz"]),
)
_STAT = st.tuples(st.integers(min_value=0, max_value=50), st.integers(-7200, 7200))
_SCAN = st.dictionaries(keys=_PATH, values=_STAT, max_size=12)


class _PathDigest(ChecksumCache):
    """Derives the digest from the path so no files are needed."""

    def checksum(self, path: Path) -> str:
        self.computed += 1
        return hashlib.md5(str(path).encode()).hexdigest()


def _entries(scan: dict[str, tuple[int, int]], status: EntryStatus) -> dict[str, ManifestEntry]:
    return {
        path: ManifestEntry(
            relative_path=path,
            category=Category.OTHER,
            archivable=False,
            size=size,
            modified_at=T0 + timedelta(seconds=offset),
            checksum="" if status is EntryStatus.NEW else "f" * 32,
            status=status,
        )
        for path, (size, offset) in scan.items()
    }


@PROPERTY_SETTINGS
@given(prior_scan=_SCAN, observed_scan=_SCAN)
def test_manifest_and_removal_list_partition(
    prior_scan: dict[str, tuple[int, int]], observed_scan: dict[str, tuple[int, int]]
) -> None:
    prior = _entries(prior_scan, EntryStatus.RETAINED)
    observed = _entries(observed_scan, EntryStatus.NEW)

    result = reconcile(prior, observed, _PathDigest(), ROOT, TOLERANCE)

    manifest_paths = [entry.relative_path for entry in result.manifest]
    assert manifest_paths == sorted(observed)
    assert set(result.removal_list) == set(prior) - set(observed)
    assert not set(result.removal_list) & set(manifest_paths)
    assert result.retained + result.new == len(observed)
    for entry in result.manifest:
        previous = prior.get(entry.relative_path)
        if previous is not None and previous.size == entry.size:
            assert entry.status is EntryStatus.RETAINED
            assert entry == ManifestEntry(**{**vars(previous), "status": EntryStatus.RETAINED})
        else:
            assert entry.status is EntryStatus.NEW
            assert entry.checksum


@PROPERTY_SETTINGS
@given(prior_scan=_SCAN, observed_scan=_SCAN)
def test_reconciling_twice_recomputes_nothing(
    prior_scan: dict[str, tuple[int, int]], observed_scan: dict[str, tuple[int, int]]
) -> None:
    prior = _entries(prior_scan, EntryStatus.RETAINED)
    observed = _entries(observed_scan, EntryStatus.NEW)
    first = reconcile(prior, observed, _PathDigest(), ROOT, TOLERANCE)

    cache = _PathDigest()
    again = {entry.relative_path: entry for entry in first.manifest}
    second = reconcile(again, observed, cache, ROOT, TOLERANCE)

    assert cache.computed == 0
    assert second.manifest == [
        ManifestEntry(**{**vars(entry), "status": EntryStatus.RETAINED})
        for entry in first.manifest
    ]
    assert second.removal_list == []
