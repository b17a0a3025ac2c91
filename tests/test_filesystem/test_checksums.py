"""Tests for checksum computation, sidecar lookup and duplicate detection."""

from __future__ import annotations

import hashlib
import logging
import os
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from biorepo.filesystem.checksums import ChecksumCache, is_sidecar, stat_file

if TYPE_CHECKING:
    from pathlib import Path

HELLO_MD5 = "b1946ac92492d2347c6235b4d2611184"
OTHER_MD5 = "0123456789abcdef0123456789abcdef"


class TestChecksum:
    def test_computes_md5_and_counts(self, tmp_path: Path) -> None:
        path = tmp_path / "hello.txt"
        path.write_bytes(b"hello\n")
        cache = ChecksumCache()
        assert cache.checksum(path) == HELLO_MD5
        assert cache.computed == 1

    def test_large_file_is_chunked_consistently(self, tmp_path: Path) -> None:
        path = tmp_path / "big.bin"
        path.write_bytes(b"hello\n" * 10_000)
        expected = hashlib.md5(b"hello\n" * 10_000).hexdigest()
        assert ChecksumCache().checksum(path) == expected

    def test_side_table_skips_computation(self, tmp_path: Path) -> None:
        cache = ChecksumCache()
        cache.side_table["reads.fastq.gz"] = OTHER_MD5
        # The file does not even have to exist
        assert cache.checksum(tmp_path / "sub" / "reads.fastq.gz") == OTHER_MD5
        assert cache.computed == 0

    def test_unreadable_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(OSError):
            ChecksumCache().checksum(tmp_path / "missing.bin")


class TestSidecars:
    def test_single_file_sidecar_with_bare_digest(self, tmp_path: Path) -> None:
        sidecar = tmp_path / "reads.fastq.gz.md5"
        sidecar.write_text(f"{OTHER_MD5.upper()}\n")
        cache = ChecksumCache()
        assert cache.load_sidecar(sidecar) == 1
        assert cache.side_table == {"reads.fastq.gz": OTHER_MD5}

    def test_single_file_sidecar_in_md5sum_format(self, tmp_path: Path) -> None:
        sidecar = tmp_path / "reads.fastq.gz.md5"
        sidecar.write_text(f"{OTHER_MD5}  reads.fastq.gz\n")
        cache = ChecksumCache()
        cache.load_sidecar(sidecar)
        assert cache.side_table == {"reads.fastq.gz": OTHER_MD5}

    def test_multi_line_sidecar_keys_by_bare_name(self, tmp_path: Path) -> None:
        sidecar = tmp_path / "md5sum.txt"
        sidecar.write_text(
            f"{OTHER_MD5}  Fastq/a_R1.fastq.gz\n"
            f"{HELLO_MD5} *Fastq/a_R2.fastq.gz\n"
            f"MD5 (b.fastq.gz) = {OTHER_MD5}\n"
            "garbage line\n"
        )
        cache = ChecksumCache()
        assert cache.load_sidecar(sidecar) == 3
        assert cache.side_table == {
            "a_R1.fastq.gz": OTHER_MD5,
            "a_R2.fastq.gz": HELLO_MD5,
            "b.fastq.gz": OTHER_MD5,
        }

    def test_unreadable_sidecar_is_ignored(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        cache = ChecksumCache()
        with caplog.at_level(logging.WARNING):
            assert cache.load_sidecar(tmp_path / "gone.md5") == 0
        assert "Cannot read checksum file" in caplog.text

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("reads.fastq.gz.md5", True),
            ("md5sum.txt", True),
            ("MD5_checksums.out", True),
            ("notes.txt", False),
            ("reads.fastq.gz", False),
        ],
    )
    def test_is_sidecar(self, name: str, expected: bool) -> None:
        assert is_sidecar(name) is expected


class TestDuplicates:
    def test_large_duplicates_warn(self, caplog: pytest.LogCaptureFixture) -> None:
        cache = ChecksumCache(duplicate_min_size=1000)
        with caplog.at_level(logging.WARNING):
            cache.note("a.bam", OTHER_MD5, 5000)
            cache.note("copy/a.bam", OTHER_MD5, 5000)
        assert cache.duplicates == [("a.bam", "copy/a.bam")]
        assert "Duplicate checksum" in caplog.text

    def test_small_duplicates_are_common_and_ignored(self) -> None:
        cache = ChecksumCache(duplicate_min_size=1000)
        cache.note("run.sh", HELLO_MD5, 10)
        cache.note("other/run.sh", HELLO_MD5, 10)
        assert cache.duplicates == []

    def test_same_path_twice_is_not_a_duplicate(self) -> None:
        cache = ChecksumCache()
        cache.note("a.bam", OTHER_MD5, 5000)
        cache.note("a.bam", OTHER_MD5, 5000)
        assert cache.duplicates == []


def test_stat_file_truncates_to_seconds(tmp_path: Path) -> None:
    path = tmp_path / "f.txt"
    path.write_bytes(b"12345")
    os.utime(path, (1_700_000_000.75, 1_700_000_000.75))
    size, modified_at = stat_file(path)
    assert size == 5
    assert modified_at == datetime.fromtimestamp(1_700_000_000, tz=UTC)
