"""Tests for planning uploads against remote state."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from biorepo.services.remote_service import build_listing
from biorepo.services.upload_planner import plan_uploads, remote_is_current
from tests.conftest import T0

if TYPE_CHECKING:
    from pathlib import Path

    from biorepo.config import Settings
    from biorepo.filesystem.layout import ProjectLayout
    from biorepo.services.remote_service import RemoteListing

T1 = T0 + timedelta(hours=1)
T3 = T0 + timedelta(hours=3)
T5 = T0 + timedelta(hours=5)


def _remote(pairs: dict[str, object], prefix: str = "") -> RemoteListing:
    return build_listing(
        [(f"{prefix}{key}", value) for key, value in pairs.items()], prefix, last_upload=T0
    )


class TestRemoteComparison:
    def test_newer_remote_excludes_entry(
        self, layout: ProjectLayout, test_settings: Settings, make_entry
    ) -> None:
        plan = plan_uploads(
            [make_entry("a.bam", modified_at=T3)],
            _remote({"a.bam": T5}),
            layout,
            test_settings,
        )
        assert plan.tasks == []
        assert plan.already_uploaded == 1

    def test_stale_remote_includes_entry(
        self, layout: ProjectLayout, test_settings: Settings, make_entry
    ) -> None:
        plan = plan_uploads(
            [make_entry("a.bam", modified_at=T3, size=42)],
            _remote({"a.bam": T1}),
            layout,
            test_settings,
        )
        assert [task.remote_key for task in plan.tasks] == ["a.bam"]
        assert plan.tasks[0].local_path == layout.root / "a.bam"
        assert plan.total_bytes == 42

    def test_equal_times_are_not_current(self) -> None:
        listing = _remote({"a.bam": T3})
        assert remote_is_current(listing, "a.bam", T3) is False
        assert remote_is_current(listing, "missing.bam", T0) is False

    def test_absent_remote_includes_entry_under_prefix(
        self, layout: ProjectLayout, test_settings: Settings, make_entry
    ) -> None:
        plan = plan_uploads(
            [make_entry("docs/notes.txt")],
            _remote({}),
            layout,
            test_settings,
            prefix="/projects/1234R",
        )
        assert [task.remote_key for task in plan.tasks] == ["projects/1234R/docs/notes.txt"]


class TestMetadataFiles:
    def test_manifest_file_is_planned(
        self, layout: ProjectLayout, test_settings: Settings, write_file
    ) -> None:
        write_file(layout.root, layout.manifest_name, "File\n")
        plan = plan_uploads([], _remote({}), layout, test_settings)
        assert [task.remote_key for task in plan.tasks] == [layout.manifest_name]
        assert plan.considered == 1

    def test_current_manifest_is_skipped(
        self, layout: ProjectLayout, test_settings: Settings, write_file
    ) -> None:
        write_file(layout.root, layout.manifest_name, "File\n", mtime=T0)
        plan = plan_uploads([], _remote({layout.manifest_name: T5}), layout, test_settings)
        assert plan.tasks == []
        assert plan.already_uploaded == 1


class TestBundles:
    def test_bundled_entries_are_replaced_by_archive(
        self, layout: ProjectLayout, test_settings: Settings, write_file, make_entry
    ) -> None:
        write_file(layout.root, layout.archive_name, b"PK")
        write_file(layout.root, layout.archive_list_name, "notes.txt\n")
        entries = [
            make_entry("notes.txt", archivable=True),
            make_entry("a.bam", archivable=False),
        ]
        plan = plan_uploads(entries, _remote({}), layout, test_settings)
        keys = sorted(task.remote_key for task in plan.tasks)
        assert keys == sorted(["a.bam", layout.archive_name, layout.archive_list_name])
        assert plan.archived_skipped == 1

    def test_without_archive_archivable_entries_upload(
        self, layout: ProjectLayout, test_settings: Settings, make_entry
    ) -> None:
        plan = plan_uploads(
            [make_entry("notes.txt", archivable=True)], _remote({}), layout, test_settings
        )
        assert [task.remote_key for task in plan.tasks] == ["notes.txt"]


class TestLegacyLayout:
    def test_flat_remote_switches_to_legacy_keys(
        self, layout: ProjectLayout, test_settings: Settings, make_entry
    ) -> None:
        entries = [
            make_entry("Fastq/a_R1.fastq.gz", modified_at=T3),
            make_entry("Fastq/b_R1.fastq.gz", modified_at=T3),
            make_entry("Fastq/c_R1.fastq.gz", modified_at=T3),
            make_entry("report.html", modified_at=T3),
        ]
        listing = _remote({"a_R1.fastq.gz": T5, "b_R1.fastq.gz": T1}, prefix="1234R/")
        plan = plan_uploads(entries, listing, layout, test_settings, prefix="1234R")
        assert plan.legacy_mode is True
        assert sorted(task.remote_key for task in plan.tasks) == [
            "1234R/b_R1.fastq.gz",
            "1234R/c_R1.fastq.gz",
            "1234R/report.html",
        ]

    def test_nested_remote_keeps_folder(
        self, layout: ProjectLayout, test_settings: Settings, make_entry
    ) -> None:
        entries = [make_entry("Fastq/a_R1.fastq.gz", modified_at=T3)]
        plan = plan_uploads(
            entries, _remote({"Fastq/a_R1.fastq.gz": T5}), layout, test_settings
        )
        assert plan.legacy_mode is False
        assert plan.tasks == []

    def test_legacy_prefix_disabled(
        self, layout: ProjectLayout, test_settings: Settings, make_entry
    ) -> None:
        settings = test_settings.model_copy(update={"legacy_prefix": ""})
        entries = [make_entry("Fastq/a_R1.fastq.gz", modified_at=T3)]
        plan = plan_uploads(entries, _remote({"a_R1.fastq.gz": T5}), layout, settings)
        assert plan.legacy_mode is False
        assert [task.remote_key for task in plan.tasks] == ["Fastq/a_R1.fastq.gz"]


class TestAutoAnalysis:
    @pytest.mark.parametrize(("include", "expected"), [(False, 0), (True, 1)])
    def test_auto_analysis_folders(
        self,
        layout: ProjectLayout,
        test_settings: Settings,
        make_entry,
        include: bool,
        expected: int,
    ) -> None:
        settings = test_settings.model_copy(update={"include_auto_analysis": include})
        plan = plan_uploads(
            [make_entry("AutoAnalysis_Jan2024/summary.txt")], _remote({}), layout, settings
        )
        assert len(plan.tasks) == expected
        assert plan.auto_analysis_skipped == 1 - expected


def test_plan_is_sorted_and_counts_everything(
    layout: ProjectLayout, test_settings: Settings, make_entry
) -> None:
    entries = [make_entry("z.txt"), make_entry("a.txt"), make_entry("m.txt", modified_at=T0)]
    plan = plan_uploads(entries, _remote({"m.txt": T5}), layout, test_settings)
    assert [task.remote_key for task in plan.tasks] == ["a.txt", "z.txt"]
    assert plan.considered == 3
    assert plan.skipped == 1


def test_local_path_points_into_project(
    project_dir: Path, layout: ProjectLayout, test_settings: Settings, make_entry
) -> None:
    plan = plan_uploads([make_entry("sub/x.txt")], _remote({}), layout, test_settings)
    assert plan.tasks[0].local_path == project_dir / "sub" / "x.txt"
