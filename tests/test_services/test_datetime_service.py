"""Tests for datetime parsing and manifest date formatting."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from biorepo.services.datetime_service import (
    format_iso,
    format_manifest_date,
    from_timestamp,
    now_utc,
    parse_datetime,
    parse_manifest_date,
)

T0 = datetime(2024, 3, 4, 13, 5, 59, tzinfo=UTC)


class TestDatetimeParsing:
    def test_parse_object_store_timestamp(self) -> None:
        assert parse_datetime("2024-03-04T13:05:59.000Z") == T0

    def test_parse_date_only(self) -> None:
        result = parse_datetime("2024-03-04")
        assert (result.year, result.month, result.day, result.hour) == (2024, 3, 4, 0)

    def test_parse_with_default_timezone(self) -> None:
        result = parse_datetime("2024-03-04 06:05:59", default_tz="America/Denver")
        assert result == T0

    def test_parse_datetime_object(self) -> None:
        assert parse_datetime(T0) is T0

    def test_parse_datetime_naive_adds_tz(self) -> None:
        result = parse_datetime(datetime(2024, 3, 4, 13, 5, 59), default_tz="UTC")
        assert result.tzinfo is not None
        assert result == T0


class TestManifestDates:
    def test_format_in_utc(self) -> None:
        assert format_manifest_date(T0, "UTC") == "March 04, 2024 13:05:59"

    def test_format_in_other_zone(self) -> None:
        assert format_manifest_date(T0, "America/Denver") == "March 04, 2024 06:05:59"

    def test_naive_is_treated_as_utc(self) -> None:
        assert format_manifest_date(T0.replace(tzinfo=None), "UTC") == "March 04, 2024 13:05:59"

    def test_parse_round_trip(self) -> None:
        text = format_manifest_date(T0, "Europe/Berlin")
        assert parse_manifest_date(text, "Europe/Berlin") == T0

    def test_default_zone_keeps_instants_in_a_dst_fold_distinct(self) -> None:
        # 01:30 happens twice in Denver on 2024-11-03
        first = datetime(2024, 11, 3, 7, 30, tzinfo=UTC)
        second = datetime(2024, 11, 3, 8, 30, tzinfo=UTC)
        assert format_manifest_date(first, "America/Denver") == format_manifest_date(
            second, "America/Denver"
        )
        texts = [format_manifest_date(first), format_manifest_date(second)]
        assert texts[0] != texts[1]
        assert [parse_manifest_date(text) for text in texts] == [first, second]

    def test_parse_rejects_other_formats(self) -> None:
        with pytest.raises(ValueError):
            parse_manifest_date("2024-03-04 13:05:59", "UTC")


def test_from_timestamp_truncates() -> None:
    assert from_timestamp(T0.timestamp() + 0.9) == T0


def test_now_utc_is_aware() -> None:
    assert now_utc().tzinfo is not None


def test_format_iso() -> None:
    assert format_iso(T0) == "2024-03-04T13:05:59+00:00"
    assert format_iso(T0.replace(tzinfo=None)) == "2024-03-04T13:05:59+00:00"
