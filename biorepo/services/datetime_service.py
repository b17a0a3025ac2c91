"""Datetime parsing: lax input -> strict output, plus the manifest date format."""

from __future__ import annotations

from datetime import UTC, datetime

import pendulum

# Manifest dates are human readable and second precision:
# "March 04, 2024 13:05:59" in the configured manifest timezone.
MANIFEST_DATE_FORMAT = "MMMM DD, YYYY HH:mm:ss"


def resolve_timezone(name: str) -> pendulum.Timezone | pendulum.FixedTimezone:
    """Return a pendulum timezone; ``"local"`` means the host timezone."""
    if name == "local":
        return pendulum.local_timezone()
    return pendulum.timezone(name)


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a timezone-aware datetime.

    Accepts ISO 8601 variants such as the ``LastModified`` strings returned
    by object stores (``2024-03-04T13:05:59.000Z``) as well as datetime
    objects. Missing timezone defaults to ``default_tz``.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    value_str = value.strip()

    parsed = pendulum.parse(value_str, tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def from_timestamp(timestamp: float) -> datetime:
    """Convert a filesystem mtime to an aware UTC datetime truncated to seconds."""
    return datetime.fromtimestamp(int(timestamp), tz=UTC)


def format_manifest_date(dt: datetime, tz_name: str = "UTC") -> str:
    """Format a datetime for the manifest ``Date`` column."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return pendulum.instance(dt).in_timezone(resolve_timezone(tz_name)).format(
        MANIFEST_DATE_FORMAT
    )


def parse_manifest_date(value: str, tz_name: str = "UTC") -> datetime:
    """Parse a manifest ``Date`` column back into an aware datetime.

    Raises ValueError for strings that do not follow the manifest format.
    """
    return pendulum.from_format(value.strip(), MANIFEST_DATE_FORMAT, tz=resolve_timezone(tz_name))


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(UTC)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for catalog storage."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.isoformat()
