"""Pipeline configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

STORAGE_CLASSES = frozenset(
    {
        "STANDARD",
        "REDUCED_REDUNDANCY",
        "STANDARD_IA",
        "ONEZONE_IA",
        "INTELLIGENT_TIERING",
        "GLACIER",
        "DEEP_ARCHIVE",
        "GLACIER_IR",
    }
)

MIB = 1_048_576


class Settings(BaseSettings):
    """Repository pipeline settings."""

    model_config = SettingsConfigDict(
        env_prefix="BIOREPO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False

    # Catalog database
    database_url: str = "sqlite+aiosqlite:///data/catalog.db"

    # Scanning
    mtime_tolerance_seconds: int = Field(default=3600, ge=0)
    large_file_threshold: int = Field(default=200_000_000, ge=0)
    transcode_min_size: int = Field(default=MIB, ge=0)
    archive_keep_max_size: int = Field(default=10 * MIB, ge=0)
    duplicate_checksum_min_size: int = Field(default=MIB, ge=0)
    archive_enabled: bool = True
    compress_threads: int = Field(default=4, ge=1)
    # "local" is accepted but repeats an hour of wall-clock dates at each DST fold
    manifest_timezone: str = "UTC"

    # Upload
    upload_workers: int = Field(default=2, ge=1, le=32)
    transfer_timeout_seconds: float = Field(default=4 * 3600.0, gt=0)
    storage_class: str | None = None
    aws_cli: str = "aws"
    legacy_prefix: str = "Fastq/"
    include_auto_analysis: bool = False

    @field_validator("storage_class")
    @classmethod
    def _check_storage_class(cls, value: str | None) -> str | None:
        if value is None or value == "":
            return None
        normalized = value.upper()
        if normalized not in STORAGE_CLASSES:
            msg = f"Unrecognized storage class {value!r}; expected one of {sorted(STORAGE_CLASSES)}"
            raise ValueError(msg)
        return normalized

    @field_validator("legacy_prefix")
    @classmethod
    def _check_legacy_prefix(cls, value: str) -> str:
        if value and not value.endswith("/"):
            value += "/"
        return value
