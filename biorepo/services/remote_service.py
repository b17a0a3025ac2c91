"""Remote state: what already exists under the destination bucket/prefix."""

from __future__ import annotations

import difflib
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import boto3
from botocore.exceptions import ClientError

from biorepo.exceptions import RemoteBucketMissingError
from biorepo.services.datetime_service import parse_datetime

if TYPE_CHECKING:
    from collections.abc import Iterator
    from datetime import datetime

logger = logging.getLogger(__name__)

_PAGE_SIZE = 1000
_MISSING_BUCKET_CODES = frozenset({"404", "NoSuchBucket", "NotFound"})


@dataclass(frozen=True)
class RemoteObjectRecord:
    relative_path: str
    last_modified: datetime


@dataclass
class RemoteListing:
    """Remote records keyed by path relative to the prefix."""

    records: dict[str, RemoteObjectRecord] = field(default_factory=dict)
    inconsistent: bool = False

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, relative_path: object) -> bool:
        return relative_path in self.records

    def get(self, relative_path: str) -> RemoteObjectRecord | None:
        return self.records.get(relative_path)


class RemoteLister(Protocol):
    def ensure_bucket(self, bucket: str) -> None: ...

    def list(
        self, bucket: str, prefix: str, last_upload: datetime | None = None
    ) -> RemoteListing: ...


def normalize_prefix(prefix: str) -> str:
    """Strip leading slashes and ensure a trailing one, except for the root."""
    prefix = prefix.strip().lstrip("/")
    if prefix and not prefix.endswith("/"):
        prefix += "/"
    return prefix


def build_listing(
    raw: Iterator[tuple[str, str | datetime]] | list[tuple[str, str | datetime]],
    prefix: str,
    last_upload: datetime | None,
) -> RemoteListing:
    """Turn raw ``(key, last_modified)`` pairs into a listing.

    Directory markers (keys ending in ``/``) and keys outside ``prefix`` are
    dropped. Records present while no upload was ever recorded mark the
    listing inconsistent; that is a warning, not an error.
    """
    prefix = normalize_prefix(prefix)
    listing = RemoteListing()
    for key, last_modified in raw:
        if key.endswith("/") or not key.startswith(prefix):
            continue
        relative = key[len(prefix) :]
        if not relative:
            continue
        listing.records[relative] = RemoteObjectRecord(
            relative_path=relative, last_modified=parse_datetime(last_modified)
        )
    if listing.records and last_upload is None:
        logger.warning(
            "%d remote objects exist under %s but no upload was recorded",
            len(listing.records),
            prefix or "/",
        )
        listing.inconsistent = True
    return listing


class S3RemoteLister:
    """Lists objects with the boto3 ``list_objects_v2`` paginator."""

    def __init__(self, client: Any) -> None:
        self.client = client

    @classmethod
    def from_profile(cls, profile: str | None) -> S3RemoteLister:
        session = boto3.session.Session(profile_name=profile or None)
        return cls(session.client("s3"))

    def ensure_bucket(self, bucket: str) -> None:
        """Raise RemoteBucketMissingError, with close names, if ``bucket`` is absent."""
        try:
            self.client.head_bucket(Bucket=bucket)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code not in _MISSING_BUCKET_CODES:
                raise
            try:
                names = [b["Name"] for b in self.client.list_buckets().get("Buckets", [])]
            except ClientError:
                names = []
            suggestions = difflib.get_close_matches(bucket, names, n=5, cutoff=0.6)
            raise RemoteBucketMissingError(bucket, suggestions) from exc

    def _iter_objects(self, bucket: str, prefix: str) -> Iterator[tuple[str, str | datetime]]:
        paginator = self.client.get_paginator("list_objects_v2")
        kwargs: dict[str, Any] = {"Bucket": bucket, "PaginationConfig": {"PageSize": _PAGE_SIZE}}
        if prefix:
            kwargs["Prefix"] = prefix
        for page in paginator.paginate(**kwargs):
            for obj in page.get("Contents", []):
                yield obj["Key"], obj["LastModified"]

    def list(
        self, bucket: str, prefix: str, last_upload: datetime | None = None
    ) -> RemoteListing:
        prefix = normalize_prefix(prefix)
        listing = build_listing(self._iter_objects(bucket, prefix), prefix, last_upload)
        logger.info("Found %d remote objects in s3://%s/%s", len(listing), bucket, prefix)
        return listing
