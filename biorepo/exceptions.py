"""Pipeline exception types.

Convention:
- ``PipelineError`` subclasses are fatal for one project only. The caller
  reports them with a failure count and moves on; nothing already written
  for the project is touched.
- ``ValueError`` is used for bad inputs (malformed settings, bad manifest
  rows, invalid project paths).
- Per-file problems (unreadable files, failed transfers, duplicate
  checksums) are never raised; they are logged and counted.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for errors that abort processing of a single project."""


class ProjectNotFoundError(PipelineError):
    """Raised when the catalog has no entry for a project identifier."""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"No catalog entry for project {project_id}")
        self.project_id = project_id


class ProjectPreconditionError(PipelineError):
    """Raised when a project directory is not in a state that can be scanned.

    Typically a hidden zipped-files or deleted-files folder left by an earlier
    run. ``violations`` lists every problem found so the failure count is
    explicit.
    """

    def __init__(self, project_id: str, violations: list[str]) -> None:
        joined = "; ".join(violations)
        super().__init__(f"Cannot process {project_id}: {joined}")
        self.project_id = project_id
        self.violations = violations

    @property
    def failure_count(self) -> int:
        return len(self.violations)


class DestinationError(PipelineError):
    """Raised when a project has no destination bucket or credentials profile."""


class RemoteBucketMissingError(PipelineError):
    """Raised when the destination bucket does not exist for the profile."""

    def __init__(self, bucket: str, suggestions: list[str]) -> None:
        message = f"Bucket {bucket!r} does not exist"
        if suggestions:
            message += f"; possibilities include: {', '.join(suggestions)}"
        super().__init__(message)
        self.bucket = bucket
        self.suggestions = suggestions


class ManifestFormatError(PipelineError):
    """Raised when a persisted manifest cannot be parsed."""
