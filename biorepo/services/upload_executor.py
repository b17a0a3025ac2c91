"""Concurrent upload executor: a fixed asyncio worker pool over the plan."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence

    from biorepo.services.upload_planner import UploadTask

logger = logging.getLogger(__name__)

_STDERR_LIMIT = 300


class TransferError(Exception):
    """A single transfer failed; the executor records it and moves on."""


class TaskStatus(StrEnum):
    SUCCEEDED = "succeeded"
    TRANSFER_ERROR = "transfer_error"
    LOCAL_ERROR = "local_error"


@dataclass(frozen=True)
class TaskResult:
    task: UploadTask
    status: TaskStatus
    message: str = ""
    worker: int = 0
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is TaskStatus.SUCCEEDED


@dataclass
class UploadSummary:
    """Aggregate outcome of one execution; built only by the coordinator."""

    total: int
    results: list[TaskResult] = field(default_factory=list)
    succeeded: int = 0
    failed: int = 0
    bytes_transferred: int = 0
    elapsed: float = 0.0
    cancelled: bool = False
    dry_run: bool = False

    def record(self, result: TaskResult) -> None:
        self.results.append(result)
        if result.ok:
            self.succeeded += 1
            self.bytes_transferred += result.task.size
        else:
            self.failed += 1

    @property
    def ok(self) -> bool:
        """True only when every planned task succeeded."""
        return not self.cancelled and self.failed == 0 and self.succeeded == self.total

    @property
    def throughput(self) -> float:
        """Bytes per second over the whole execution."""
        if self.elapsed <= 0:
            return 0.0
        return self.bytes_transferred / self.elapsed

    @property
    def failures(self) -> list[TaskResult]:
        return [r for r in self.results if not r.ok]


class Transfer(Protocol):
    async def __call__(self, task: UploadTask, *, dry_run: bool = False) -> None: ...


class AwsCliTransfer:
    """Copies one file with ``aws s3 cp`` in a subprocess under a timeout.

    A timed-out or cancelled copy has its process killed before the error
    propagates, so nothing is left running.
    """

    def __init__(
        self,
        bucket: str,
        *,
        profile: str | None = None,
        storage_class: str | None = None,
        timeout: float = 4 * 3600.0,
        command: Sequence[str] = ("aws",),
    ) -> None:
        self.bucket = bucket
        self.profile = profile
        self.storage_class = storage_class
        self.timeout = timeout
        self.command = tuple(command)

    def build_command(self, task: UploadTask, *, dry_run: bool = False) -> list[str]:
        args = [
            *self.command,
            "s3",
            "cp",
            str(task.local_path),
            f"s3://{self.bucket}/{task.remote_key}",
            "--no-progress",
        ]
        if self.profile:
            args += ["--profile", self.profile]
        if self.storage_class:
            args += ["--storage-class", self.storage_class]
        if dry_run:
            args.append("--dryrun")
        return args

    async def __call__(self, task: UploadTask, *, dry_run: bool = False) -> None:
        proc = await asyncio.create_subprocess_exec(
            *self.build_command(task, dry_run=dry_run),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            msg = f"transfer timed out after {self.timeout:.0f}s"
            raise TransferError(msg) from None
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip()[:_STDERR_LIMIT]
            msg = f"exit code {proc.returncode}: {detail}"
            raise TransferError(msg)


class UploadExecutor:
    """Drains a plan with ``worker_count`` workers pulling from one queue.

    Workers only report results; the coordinator alone updates the summary.
    Every task is attempted regardless of earlier failures. Setting ``stop``
    cancels the workers and returns the partial summary marked cancelled;
    cancelling ``execute`` itself cancels the workers and re-raises.
    """

    def __init__(self, transfer: Transfer) -> None:
        self.transfer = transfer

    async def _run_one(self, task: UploadTask, worker: int, dry_run: bool) -> TaskResult:
        started = time.monotonic()
        if not task.local_path.is_file():
            return TaskResult(task, TaskStatus.LOCAL_ERROR, "local file is missing", worker)
        try:
            await self.transfer(task, dry_run=dry_run)
        except TransferError as exc:
            status, message = TaskStatus.TRANSFER_ERROR, str(exc)
        except OSError as exc:
            status, message = TaskStatus.LOCAL_ERROR, str(exc)
        except Exception as exc:
            logger.exception("Unexpected error uploading %s", task.local_path)
            status, message = TaskStatus.LOCAL_ERROR, repr(exc)
        else:
            status, message = TaskStatus.SUCCEEDED, ""
        return TaskResult(task, status, message, worker, time.monotonic() - started)

    async def _worker(
        self,
        worker: int,
        queue: asyncio.Queue[UploadTask],
        results: asyncio.Queue[TaskResult],
        dry_run: bool,
    ) -> None:
        while True:
            try:
                task = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            result = await self._run_one(task, worker, dry_run)
            if result.ok:
                logger.debug("Worker %d uploaded %s", worker, task.remote_key)
            else:
                logger.warning(
                    "Failed to upload %s (%s): %s", task.local_path, result.status, result.message
                )
            await results.put(result)

    async def execute(
        self,
        tasks: Sequence[UploadTask],
        worker_count: int,
        *,
        stop: asyncio.Event | None = None,
        dry_run: bool = False,
    ) -> UploadSummary:
        summary = UploadSummary(total=len(tasks), dry_run=dry_run)
        if not tasks:
            return summary

        queue: asyncio.Queue[UploadTask] = asyncio.Queue()
        for task in tasks:
            queue.put_nowait(task)
        results: asyncio.Queue[TaskResult] = asyncio.Queue()

        pool_size = max(1, min(worker_count, len(tasks)))
        logger.info("Uploading %d files with %d workers", len(tasks), pool_size)
        started = time.monotonic()
        workers = [
            asyncio.create_task(self._worker(i + 1, queue, results, dry_run))
            for i in range(pool_size)
        ]
        stop_wait = asyncio.create_task(stop.wait()) if stop is not None else None

        getter: asyncio.Task[TaskResult] | None = None
        try:
            while len(summary.results) < len(tasks):
                getter = asyncio.create_task(results.get())
                waiters: set[asyncio.Future[Any]] = {getter}
                if stop_wait is not None:
                    waiters.add(stop_wait)
                done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    summary.record(getter.result())
                    continue
                getter.cancel()
                summary.cancelled = True
                logger.warning(
                    "Upload interrupted after %d of %d files", len(summary.results), len(tasks)
                )
                break
        finally:
            pending = [*workers] if getter is None or getter.done() else [*workers, getter]
            for pending_task in pending:
                pending_task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            if stop_wait is not None:
                stop_wait.cancel()

        while not results.empty():
            summary.record(results.get_nowait())
        summary.elapsed = time.monotonic() - started
        return summary
