"""Command-line entry point for scanning and uploading repository projects."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from biorepo.config import Settings
from biorepo.database import create_engine, ensure_sqlite_directory, init_db
from biorepo.exceptions import PipelineError
from biorepo.filesystem.layout import project_id_from_path
from biorepo.services.catalog_service import SqlCatalog
from biorepo.services.pipeline_service import ProjectPipeline

if TYPE_CHECKING:
    from collections.abc import Iterator

    from biorepo.filesystem.removal import RemovalResult

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(level=level, format=fmt, stream=sys.stdout, force=True)
    # Quiet noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)
    for name in ("botocore", "boto3", "urllib3", "s3transfer"):
        logging.getLogger(name).setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="biorepo",
        description="Scan, reconcile and upload sequencing repository projects",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register = subparsers.add_parser("register", help="Add or update a project in the catalog")
    register.add_argument("path", help="Absolute path of the project directory")
    register.add_argument("--id", dest="project_id", help="Project id (default: from path)")
    register.add_argument("--bucket", help="Destination bucket")
    register.add_argument("--prefix", help="Destination key prefix")
    register.add_argument("--profile", help="AWS credentials profile")

    scan = subparsers.add_parser("scan", help="Scan projects and write their manifests")
    scan.add_argument("projects", nargs="+", help="Project ids")
    scan.add_argument("--bundle", action="store_true", help="Zip archivable files")
    scan.add_argument(
        "--hide-bundled",
        action="store_true",
        help="Move bundled files into the hidden zipped-files folder",
    )
    scan.add_argument(
        "--no-compress", action="store_true", help="Do not compress large uncompressed files"
    )

    upload = subparsers.add_parser("upload", help="Upload files the bucket lacks")
    upload.add_argument("projects", nargs="+", help="Project ids")
    upload.add_argument("--check", action="store_true", help="Plan only, do not upload")
    upload.add_argument("--dryrun", action="store_true", help="Run transfers in dry-run mode")
    upload.add_argument("--workers", type=int, help="Number of concurrent transfers")

    remove = subparsers.add_parser("remove", help="Hide the files on each project's removal list")
    remove.add_argument("projects", nargs="+", help="Project ids")
    action = remove.add_mutually_exclusive_group()
    action.add_argument(
        "--delete", action="store_true", help="Delete listed files instead of hiding them"
    )
    action.add_argument(
        "--restore", action="store_true", help="Move hidden files back into the project"
    )

    status = subparsers.add_parser("status", help="Show catalog timestamps")
    status.add_argument("projects", nargs="*", help="Project ids (default: all)")
    return parser


@contextlib.contextmanager
def _interrupt_sets(stop: asyncio.Event) -> Iterator[None]:
    """Route SIGINT to ``stop`` so running uploads end with a partial summary."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop.set)
    except (NotImplementedError, RuntimeError):
        yield
        return
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


async def _register(catalog: SqlCatalog, args: argparse.Namespace) -> int:
    path = Path(args.path)
    if not path.is_absolute():
        print(f"Error: project path must be absolute: {path}")
        return 1
    project_id = args.project_id or project_id_from_path(path)
    await catalog.register_project(
        project_id, path, bucket=args.bucket, prefix=args.prefix, profile=args.profile
    )
    print(f"Registered {project_id} at {path}")
    return 0


async def _status(catalog: SqlCatalog, args: argparse.Namespace) -> int:
    records = await catalog.list_projects()
    wanted = set(args.projects)
    for record in records:
        if wanted and record.id not in wanted:
            continue
        destination = f"s3://{record.bucket}/{record.prefix or ''}" if record.bucket else "-"
        print(
            f"{record.id:<10} {record.path}  {destination}  "
            f"scanned={record.scanned_at or '-'}  uploaded={record.uploaded_at or '-'}"
        )
    missing = wanted - {record.id for record in records}
    for project_id in sorted(missing):
        print(f"{project_id:<10} not in catalog")
    return 1 if missing else 0


async def _remove(
    pipeline: ProjectPipeline, project_id: str, args: argparse.Namespace
) -> RemovalResult:
    if args.delete:
        return await pipeline.delete_removed(project_id)
    if args.restore:
        return await pipeline.restore_removed(project_id)
    return await pipeline.hide_removed(project_id)


async def _run_projects(pipeline: ProjectPipeline, args: argparse.Namespace) -> int:
    failed_projects = 0
    stop = asyncio.Event()
    for project_id in args.projects:
        if stop.is_set():
            logger.warning("Interrupted, skipping %s", project_id)
            failed_projects += 1
            continue
        try:
            if args.command == "scan":
                report = await pipeline.scan_project(
                    project_id, bundle=args.bundle, hide_bundled=args.hide_bundled
                )
                failures = report.failures
            elif args.command == "remove":
                failures = (await _remove(pipeline, project_id, args)).failures
            else:
                with _interrupt_sets(stop):
                    upload = await pipeline.upload_project(
                        project_id, check_only=args.check, dry_run=args.dryrun, stop=stop
                    )
                failures = upload.failures
        except PipelineError as exc:
            failures = getattr(exc, "failure_count", 1)
            logger.error("%s: %s", project_id, exc)
        print(f"{project_id}: {failures} failures")
        if failures:
            failed_projects += 1
    return 1 if failed_projects else 0


async def _main(args: argparse.Namespace, settings: Settings) -> int:
    ensure_sqlite_directory(settings.database_url)
    engine, session_factory = create_engine(settings)
    try:
        await init_db(engine)
        catalog = SqlCatalog(session_factory)
        if args.command == "register":
            return await _register(catalog, args)
        if args.command == "status":
            return await _status(catalog, args)
        pipeline = ProjectPipeline(
            catalog, settings, compress=not getattr(args, "no_compress", False)
        )
        return await _run_projects(pipeline, args)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    settings = Settings()
    if args.debug:
        settings = settings.model_copy(update={"debug": True})
    if getattr(args, "workers", None):
        if not 1 <= args.workers <= 32:
            print("Error: --workers must be between 1 and 32")
            sys.exit(2)
        settings = settings.model_copy(update={"upload_workers": args.workers})
    _configure_logging(settings.debug)

    code = asyncio.run(_main(args, settings))
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
