# src/main.py — v1
"""CLI entry point — serve, run, scan, retry, status commands.

Usage:
    callbatch serve [--host H] [--port P]
    callbatch run
    callbatch scan <folder_id> [--no-wait]
    callbatch retry <record_id> [--reset] [--no-wait]
    callbatch status
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from pydantic import ValidationError

from callbatch.batch.container import Container, build_container
from callbatch.config.settings import ConfigurationError, Settings, load_settings
from callbatch.core.errors import CallBatchError
from callbatch.core.models import BatchJob
from callbatch.logging.logger import setup_from_settings
from callbatch.tracking.reports import file_stats
from callbatch.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        settings = load_settings()
    except (ConfigurationError, ValidationError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2
    _setup_logging(settings, args.verbose)

    try:
        if asyncio.iscoroutinefunction(args.func):
            return asyncio.run(args.func(args, settings))
        return args.func(args, settings)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except CallBatchError as exc:
        logger.error("%s", exc.message)
        return 1
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def cli() -> None:
    sys.exit(main())


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="callbatch",
        description=f"callbatch v{__version__} — batch ingestion of call recordings",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- serve ---
    p_serve = subparsers.add_parser(
        "serve", help="Run the management API and the orchestrator",
    )
    p_serve.add_argument("--host", default=None, help="Bind address (default: API_HOST)")
    p_serve.add_argument("--port", type=int, default=None, help="Port (default: API_PORT)")
    p_serve.set_defaults(func=_cmd_serve)

    # --- run ---
    p_run = subparsers.add_parser(
        "run", help="Run the orchestrator until interrupted",
    )
    p_run.set_defaults(func=_cmd_run)

    # --- scan ---
    p_scan = subparsers.add_parser(
        "scan", help="Scan a folder now and process new files",
    )
    p_scan.add_argument("folder_id", type=int, help="Folder ID")
    p_scan.add_argument(
        "--no-wait", action="store_true",
        help="Return once files are queued instead of waiting for processing",
    )
    p_scan.set_defaults(func=_cmd_scan)

    # --- retry ---
    p_retry = subparsers.add_parser(
        "retry", help="Retry a failed file",
    )
    p_retry.add_argument("record_id", type=int, help="File record ID")
    p_retry.add_argument(
        "--reset", action="store_true",
        help="Reset the retry count before retrying",
    )
    p_retry.add_argument(
        "--no-wait", action="store_true",
        help="Return once the file is queued",
    )
    p_retry.set_defaults(func=_cmd_retry)

    # --- status ---
    p_status = subparsers.add_parser(
        "status", help="Show folders, recent jobs and file statistics",
    )
    p_status.add_argument(
        "--jobs", type=int, default=10,
        help="Number of recent jobs to list (default: 10)",
    )
    p_status.set_defaults(func=_cmd_status)

    return parser


def _cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    """Serve the management API; the app starts and stops the orchestrator."""
    import uvicorn

    from callbatch.api.app import create_app

    app = create_app(build_container(settings))
    uvicorn.run(
        app,
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        log_config=None,
    )
    return 0


async def _cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    """Run the orchestrator headless until SIGINT/SIGTERM."""
    container = build_container(settings)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    await container.service.start()
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down")
        await container.close()
    return 0


async def _cmd_scan(args: argparse.Namespace, settings: Settings) -> int:
    """Scan one folder immediately."""
    container = build_container(settings)
    try:
        job = await container.service.scan_now(args.folder_id)
        if job is None:
            print("No new files found")
            return 0
        if not args.no_wait:
            await container.service.wait_idle()
            job = await container.store.get_job(job.id)  # type: ignore[arg-type]
        _print_job(job)
    finally:
        await container.close()
    return 0


async def _cmd_retry(args: argparse.Namespace, settings: Settings) -> int:
    """Retry one failed record."""
    container = build_container(settings)
    try:
        record = await container.service.retry_record(
            args.record_id, reset_retry_count=args.reset
        )
        if not args.no_wait:
            await container.service.wait_idle()
            record = await container.store.get_record(args.record_id)
        print(f"\nRecord {record.id} ({record.file_name}):")
        print(f"  Status:       {record.status.value}")
        print(f"  Retries:      {record.retry_count}/{record.max_retries}")
        if record.error_code:
            print(f"  Error:        [{record.error_code.value}] {record.error_message}")
    finally:
        await container.close()
    return 0


async def _cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    """Display folders, recent jobs and file statistics."""
    container = build_container(settings)
    try:
        await _print_status(container, args.jobs)
    finally:
        container.store.close()
    return 0


async def _print_status(container: Container, job_limit: int) -> None:
    folders = await container.store.list_folders()
    print(f"\nFolders ({len(folders)}):")
    for folder in folders:
        state = "active" if folder.is_active else "disabled"
        print(
            f"  [{folder.id}] {folder.name:<30} {folder.storage.type}/{folder.monitor.type}  {state}"
        )

    jobs = await container.store.list_jobs(limit=job_limit)
    print(f"\nRecent jobs ({len(jobs)}):")
    for job in jobs:
        print(
            f"  [{job.id}] {job.name:<40} {job.status.value:<10} "
            f"{job.processed_files}/{job.failed_files}/{job.skipped_files} of {job.total_files}"
        )

    stats = await file_stats(container.store)
    print("\nFiles:")
    print(f"  Total:        {stats['total']}")
    for status_name, count in sorted(stats["by_status"].items()):
        print(f"  {status_name + ':':<13} {count}")
    print(f"  Success rate: {stats['success_rate']:.1f}%")
    print(f"  Retries:      {stats['total_retries']}")


def _print_job(job: BatchJob) -> None:
    """Print a human-readable summary of a batch job."""
    print(f"\nBatch job {job.id} ({job.name}):")
    print(f"  Status:       {job.status.value}")
    print(f"  Files:        {job.total_files}")
    print(f"  Processed:    {job.processed_files}")
    print(f"  Failed:       {job.failed_files}")
    print(f"  Skipped:      {job.skipped_files}")


def _setup_logging(settings: Settings, verbose: bool) -> None:
    """Configure logging for CLI usage."""
    if verbose:
        settings = settings.model_copy(update={"log_level": "DEBUG"})
    setup_from_settings(settings)
    # Quiet noisy libraries
    for name in ("httpx", "httpcore", "botocore", "boto3", "urllib3", "watchdog"):
        logging.getLogger(name).setLevel(logging.WARNING)


if __name__ == "__main__":
    sys.exit(main())
