# src/batch/service.py — v1
"""Batch processing service — the orchestrator.

Ties providers, status tracking and notifications together:

    monitor ──sink──▶ discovery queue ──▶ handle_discovery()
                                              │ create record (discovered)
                                              │ pre-flight → skipped | queued
                                              ▼
                          per-folder asyncio.Queue ──▶ N workers
                                              │ queued/retrying → processing
                                              │ download → analyze
                                              ▼
                               completed | failed (→ retrying → ...)

Every status change goes through ``StatusTracker.transition``; job
counters only move on terminal transitions, under a per-job lock.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from callbatch.analysis.base_analyzer import BaseAnalyzer
from callbatch.batch.dispatcher import NotificationDispatcher, file_notification, job_notification
from callbatch.batch.file_validator import check_file
from callbatch.batch.retry import file_retry_delay
from callbatch.batch.status_channel import StatusChannel
from callbatch.config.settings import Settings
from callbatch.core.errors import (
    CallBatchError,
    ConfigurationInvalid,
    FolderInactive,
    InvalidTransition,
    JobNotCancellable,
    RetryNotAllowed,
    classify_exception,
)
from callbatch.core.models import (
    BatchJob,
    DiscoveredFile,
    DiscoveryEvent,
    ErrorCode,
    FileProcessingRecord,
    FileStatus,
    FolderConfig,
    JobStatus,
    MonitorHandle,
    MonitorType,
    NotificationCondition,
    ProcessingConfig,
    ProviderKind,
    StatusUpdate,
    utcnow,
)
from callbatch.logging.context import set_job_context, set_record_context
from callbatch.providers.base_monitor import BaseMonitor
from callbatch.providers.base_storage import BaseStorageProvider
from callbatch.providers.factory import ProviderFactory
from callbatch.providers.registry import ProviderRegistry
from callbatch.tracking.base_status_store import BaseStatusStore
from callbatch.tracking.tracker import StatusTracker

logger = logging.getLogger(__name__)


@dataclass
class FolderRuntime:
    """Live state of one started folder."""

    folder: FolderConfig
    processing: ProcessingConfig
    storage: BaseStorageProvider
    owner: str
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    workers: list[asyncio.Task] = field(default_factory=list)
    storage_lock: asyncio.Lock | None = None
    monitor: BaseMonitor | None = None
    handle: MonitorHandle | None = None
    watch_path: str | None = None
    pending: int = 0
    in_flight: int = 0
    stopping: bool = False

    @property
    def folder_id(self) -> int:
        return self.folder.id  # type: ignore[return-value]


class BatchProcessingService:
    """Discovers, validates, processes and reports on batch files."""

    def __init__(
        self,
        store: BaseStatusStore,
        registry: ProviderRegistry,
        factory: ProviderFactory,
        analyzer: BaseAnalyzer,
        settings: Settings,
        channel: StatusChannel | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.factory = factory
        self.analyzer = analyzer
        self.settings = settings
        self.channel = channel or StatusChannel()
        self.dispatcher = dispatcher or NotificationDispatcher(store, factory, settings)
        self.tracker = StatusTracker(store, publish=self.channel.publish)

        self._runtimes: dict[int, FolderRuntime] = {}
        self._start_locks: dict[int, asyncio.Lock] = {}
        self._discovery_locks: dict[int, asyncio.Lock] = {}
        self._job_locks: dict[int, asyncio.Lock] = {}
        # record_id → (folder_id, timer task)
        self._timers: dict[int, tuple[int, asyncio.Task]] = {}
        self._discoveries: asyncio.Queue[DiscoveryEvent] = asyncio.Queue()
        self._consumer: asyncio.Task | None = None
        self._handling = 0
        self._analyzer_lock = None if analyzer.concurrent_safe else asyncio.Lock()

    # === Lifecycle ===

    async def start(self) -> None:
        """Start every active folder flagged ``auto_start``.

        A folder that cannot start is logged and left stopped; the other
        folders are unaffected.
        """
        self._ensure_consumer()
        for folder in await self.store.list_folders(active_only=True):
            if not folder.processing.auto_start:
                continue
            try:
                await self.start_folder(folder.id)  # type: ignore[arg-type]
            except CallBatchError as e:
                logger.error("Cannot start folder %s (%s): %s", folder.id, folder.name, e)
            except Exception:
                logger.exception("Cannot start folder %s (%s)", folder.id, folder.name)
        logger.info("Batch processing service started (%d folders running)", len(self._runtimes))

    async def shutdown(self) -> None:
        """Stop discovery, let in-flight files finish, then release everything."""
        for folder_id in list(self._runtimes):
            await self.stop_folder(folder_id)
        for _, task in self._timers.values():
            task.cancel()
        self._timers.clear()
        if self._consumer is not None:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None
        await self.dispatcher.drain()
        await self.registry.shutdown()
        await self.analyzer.close()
        logger.info("Batch processing service stopped")

    def _ensure_consumer(self) -> None:
        if self._consumer is None:
            self._consumer = asyncio.create_task(
                self._consume_discoveries(), name="discovery-consumer"
            )

    @property
    def running_folders(self) -> list[int]:
        return sorted(self._runtimes)

    async def start_folder(self, folder_id: int, watch: bool = True) -> FolderRuntime:
        """Connect storage, start workers and (with ``watch``) the monitor.

        Raises:
            FolderNotFound: Unknown folder.
            FolderInactive: The folder is disabled.
            MonitorConflict: Another folder already watches the same path.
            ConfigurationInvalid / ProviderNotFound: Bad provider config.
        """
        self._ensure_consumer()
        lock = self._start_locks.setdefault(folder_id, asyncio.Lock())
        async with lock:
            runtime = self._runtimes.get(folder_id)
            if runtime is not None:
                if watch and runtime.handle is None:
                    await self._start_monitor(runtime)
                return runtime

            folder = await self.store.get_folder(folder_id)
            if not folder.is_active:
                raise FolderInactive(
                    f"Folder {folder_id} ({folder.name}) is inactive", {"folder_id": folder_id}
                )
            runtime = await self._build_runtime(folder)
            self._runtimes[folder_id] = runtime
            try:
                if watch:
                    await self._start_monitor(runtime)
                await self._recover(runtime)
            except Exception:
                del self._runtimes[folder_id]
                await self._teardown(runtime)
                raise
            return runtime

    async def stop_folder(self, folder_id: int) -> bool:
        """Stop discovery and workers; in-flight files finish first.

        Queued records stay ``queued`` and are picked up again on the
        next start. Returns False if the folder was not running.
        """
        runtime = self._runtimes.pop(folder_id, None)
        if runtime is None:
            return False
        await self._teardown(runtime)
        logger.info("Folder %s (%s) stopped", folder_id, runtime.folder.name)
        return True

    async def _build_runtime(self, folder: FolderConfig) -> FolderRuntime:
        owner = f"folder-{folder.id}"
        storage_name = f"{owner}:storage"
        storage = self.factory.create(ProviderKind.STORAGE, folder.storage, name=storage_name)
        try:
            await storage.connect(folder.storage.config)
        except Exception:
            await self.registry.unregister(ProviderKind.STORAGE, storage_name)
            raise

        processing = self.settings.effective_processing(folder.processing)
        runtime = FolderRuntime(
            folder=folder,
            processing=processing,
            storage=storage,
            owner=owner,
            storage_lock=None if storage.concurrent_safe else asyncio.Lock(),
        )
        runtime.workers = [
            asyncio.create_task(self._worker(runtime), name=f"{owner}-worker-{n}")
            for n in range(processing.max_concurrent_files or 1)
        ]
        logger.info(
            "Folder %s (%s) started: storage=%s, workers=%d",
            folder.id, folder.name, folder.storage.type, len(runtime.workers),
        )
        return runtime

    async def _start_monitor(self, runtime: FolderRuntime) -> None:
        folder = runtime.folder
        monitor_name = f"{runtime.owner}:monitor"
        monitor = self.factory.create(ProviderKind.MONITOR, folder.monitor, name=monitor_name)
        try:
            monitor.attach_storage(runtime.storage, folder.storage.config)
            watch_path = monitor.watch_path(folder.monitor.config)
            self.registry.claim_path(watch_path, runtime.owner)
        except Exception:
            await self.registry.unregister(ProviderKind.MONITOR, monitor_name)
            raise
        try:
            sink = functools.partial(self._on_discovered, runtime.folder_id, monitor.provider_type)
            handle = await monitor.start_monitoring(self._monitor_config(folder), sink)
        except Exception:
            self.registry.release_path(watch_path, runtime.owner)
            await self.registry.unregister(ProviderKind.MONITOR, monitor_name)
            raise
        runtime.monitor = monitor
        runtime.handle = handle
        runtime.watch_path = watch_path

    def _monitor_config(self, folder: FolderConfig) -> dict[str, Any]:
        config = dict(folder.monitor.config)
        if folder.monitor.type == MonitorType.POLLING.value:
            config.setdefault("scan_interval", self.settings.default_scan_interval_seconds)
        elif folder.monitor.type == MonitorType.EVENTS.value:
            config.setdefault("debounce_ms", self.settings.default_debounce_ms)
        return config

    async def _teardown(self, runtime: FolderRuntime) -> None:
        runtime.stopping = True
        if runtime.monitor is not None and runtime.handle is not None:
            await runtime.monitor.stop_monitoring(runtime.handle)
            if runtime.watch_path is not None:
                self.registry.release_path(runtime.watch_path, runtime.owner)
            await self.registry.unregister(ProviderKind.MONITOR, f"{runtime.owner}:monitor")
            runtime.handle = None

        for _ in runtime.workers:
            runtime.queue.put_nowait(None)
        await asyncio.gather(*runtime.workers, return_exceptions=True)

        for record_id, (folder_id, task) in list(self._timers.items()):
            if folder_id == runtime.folder_id:
                task.cancel()
                del self._timers[record_id]
        await self.registry.unregister(ProviderKind.STORAGE, f"{runtime.owner}:storage")

    async def _recover(self, runtime: FolderRuntime) -> None:
        """Resume records left unfinished by a previous stop or crash."""
        folder_id = runtime.folder_id
        resumed = 0
        for record in await self.store.list_records(folder_id=folder_id, status=FileStatus.DISCOVERED):
            await self._preflight(runtime.folder, runtime.processing, record, _as_discovered(record))
            resumed += 1
        for record in await self.store.list_records(folder_id=folder_id, status=FileStatus.QUEUED):
            self._enqueue(runtime, record.id)  # type: ignore[arg-type]
            resumed += 1
        for record in await self.store.list_records(folder_id=folder_id, status=FileStatus.RETRYING):
            if record.id not in self._timers:
                self._enqueue(runtime, record.id)  # type: ignore[arg-type]
                resumed += 1
        for record in await self.store.list_records(folder_id=folder_id, status=FileStatus.PROCESSING):
            await self._handle_failure(
                runtime, record, ErrorCode.SYSTEM_ERROR,
                "Processing was interrupted before completion", True, {},
            )
            resumed += 1
        if resumed:
            logger.info("Folder %s: resumed %d unfinished records", folder_id, resumed)

    # === Discovery ===

    def _on_discovered(self, folder_id: int, source: str, files: list[DiscoveredFile]) -> None:
        self._discoveries.put_nowait(DiscoveryEvent(folder_id=folder_id, files=files, source=source))

    async def _consume_discoveries(self) -> None:
        while True:
            event = await self._discoveries.get()
            self._handling += 1
            try:
                await self.handle_discovery(event)
            except Exception:
                logger.exception(
                    "Discovery of %d files in folder %s failed", len(event.files), event.folder_id
                )
            finally:
                self._handling -= 1

    async def scan_now(self, folder_id: int) -> BatchJob | None:
        """List the folder immediately and process anything new.

        Returns the job the new files were attached to, or None when
        nothing new was found.
        """
        runtime = self._runtimes.get(folder_id) or await self.start_folder(folder_id, watch=False)
        if runtime.storage_lock is None:
            files = await runtime.storage.list_files()
        else:
            async with runtime.storage_lock:
                files = await runtime.storage.list_files()
        logger.info("Manual scan of folder %s listed %d files", folder_id, len(files))
        records = await self.handle_discovery(
            DiscoveryEvent(folder_id=folder_id, files=files, source="scan")
        )
        if not records:
            return None
        return await self.store.get_job(records[0].batch_job_id)

    async def push_events(self, folder_id: int, files: list[DiscoveredFile]) -> int:
        """Hand externally pushed files to a folder's cloud-events monitor."""
        runtime = self._runtimes.get(folder_id)
        if runtime is None or runtime.monitor is None or runtime.handle is None:
            raise FolderInactive(
                f"Folder {folder_id} is not being monitored", {"folder_id": folder_id}
            )
        if runtime.monitor.provider_type != MonitorType.CLOUD_EVENTS.value:
            raise ConfigurationInvalid(
                "monitor", runtime.monitor.provider_type,
                ["Folder monitor does not accept pushed events"],
            )
        return runtime.monitor.deliver(runtime.handle, files)  # type: ignore[attr-defined]

    async def handle_discovery(self, event: DiscoveryEvent) -> list[FileProcessingRecord]:
        """Create records for new files, validate them and queue them.

        A file whose folder + path already has a record of the same size
        is ignored, so re-running discovery is idempotent.
        """
        runtime = self._runtimes.get(event.folder_id)
        folder = runtime.folder if runtime else await self.store.get_folder(event.folder_id)
        if not folder.is_active:
            logger.warning("Ignoring discovery for inactive folder %s", folder.id)
            return []
        processing = (
            runtime.processing if runtime else self.settings.effective_processing(folder.processing)
        )
        retry = processing.retry
        max_retries = retry.max_retries if retry is not None and retry.enabled else 0

        lock = self._discovery_locks.setdefault(event.folder_id, asyncio.Lock())
        async with lock:
            new_files = await self._new_files(event.folder_id, event.files)
            if not new_files:
                logger.debug("Discovery (%s) in folder %s: nothing new", event.source, folder.id)
                return []

            job = await self._open_job(folder, len(new_files))
            logger.info(
                "Discovery (%s) in folder %s: %d new files → job %s",
                event.source, folder.id, len(new_files), job.id,
            )
            records: list[FileProcessingRecord] = []
            for file in new_files:
                record = await self.tracker.create_record(job, file, max_retries=max_retries)
                records.append(await self._preflight(folder, processing, record, file))
            return records

    async def _new_files(
        self, folder_id: int, files: list[DiscoveredFile]
    ) -> list[DiscoveredFile]:
        unique = {f.path: f for f in files}
        fresh: list[DiscoveredFile] = []
        for file in unique.values():
            existing = await self.store.find_record(folder_id, file.path)
            if existing is not None and existing.file_size == file.size:
                continue
            fresh.append(file)
        return fresh

    async def _open_job(self, folder: FolderConfig, new_files: int) -> BatchJob:
        """Attach ``new_files`` to the folder's running job, opening one if needed."""
        while True:
            jobs = await self.store.list_jobs(folder_id=folder.id, status=JobStatus.RUNNING)
            job = next((j for j in jobs if not j.cancel_requested), None)
            if job is None:
                job = await self._create_job(folder)
            async with self._job_lock(job.id):  # type: ignore[arg-type]
                job = await self.store.get_job(job.id)  # type: ignore[arg-type]
                if job.is_terminal or job.cancel_requested:
                    continue
                job.total_files += new_files
                return await self.store.update_job(job)

    async def _create_job(self, folder: FolderConfig) -> BatchJob:
        job = await self.store.create_job(
            BatchJob(
                folder_id=folder.id,  # type: ignore[arg-type]
                name=f"{folder.name} {utcnow():%Y-%m-%d %H:%M:%S}",
                status=JobStatus.PENDING,
            )
        )
        self._publish_job(job, None)
        job.status = JobStatus.RUNNING
        job.started_at = utcnow()
        job = await self.store.update_job(job)
        self._publish_job(job, JobStatus.PENDING)
        logger.info("Batch job %s opened for folder %s", job.id, folder.id)
        return job

    async def _preflight(
        self,
        folder: FolderConfig,
        processing: ProcessingConfig,
        record: FileProcessingRecord,
        file: DiscoveredFile,
    ) -> FileProcessingRecord:
        rejection = await check_file(file, processing, self.store, folder.id)  # type: ignore[arg-type]
        if rejection is not None:
            record = await self.tracker.transition(
                record, FileStatus.SKIPPED,
                error_code=rejection.error_code,
                error_message=rejection.message,
                error_details={"file_size": file.size, "file_name": file.name},
            )
            self._notify_file(NotificationCondition.FILE_SKIPPED, record, folder.name)
            await self._settle(record.batch_job_id, "skipped_files")
            return record

        record = await self.tracker.transition(record, FileStatus.QUEUED)
        runtime = self._runtimes.get(folder.id)  # type: ignore[arg-type]
        if runtime is not None and not runtime.stopping:
            self._enqueue(runtime, record.id)  # type: ignore[arg-type]
        return record

    # === Processing ===

    def _enqueue(self, runtime: FolderRuntime, record_id: int) -> None:
        runtime.pending += 1
        runtime.queue.put_nowait(record_id)

    async def _worker(self, runtime: FolderRuntime) -> None:
        set_job_context(runtime.folder_id)
        while True:
            record_id = await runtime.queue.get()
            if record_id is None:
                break
            if runtime.stopping:
                runtime.pending -= 1
                break
            try:
                await self._process(runtime, record_id)
            except Exception:
                logger.exception("Unexpected error while processing record %s", record_id)
            finally:
                runtime.pending -= 1
                set_record_context(None)

    async def _process(self, runtime: FolderRuntime, record_id: int) -> None:
        record = await self.store.get_record(record_id)
        if record.status not in (FileStatus.QUEUED, FileStatus.RETRYING):
            logger.debug("Record %s is %s; nothing to process", record_id, record.status.value)
            return
        job = await self.store.get_job(record.batch_job_id)
        set_record_context(record.id, job.id)
        if job.cancel_requested:
            await self._cancel_record(record)
            return

        try:
            record = await self.tracker.transition(record, FileStatus.PROCESSING)
        except InvalidTransition:
            logger.debug("Record %s was claimed elsewhere", record_id)
            return

        runtime.in_flight += 1
        local_path = self._staging_path(record)
        try:
            await self._download(runtime, record, local_path)
            outcome = await self._analyze(local_path, self._metadata(runtime.folder, record))
        except Exception as e:
            code, retryable = classify_exception(e)
            details: dict[str, Any] = {"exception": type(e).__name__}
            if isinstance(e, CallBatchError):
                details.update(e.details)
            else:
                logger.exception("Unexpected error on %s", record.file_name)
            await self._handle_failure(runtime, record, code, str(e), retryable, details)
        else:
            record = await self.tracker.transition(
                record, FileStatus.COMPLETED, analysis_ref=outcome.analysis_ref
            )
            self._notify_file(NotificationCondition.FILE_PROCESSED, record, runtime.folder.name)
            await self._settle(record.batch_job_id, "processed_files")
        finally:
            runtime.in_flight -= 1
            Path(local_path).unlink(missing_ok=True)

    def _staging_path(self, record: FileProcessingRecord) -> str:
        base = Path(self.settings.download_dir).expanduser() / f"folder-{record.folder_id}"
        return str(base / f"{record.id}-{record.file_name}")

    def _metadata(self, folder: FolderConfig, record: FileProcessingRecord) -> dict[str, Any]:
        return {
            "record_id": record.id,
            "job_id": record.batch_job_id,
            "folder_id": folder.id,
            "folder_name": folder.name,
            "file_name": record.file_name,
            "file_size": record.file_size,
            "source_path": record.file_path,
        }

    async def _download(
        self, runtime: FolderRuntime, record: FileProcessingRecord, local_path: str
    ) -> None:
        if runtime.storage_lock is None:
            await runtime.storage.download_file(record.file_path, local_path)
            return
        async with runtime.storage_lock:
            await runtime.storage.download_file(record.file_path, local_path)

    async def _analyze(self, local_path: str, metadata: dict[str, Any]) -> Any:
        if self._analyzer_lock is None:
            return await self.analyzer.analyze(local_path, metadata)
        async with self._analyzer_lock:
            return await self.analyzer.analyze(local_path, metadata)

    async def _handle_failure(
        self,
        runtime: FolderRuntime,
        record: FileProcessingRecord,
        code: ErrorCode,
        message: str,
        retryable: bool,
        details: dict[str, Any],
    ) -> None:
        """Fail a processing record, then retry it or settle it."""
        policy = runtime.processing.retry
        job = await self.store.get_job(record.batch_job_id)
        budget_left = record.retry_count < record.max_retries
        will_retry = (
            retryable
            and policy is not None
            and policy.enabled
            and budget_left
            and not job.cancel_requested
        )

        final_code, final_message = code, message
        if retryable and not will_retry and record.max_retries > 0 and not budget_left:
            final_code = ErrorCode.MAX_RETRIES_EXCEEDED
            final_message = f"Failed after {record.retry_count} retries: {message}"
            details = {**details, "last_error_code": code.value}

        record = await self.tracker.transition(
            record, FileStatus.FAILED,
            error_code=final_code, error_message=final_message, error_details=details,
        )

        if will_retry:
            delay = file_retry_delay(policy, record.retry_count)  # type: ignore[arg-type]
            record = await self.tracker.transition(
                record, FileStatus.RETRYING, retry_count=record.retry_count + 1
            )
            logger.warning(
                "Record %s (%s) retry %d/%d in %.1fs after [%s] %s",
                record.id, record.file_name, record.retry_count, record.max_retries,
                delay, code.value, message,
            )
            self._schedule_retry(runtime.folder_id, record.id, delay)  # type: ignore[arg-type]
            return

        logger.error(
            "Record %s (%s) failed: [%s] %s",
            record.id, record.file_name, final_code.value, final_message,
        )
        self._notify_file(NotificationCondition.FILE_FAILED, record, runtime.folder.name)
        await self._settle(record.batch_job_id, "failed_files")

    def _schedule_retry(self, folder_id: int, record_id: int, delay: float) -> None:
        task = asyncio.create_task(
            self._requeue_after(folder_id, record_id, delay), name=f"retry-{record_id}"
        )
        self._timers[record_id] = (folder_id, task)

    async def _requeue_after(self, folder_id: int, record_id: int, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timers.pop(record_id, None)
        runtime = self._runtimes.get(folder_id)
        if runtime is None or runtime.stopping:
            logger.info("Folder %s is stopped; record %s stays in retrying", folder_id, record_id)
            return
        self._enqueue(runtime, record_id)

    # === Manual operations ===

    async def retry_record(
        self, record_id: int, reset_retry_count: bool = False
    ) -> FileProcessingRecord:
        """Re-queue a ``failed`` record, reopening its job if it had finished.

        Raises:
            RecordNotFound: Unknown record.
            RetryNotAllowed: The record is not failed or its job was cancelled.
            FolderInactive: The record's folder is disabled.
        """
        record = await self.store.get_record(record_id)
        if record.status != FileStatus.FAILED:
            raise RetryNotAllowed(
                f"Record {record_id} is {record.status.value}; only failed records can be retried",
                {"record_id": record_id, "status": record.status.value},
            )
        job = await self.store.get_job(record.batch_job_id)
        if job.status == JobStatus.CANCELLED or job.cancel_requested:
            raise RetryNotAllowed(
                f"Batch job {job.id} was cancelled", {"record_id": record_id, "job_id": job.id}
            )

        runtime = self._runtimes.get(record.folder_id) or await self.start_folder(
            record.folder_id, watch=False
        )

        async with self._job_lock(record.batch_job_id):
            retry_count = 0 if reset_retry_count else record.retry_count + 1
            record = await self.tracker.transition(
                record, FileStatus.RETRYING, retry_count=retry_count
            )
            job = await self.store.get_job(record.batch_job_id)
            previous = job.status
            job.failed_files = max(job.failed_files - 1, 0)
            if job.is_terminal:
                job.status = JobStatus.RUNNING
                job.completed_at = None
                job.error_message = None
            job = await self.store.update_job(job)
        if previous != job.status:
            logger.info("Batch job %s reopened by manual retry of record %s", job.id, record_id)
        self._publish_job(job, previous)

        self._enqueue(runtime, record.id)  # type: ignore[arg-type]
        logger.info(
            "Record %s queued for manual retry (retry_count=%d, reset=%s)",
            record_id, record.retry_count, reset_retry_count,
        )
        return record

    async def retry_job(
        self, job_id: int, reset_retry_count: bool = False
    ) -> list[FileProcessingRecord]:
        """Retry every failed record of a job."""
        job = await self.store.get_job(job_id)
        if job.status == JobStatus.CANCELLED or job.cancel_requested:
            raise RetryNotAllowed(f"Batch job {job_id} was cancelled", {"job_id": job_id})
        failed = await self.store.list_records(job_id=job_id, status=FileStatus.FAILED)
        return [
            await self.retry_record(r.id, reset_retry_count=reset_retry_count)  # type: ignore[arg-type]
            for r in failed
        ]

    async def cancel_job(self, job_id: int) -> BatchJob:
        """Stop dequeuing a job's files; in-flight files finish normally.

        Queued files become ``skipped`` and waiting retries ``failed``,
        both with JOB_CANCELLED. The job turns ``cancelled`` once nothing
        is in flight.

        Raises:
            JobNotCancellable: The job already finished.
        """
        async with self._job_lock(job_id):
            job = await self.store.get_job(job_id)
            if job.is_terminal:
                raise JobNotCancellable(
                    f"Batch job {job_id} is already {job.status.value}",
                    {"job_id": job_id, "status": job.status.value},
                )
            if not job.cancel_requested:
                job.cancel_requested = True
                job = await self.store.update_job(job)
                logger.info("Batch job %s cancellation requested", job_id)

        for record in await self.store.list_records(job_id=job_id):
            if record.status in (FileStatus.QUEUED, FileStatus.RETRYING):
                await self._cancel_record(record)
        await self._settle(job_id)
        return await self.store.get_job(job_id)

    async def _cancel_record(self, record: FileProcessingRecord) -> None:
        target = FileStatus.SKIPPED if record.status == FileStatus.QUEUED else FileStatus.FAILED
        try:
            record = await self.tracker.transition(
                record, target,
                error_code=ErrorCode.JOB_CANCELLED,
                error_message="Batch job was cancelled",
            )
        except InvalidTransition:
            return
        timer = self._timers.pop(record.id, None)  # type: ignore[arg-type]
        if timer is not None:
            timer[1].cancel()
        counter = "skipped_files" if target == FileStatus.SKIPPED else "failed_files"
        await self._settle(record.batch_job_id, counter)

    # === Job counters ===

    def _job_lock(self, job_id: int) -> asyncio.Lock:
        return self._job_locks.setdefault(job_id, asyncio.Lock())

    async def _settle(self, job_id: int, counter: str | None = None) -> BatchJob:
        """Count one terminal record and close the job when all are settled."""
        async with self._job_lock(job_id):
            job = await self.store.get_job(job_id)
            previous = job.status
            if counter is not None:
                setattr(job, counter, getattr(job, counter) + 1)
            if not job.is_terminal and job.settled_files >= job.total_files:
                _close_job(job)
            if counter is None and job.status == previous:
                return job
            job = await self.store.update_job(job)

        self._publish_job(job, previous)
        if job.status != previous:
            logger.info(
                "Batch job %s %s: %d processed, %d failed, %d skipped of %d",
                job.id, job.status.value, job.processed_files, job.failed_files,
                job.skipped_files, job.total_files,
            )
            self._job_locks.pop(job_id, None)
            if job.status == JobStatus.COMPLETED:
                await self._notify_job(NotificationCondition.BATCH_COMPLETED, job)
            elif job.status == JobStatus.FAILED:
                await self._notify_job(NotificationCondition.BATCH_FAILED, job)
        return job

    # === Status / notifications ===

    def _publish_job(self, job: BatchJob, previous: JobStatus | None) -> None:
        self.channel.publish(
            StatusUpdate(
                kind="job",
                folder_id=job.folder_id,
                job_id=job.id,
                status=job.status.value,
                previous_status=previous.value if previous else None,
            )
        )

    def _notify_file(
        self, condition: NotificationCondition, record: FileProcessingRecord, folder_name: str
    ) -> None:
        self.dispatcher.notify(condition, file_notification(condition, record, folder_name))

    async def _notify_job(self, condition: NotificationCondition, job: BatchJob) -> None:
        # The runtime may already be gone when a folder stops mid-job.
        folder = await self.store.get_folder(job.folder_id)
        self.dispatcher.notify(condition, job_notification(condition, job, folder.name))

    def status(self) -> dict[str, Any]:
        """Snapshot of running folders, queues and background work."""
        return {
            "folders": [
                {
                    "folder_id": r.folder_id,
                    "name": r.folder.name,
                    "storage_type": r.folder.storage.type,
                    "monitor_type": r.folder.monitor.type,
                    "watching": r.handle is not None,
                    "queued": r.pending - r.in_flight,
                    "in_flight": r.in_flight,
                    "workers": len(r.workers),
                }
                for r in self._runtimes.values()
            ],
            "pending_discoveries": self._discoveries.qsize(),
            "pending_retries": len(self._timers),
            "pending_notifications": self.dispatcher.pending,
            "subscribers": self.channel.subscriber_count,
        }

    def is_idle(self) -> bool:
        return (
            self._discoveries.empty()
            and self._handling == 0
            and not self._timers
            and all(r.pending == 0 for r in self._runtimes.values())
        )

    async def wait_idle(self, poll_s: float = 0.01) -> None:
        """Wait until discovery, processing, retries and notifications settle."""
        while not self.is_idle():
            await asyncio.sleep(poll_s)
        await self.dispatcher.drain()


def _close_job(job: BatchJob) -> None:
    if job.cancel_requested:
        job.status = JobStatus.CANCELLED
    elif job.total_files > 0 and job.failed_files == job.total_files:
        job.status = JobStatus.FAILED
        job.error_message = "Every file in the job failed"
    else:
        job.status = JobStatus.COMPLETED
    job.completed_at = utcnow()


def _as_discovered(record: FileProcessingRecord) -> DiscoveredFile:
    return DiscoveredFile(
        name=record.file_name,
        path=record.file_path,
        size=record.file_size,
        modified_at=record.modified_at,
    )
