# tests/unit/batch/test_unit_service.py — v1
"""Tests for the batch processing orchestrator.

Runs against the in-memory store, local storage in tmp directories and
the scripted analyzer. Monitors are only started where a test needs
one; discovery is otherwise driven through ``scan_now``.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from callbatch.batch.container import build_container
from callbatch.core.errors import (
    AnalysisError,
    FolderInactive,
    FolderNotFound,
    JobNotCancellable,
    MonitorConflict,
    NetworkError,
    RetryNotAllowed,
)
from callbatch.core.models import (
    MIB,
    BatchJob,
    DiscoveredFile,
    DiscoveryEvent,
    ErrorCode,
    FileStatus,
    JobStatus,
    RetryPolicy,
)
from tests.conftest import make_folder, write_audio


@pytest.fixture
async def container(settings, store, analyzer):
    container = build_container(settings, store=store, analyzer=analyzer)
    yield container
    await container.service.shutdown()


@pytest.fixture
def service(container):
    return container.service


async def _scan(service, folder_id: int) -> BatchJob | None:
    job = await service.scan_now(folder_id)
    await service.wait_idle()
    return job


class TestScanNow:
    async def test_processes_new_files(self, service, store, analyzer, inbox):
        first = write_audio(inbox)
        second = write_audio(inbox)
        folder = await store.create_folder(make_folder(inbox))

        job = await _scan(service, folder.id)

        assert job is not None
        assert job.total_files == 2
        job = await store.get_job(job.id)
        assert job.status == JobStatus.COMPLETED
        assert job.processed_files == 2
        assert job.completed_at is not None
        records = await store.list_records(job_id=job.id)
        assert {r.status for r in records} == {FileStatus.COMPLETED}
        assert {r.analysis_ref for r in records} == {f"ref-{first.name}", f"ref-{second.name}"}
        assert sorted(analyzer.calls) == sorted([first.name, second.name])

    async def test_empty_folder_returns_none(self, service, store, inbox):
        folder = await store.create_folder(make_folder(inbox))
        assert await _scan(service, folder.id) is None

    async def test_rescan_is_idempotent(self, service, store, analyzer, inbox):
        write_audio(inbox)
        folder = await store.create_folder(make_folder(inbox))
        await _scan(service, folder.id)

        assert await _scan(service, folder.id) is None
        assert len(analyzer.calls) == 1
        assert await store.count_records(folder_id=folder.id) == 1

    async def test_staging_copy_removed(self, service, store, settings, inbox):
        write_audio(inbox)
        folder = await store.create_folder(make_folder(inbox))
        await _scan(service, folder.id)

        staging = Path(settings.download_dir) / f"folder-{folder.id}"
        assert not staging.exists() or list(staging.iterdir()) == []

    async def test_unknown_folder(self, service):
        with pytest.raises(FolderNotFound):
            await service.scan_now(999)


class TestPreflight:
    async def test_invalid_extension_skipped(self, service, store, analyzer, inbox):
        write_audio(inbox, suffix=".txt")
        folder = await store.create_folder(make_folder(inbox))

        job = await _scan(service, folder.id)

        [record] = await store.list_records(job_id=job.id)
        assert record.status == FileStatus.SKIPPED
        assert record.error_code == ErrorCode.INVALID_FORMAT
        assert analyzer.calls == []
        job = await store.get_job(job.id)
        assert job.status == JobStatus.COMPLETED
        assert job.skipped_files == 1

    async def test_non_uuid_name_skipped(self, service, store, inbox):
        write_audio(inbox, name="monday-call.mp3")
        folder = await store.create_folder(make_folder(inbox))

        job = await _scan(service, folder.id)

        [record] = await store.list_records(job_id=job.id)
        assert record.error_code == ErrorCode.INVALID_FILENAME

    async def test_uuid_check_can_be_disabled(self, service, store, inbox):
        write_audio(inbox, name="monday-call.mp3")
        folder = await store.create_folder(make_folder(inbox, require_uuid_filename=False))

        job = await _scan(service, folder.id)

        [record] = await store.list_records(job_id=job.id)
        assert record.status == FileStatus.COMPLETED

    async def test_too_large_skipped(self, service, store, inbox):
        write_audio(inbox, size=MIB + 1)
        folder = await store.create_folder(make_folder(inbox, max_file_size=MIB))

        job = await _scan(service, folder.id)

        [record] = await store.list_records(job_id=job.id)
        assert record.error_code == ErrorCode.FILE_TOO_LARGE
        assert record.error_details["file_size"] == MIB + 1

    async def test_changed_file_with_completed_name_is_duplicate(self, service, store, inbox):
        path = write_audio(inbox, size=1024)
        folder = await store.create_folder(make_folder(inbox))
        await _scan(service, folder.id)

        path.write_bytes(b"\0" * 4096)
        job = await _scan(service, folder.id)

        assert job is not None
        records = await store.list_records(job_id=job.id)
        assert [r.error_code for r in records] == [ErrorCode.DUPLICATE_FILE]


class TestAutomaticRetry:
    async def test_transient_errors_then_success(self, service, store, analyzer, inbox):
        path = write_audio(inbox)
        analyzer.failures[path.name] = [NetworkError("timeout"), NetworkError("timeout")]
        folder = await store.create_folder(make_folder(inbox))

        job = await _scan(service, folder.id)

        [record] = await store.list_records(job_id=job.id)
        assert record.status == FileStatus.COMPLETED
        assert record.retry_count == 2
        assert record.error_code is None
        assert analyzer.calls == [path.name] * 3

    async def test_permanent_error_not_retried(self, service, store, analyzer, inbox):
        path = write_audio(inbox)
        analyzer.failures[path.name] = [AnalysisError("unreadable audio", permanent=True)]
        folder = await store.create_folder(make_folder(inbox))

        job = await _scan(service, folder.id)

        [record] = await store.list_records(job_id=job.id)
        assert record.status == FileStatus.FAILED
        assert record.error_code == ErrorCode.CORRUPTED_FILE
        assert record.retry_count == 0
        job = await store.get_job(job.id)
        assert job.status == JobStatus.FAILED
        assert job.failed_files == 1

    async def test_budget_exhausted(self, service, store, analyzer, inbox):
        path = write_audio(inbox)
        analyzer.failures[path.name] = [NetworkError("timeout")] * 3
        retry = RetryPolicy(max_retries=1, delay_seconds=0, exponential_backoff=False)
        folder = await store.create_folder(make_folder(inbox, retry=retry))

        job = await _scan(service, folder.id)

        [record] = await store.list_records(job_id=job.id)
        assert record.status == FileStatus.FAILED
        assert record.error_code == ErrorCode.MAX_RETRIES_EXCEEDED
        assert record.error_details["last_error_code"] == ErrorCode.NETWORK_ERROR.value
        assert record.retry_count == 1

    async def test_retry_disabled(self, service, store, analyzer, inbox):
        path = write_audio(inbox)
        analyzer.failures[path.name] = [NetworkError("timeout")]
        folder = await store.create_folder(
            make_folder(inbox, retry=RetryPolicy(enabled=False, delay_seconds=0))
        )

        job = await _scan(service, folder.id)

        [record] = await store.list_records(job_id=job.id)
        assert record.status == FileStatus.FAILED
        assert record.error_code == ErrorCode.NETWORK_ERROR

    async def test_mixed_outcome_completes_job(self, service, store, analyzer, inbox):
        bad = write_audio(inbox)
        write_audio(inbox)
        analyzer.failures[bad.name] = [AnalysisError("unreadable audio", permanent=True)]
        folder = await store.create_folder(make_folder(inbox))

        job = await _scan(service, folder.id)

        job = await store.get_job(job.id)
        assert job.status == JobStatus.COMPLETED
        assert (job.processed_files, job.failed_files) == (1, 1)


class TestManualRetry:
    async def _failed(self, service, store, analyzer, inbox):
        path = write_audio(inbox)
        analyzer.failures[path.name] = [AnalysisError("unreadable audio", permanent=True)]
        folder = await store.create_folder(make_folder(inbox))
        job = await _scan(service, folder.id)
        [record] = await store.list_records(job_id=job.id)
        return job, record

    async def test_retry_reopens_job(self, service, store, analyzer, inbox):
        job, record = await self._failed(service, store, analyzer, inbox)

        queued = await service.retry_record(record.id)
        assert queued.status == FileStatus.RETRYING
        assert queued.retry_count == 1
        await service.wait_idle()

        record = await store.get_record(record.id)
        assert record.status == FileStatus.COMPLETED
        job = await store.get_job(job.id)
        assert job.status == JobStatus.COMPLETED
        assert (job.processed_files, job.failed_files) == (1, 0)

    async def test_reset_retry_count(self, service, store, analyzer, inbox):
        _, record = await self._failed(service, store, analyzer, inbox)

        queued = await service.retry_record(record.id, reset_retry_count=True)

        assert queued.retry_count == 0
        await service.wait_idle()

    async def test_only_failed_records(self, service, store, inbox):
        write_audio(inbox)
        folder = await store.create_folder(make_folder(inbox))
        job = await _scan(service, folder.id)
        [record] = await store.list_records(job_id=job.id)

        with pytest.raises(RetryNotAllowed):
            await service.retry_record(record.id)

    async def test_retry_job(self, service, store, analyzer, inbox):
        for _ in range(2):
            path = write_audio(inbox)
            analyzer.failures[path.name] = [AnalysisError("unreadable audio", permanent=True)]
        folder = await store.create_folder(make_folder(inbox))
        job = await _scan(service, folder.id)

        retried = await service.retry_job(job.id)
        await service.wait_idle()

        assert len(retried) == 2
        job = await store.get_job(job.id)
        assert job.status == JobStatus.COMPLETED
        assert job.processed_files == 2

    async def test_cancelled_job_not_retried(self, service, store, job, record_factory):
        record = await record_factory(job, status=FileStatus.FAILED)
        job.status = JobStatus.CANCELLED
        job.cancel_requested = True
        await store.update_job(job)

        with pytest.raises(RetryNotAllowed):
            await service.retry_record(record.id)


class TestCancel:
    async def test_queued_and_retrying_files_cancelled(self, service, store, job, record_factory):
        job.status = JobStatus.RUNNING
        job.total_files = 2
        await store.update_job(job)
        queued = await record_factory(job, status=FileStatus.QUEUED)
        retrying = await record_factory(job, status=FileStatus.RETRYING, retry_count=1)

        job = await service.cancel_job(job.id)

        assert job.status == JobStatus.CANCELLED
        assert job.cancel_requested
        assert (job.skipped_files, job.failed_files) == (1, 1)
        queued = await store.get_record(queued.id)
        retrying = await store.get_record(retrying.id)
        assert queued.status == FileStatus.SKIPPED
        assert retrying.status == FileStatus.FAILED
        assert queued.error_code == retrying.error_code == ErrorCode.JOB_CANCELLED

    async def test_finished_job_not_cancellable(self, service, store, inbox):
        write_audio(inbox)
        folder = await store.create_folder(make_folder(inbox))
        job = await _scan(service, folder.id)

        with pytest.raises(JobNotCancellable):
            await service.cancel_job(job.id)


class TestFolderLifecycle:
    async def test_inactive_folder_cannot_start(self, service, store, inbox):
        folder = make_folder(inbox)
        folder.is_active = False
        folder = await store.create_folder(folder)

        with pytest.raises(FolderInactive):
            await service.start_folder(folder.id)

    async def test_same_path_conflicts(self, service, store, inbox):
        first = await store.create_folder(make_folder(inbox, name="A"))
        second = await store.create_folder(make_folder(inbox, name="B"))
        await service.start_folder(first.id)

        with pytest.raises(MonitorConflict):
            await service.start_folder(second.id)
        assert service.running_folders == [first.id]

    async def test_shared_monitor_path_conflicts(self, service, store, tmp_path):
        (tmp_path / "other").mkdir()
        shared = tmp_path / "shared"
        shared.mkdir()
        first = make_folder(tmp_path / "other", name="A", monitor="events")
        first.monitor.config["path"] = str(shared)
        first = await store.create_folder(first)
        second = await store.create_folder(make_folder(shared, name="B", monitor="events"))
        await service.start_folder(first.id)

        with pytest.raises(MonitorConflict):
            await service.start_folder(second.id)
        assert service.running_folders == [first.id]
        assert service.registry.path_owner(str(shared.resolve())) == f"folder-{first.id}"

    async def test_polling_claims_storage_path(self, service, store, tmp_path):
        (tmp_path / "a").mkdir()
        folder = make_folder(tmp_path / "a")
        folder.monitor.config["path"] = str(tmp_path / "unused")
        folder = await store.create_folder(folder)

        await service.start_folder(folder.id)

        assert service.registry.path_owner(str((tmp_path / "a").resolve())) == f"folder-{folder.id}"

    async def test_stop_folder(self, service, store, inbox):
        folder = await store.create_folder(make_folder(inbox))
        await service.start_folder(folder.id)

        assert await service.stop_folder(folder.id) is True
        assert await service.stop_folder(folder.id) is False
        assert service.running_folders == []

    async def test_stop_lets_in_flight_file_finish(self, service, store, analyzer, inbox):
        analyzer.delay_s = 0.2
        write_audio(inbox)
        folder = await store.create_folder(make_folder(inbox))
        job = await service.scan_now(folder.id)
        for _ in range(200):
            if analyzer.active:
                break
            await asyncio.sleep(0.01)
        assert analyzer.active == 1

        assert await service.stop_folder(folder.id) is True

        [record] = await store.list_records(job_id=job.id)
        assert record.status == FileStatus.COMPLETED
        assert [c.to_status for c in record.history][-2:] == [
            FileStatus.PROCESSING, FileStatus.COMPLETED,
        ]
        assert (await store.get_job(job.id)).status == JobStatus.COMPLETED

    async def test_start_respects_auto_start(self, service, store, tmp_path):
        (tmp_path / "a").mkdir()
        (tmp_path / "b").mkdir()
        auto = await store.create_folder(make_folder(tmp_path / "a", name="A"))
        await store.create_folder(make_folder(tmp_path / "b", name="B", auto_start=False))

        await service.start()

        assert service.running_folders == [auto.id]

    async def test_start_survives_broken_folder(self, service, store, tmp_path):
        (tmp_path / "ok").mkdir()
        await store.create_folder(make_folder(tmp_path / "missing", name="Broken"))
        ok = await store.create_folder(make_folder(tmp_path / "ok", name="OK"))

        await service.start()

        assert service.running_folders == [ok.id]

    async def test_queued_records_resumed_on_start(self, service, store, inbox, record_factory):
        folder = await store.create_folder(make_folder(inbox))
        job = await store.create_job(
            BatchJob(folder_id=folder.id, name="job", status=JobStatus.RUNNING, total_files=1)
        )
        path = write_audio(inbox)
        record = await record_factory(
            job, status=FileStatus.QUEUED, file_name=path.name, file_path=str(path),
        )

        await service.start_folder(folder.id, watch=False)
        await service.wait_idle()

        assert (await store.get_record(record.id)).status == FileStatus.COMPLETED
        assert (await store.get_job(job.id)).status == JobStatus.COMPLETED

    async def test_discovery_for_inactive_folder_ignored(self, service, store, inbox):
        folder = make_folder(inbox)
        folder.is_active = False
        folder = await store.create_folder(folder)
        event = DiscoveryEvent(
            folder_id=folder.id,
            files=[DiscoveredFile(name="x.mp3", path=str(inbox / "x.mp3"), size=10)],
            source="scan",
        )

        assert await service.handle_discovery(event) == []

    async def test_status_snapshot(self, service, store, inbox):
        folder = await store.create_folder(make_folder(inbox, max_concurrent_files=2))
        await service.start_folder(folder.id)

        status = service.status()

        [entry] = status["folders"]
        assert entry["folder_id"] == folder.id
        assert entry["watching"] is True
        assert entry["workers"] == 2
        assert status["pending_retries"] == 0
