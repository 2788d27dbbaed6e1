# tests/integration/batch/test_int_batch_subsystem.py — v1
"""Integration tests for the batch processing subsystem.

Covers: batch/service.py, batch/dispatcher.py, batch/configuration.py,
providers (local storage, polling / events / cloud-events monitors),
tracking (SQLite store, tracker, state machine).
No Docker required — uses the filesystem and a temp SQLite database.
"""

from __future__ import annotations

from collections import Counter

import pytest

from callbatch.core.errors import AnalysisError, NetworkError
from callbatch.core.models import (
    MIB,
    DiscoveredFile,
    ErrorCode,
    FileStatus,
    JobStatus,
    NotificationCondition,
)
from callbatch.tracking.state_machine import is_valid_path
from tests.conftest import make_folder, make_recording_notifier, write_audio
from tests.integration.conftest import wait_until

pytestmark = [pytest.mark.integration]


def _file_notification_body(*conditions: NotificationCondition) -> dict:
    return {
        "name": "Ops hook",
        "type": "webhook",
        "config": {"url": "https://hooks.example.com/calls"},
        "conditions": [c.value for c in conditions],
    }


async def _assert_consistent(store, job_id: int) -> None:
    """Job counters match the records and every history is a legal path."""
    job = await store.get_job(job_id)
    records = await store.list_records(job_id=job_id)
    by_status = Counter(r.status for r in records)
    assert job.total_files == len(records)
    assert job.processed_files == by_status[FileStatus.COMPLETED]
    assert job.failed_files == by_status[FileStatus.FAILED]
    assert job.skipped_files == by_status[FileStatus.SKIPPED]
    assert job.processed_files + job.failed_files + job.skipped_files == job.total_files
    for record in records:
        assert is_valid_path([c.to_status for c in record.history]), record.history


# =====================================================================
#  PRE-FLIGHT
# =====================================================================

class TestPreflight:

    @pytest.mark.asyncio
    async def test_oversized_file_skipped_without_download(
        self, orchestrator, analyzer, inbox, settings
    ):
        big = inbox / "8a4c2f9e-35c1-4d7a-9a57-6f1d3c2b1e00.mp3"
        with big.open("wb") as f:
            f.truncate(600 * MIB)
        container = orchestrator()
        folder = await container.store.create_folder(make_folder(inbox))

        job = await container.service.scan_now(folder.id)
        await container.service.wait_idle()

        [record] = await container.store.list_records(job_id=job.id)
        assert record.status == FileStatus.SKIPPED
        assert record.error_code == ErrorCode.FILE_TOO_LARGE
        assert "exceeds limit of 500.0MB" in record.error_message
        assert analyzer.calls == []
        assert not (settings.download_dir / f"folder-{folder.id}").exists()
        job = await container.store.get_job(job.id)
        assert job.status == JobStatus.COMPLETED
        await _assert_consistent(container.store, job.id)

    @pytest.mark.asyncio
    async def test_rescan_is_idempotent(self, orchestrator, analyzer, inbox):
        for _ in range(3):
            write_audio(inbox)
        container = orchestrator()
        folder = await container.store.create_folder(make_folder(inbox))

        first = await container.service.scan_now(folder.id)
        await container.service.wait_idle()
        second = await container.service.scan_now(folder.id)
        await container.service.wait_idle()

        assert first is not None
        assert second is None
        assert len(analyzer.calls) == 3
        assert await container.store.count_records(folder_id=folder.id) == 3


# =====================================================================
#  PROCESSING
# =====================================================================

class TestProcessing:

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, orchestrator, analyzer, inbox):
        analyzer.delay_s = 0.05
        for _ in range(10):
            write_audio(inbox)
        container = orchestrator()
        folder = await container.store.create_folder(make_folder(inbox, max_concurrent_files=3))

        job = await container.service.scan_now(folder.id)
        await container.service.wait_idle()

        assert 1 <= analyzer.peak_active <= 3
        job = await container.store.get_job(job.id)
        assert job.status == JobStatus.COMPLETED
        assert job.processed_files == 10
        await _assert_consistent(container.store, job.id)

    @pytest.mark.asyncio
    async def test_transient_failures_then_success(self, orchestrator, analyzer, inbox):
        path = write_audio(inbox)
        analyzer.failures[path.name] = [NetworkError("connection reset")] * 2
        container = orchestrator()
        folder = await container.store.create_folder(make_folder(inbox))

        job = await container.service.scan_now(folder.id)
        await container.service.wait_idle()

        [record] = await container.store.list_records(job_id=job.id)
        assert record.status == FileStatus.COMPLETED
        assert record.retry_count == 2
        statuses = [c.to_status for c in record.history]
        assert statuses.count(FileStatus.RETRYING) == 2
        assert statuses[-1] == FileStatus.COMPLETED
        await _assert_consistent(container.store, job.id)

    @pytest.mark.asyncio
    async def test_mixed_batch_counters(self, orchestrator, analyzer, inbox):
        good = [write_audio(inbox) for _ in range(3)]
        bad = write_audio(inbox)
        write_audio(inbox, suffix=".pdf")
        analyzer.failures[bad.name] = [AnalysisError("unreadable audio", permanent=True)]
        analyzer.failures[good[0].name] = [NetworkError("timeout")]
        container = orchestrator()
        folder = await container.store.create_folder(make_folder(inbox))

        job = await container.service.scan_now(folder.id)
        await container.service.wait_idle()

        job = await container.store.get_job(job.id)
        assert job.status == JobStatus.COMPLETED
        assert (job.processed_files, job.failed_files, job.skipped_files) == (3, 1, 1)
        await _assert_consistent(container.store, job.id)

    @pytest.mark.asyncio
    async def test_cancel_mid_run(self, orchestrator, analyzer, inbox):
        analyzer.delay_s = 0.1
        for _ in range(6):
            write_audio(inbox)
        container = orchestrator()
        folder = await container.store.create_folder(make_folder(inbox, max_concurrent_files=1))

        job = await container.service.scan_now(folder.id)
        await wait_until(lambda: _any_processing(container.store, job.id))
        await container.service.cancel_job(job.id)
        await container.service.wait_idle()

        job = await container.store.get_job(job.id)
        assert job.status == JobStatus.CANCELLED
        assert job.skipped_files >= 1
        records = await container.store.list_records(job_id=job.id)
        cancelled = [r for r in records if r.error_code == ErrorCode.JOB_CANCELLED]
        assert cancelled and all(r.status == FileStatus.SKIPPED for r in cancelled)
        await _assert_consistent(container.store, job.id)


async def _any_processing(store, job_id: int) -> bool:
    records = await store.list_records(job_id=job_id, status=FileStatus.PROCESSING)
    return bool(records)


# =====================================================================
#  NOTIFICATIONS
# =====================================================================

class TestNotifications:

    @pytest.mark.asyncio
    async def test_file_failed_delivered_once(self, orchestrator, analyzer, inbox):
        notifier = make_recording_notifier()
        path = write_audio(inbox)
        write_audio(inbox)
        analyzer.failures[path.name] = [AnalysisError("unreadable audio", permanent=True)]
        container = orchestrator(notifier=notifier)
        await container.configuration.create_notification(
            _file_notification_body(NotificationCondition.FILE_FAILED)
        )
        folder = await container.store.create_folder(make_folder(inbox))

        await container.service.scan_now(folder.id)
        await container.service.wait_idle()

        [sent] = notifier.sent
        assert sent.condition == NotificationCondition.FILE_FAILED
        assert sent.data["error_code"] == ErrorCode.CORRUPTED_FILE.value
        assert sent.data["file_name"] == path.name

    @pytest.mark.asyncio
    async def test_batch_completed_once_per_job(self, orchestrator, inbox):
        notifier = make_recording_notifier()
        for _ in range(4):
            write_audio(inbox)
        container = orchestrator(notifier=notifier)
        await container.configuration.create_notification(
            _file_notification_body(NotificationCondition.BATCH_COMPLETED)
        )
        folder = await container.store.create_folder(make_folder(inbox))

        job = await container.service.scan_now(folder.id)
        await container.service.wait_idle()

        [sent] = notifier.sent
        assert sent.data["job_id"] == job.id
        assert sent.data["processed_files"] == 4

    @pytest.mark.asyncio
    async def test_job_notification_after_stop_names_folder(self, orchestrator, analyzer, inbox):
        notifier = make_recording_notifier()
        analyzer.delay_s = 0.2
        write_audio(inbox)
        container = orchestrator(notifier=notifier)
        await container.configuration.create_notification(
            _file_notification_body(NotificationCondition.BATCH_COMPLETED)
        )
        folder = await container.store.create_folder(make_folder(inbox, name="Sales East"))

        job = await container.service.scan_now(folder.id)
        assert await wait_until(lambda: _any_processing(container.store, job.id))
        await container.service.stop_folder(folder.id)
        await container.dispatcher.drain()

        [sent] = notifier.sent
        assert sent.data["job_id"] == job.id
        assert sent.data["folder_name"] == "Sales East"

    @pytest.mark.asyncio
    async def test_failing_channel_does_not_block_processing(
        self, orchestrator, inbox, settings
    ):
        notifier = make_recording_notifier(always_fail=True)
        write_audio(inbox)
        container = orchestrator(notifier=notifier)
        await container.configuration.create_notification(
            _file_notification_body(NotificationCondition.FILE_PROCESSED)
        )
        folder = await container.store.create_folder(make_folder(inbox))

        job = await container.service.scan_now(folder.id)
        await container.service.wait_idle()

        [record] = await container.store.list_records(job_id=job.id)
        assert record.status == FileStatus.COMPLETED
        assert notifier.sent == []
        assert notifier.attempts == settings.notification_max_attempts


# =====================================================================
#  MONITORS
# =====================================================================

class TestMonitors:

    @pytest.mark.asyncio
    async def test_event_monitor_discovers_new_file(self, orchestrator, inbox):
        container = orchestrator()
        folder = make_folder(inbox, monitor="events")
        folder.monitor.config["debounce_ms"] = 100
        folder = await container.store.create_folder(folder)
        await container.service.start_folder(folder.id)

        write_audio(inbox)

        async def _completed() -> bool:
            return await container.store.count_records(
                folder_id=folder.id, status=FileStatus.COMPLETED
            ) == 1

        assert await wait_until(_completed)

    @pytest.mark.asyncio
    async def test_polling_monitor_picks_up_existing_files(self, orchestrator, inbox):
        for _ in range(2):
            write_audio(inbox)
        container = orchestrator()
        folder = await container.store.create_folder(make_folder(inbox))
        await container.service.start_folder(folder.id)

        async def _completed() -> bool:
            return await container.store.count_records(
                folder_id=folder.id, status=FileStatus.COMPLETED
            ) == 2

        assert await wait_until(_completed)

    @pytest.mark.asyncio
    async def test_pushed_cloud_events(self, orchestrator, inbox):
        paths = [write_audio(inbox) for _ in range(2)]
        container = orchestrator()
        folder = make_folder(inbox, monitor="cloud-events")
        folder.monitor.config["file_extensions"] = [".mp3"]
        folder = await container.store.create_folder(folder)
        await container.service.start_folder(folder.id)

        files = [DiscoveredFile(name=p.name, path=str(p), size=p.stat().st_size) for p in paths]
        files.append(DiscoveredFile(name="notes.txt", path=str(inbox / "notes.txt"), size=3))
        accepted = await container.service.push_events(folder.id, files)
        await container.service.wait_idle()

        assert accepted == 2
        assert await container.store.count_records(
            folder_id=folder.id, status=FileStatus.COMPLETED
        ) == 2
