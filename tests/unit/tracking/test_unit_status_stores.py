# tests/unit/tracking/test_unit_status_stores.py — v1
"""Tests for tracking/memory_store.py and tracking/sqlite_store.py.

Both back-ends run the same contract tests.
"""

from __future__ import annotations

import pytest

from callbatch.config.settings import Settings
from callbatch.core.errors import (
    FolderNotFound,
    JobNotFound,
    NotificationConfigNotFound,
    RecordNotFound,
)
from callbatch.core.models import (
    BatchJob,
    ErrorCode,
    FileProcessingRecord,
    FileStatus,
    FolderConfig,
    JobStatus,
    NotificationConfig,
    ProviderSpec,
    StatusChange,
)
from callbatch.tracking.memory_store import MemoryStatusStore
from callbatch.tracking.sqlite_store import SqliteStatusStore
from callbatch.tracking.store_factory import create_status_store


@pytest.fixture(params=["memory", "sqlite"])
def status_store(request, tmp_path):
    if request.param == "memory":
        store = MemoryStatusStore()
    else:
        store = SqliteStatusStore(tmp_path / "state" / "callbatch.db")
    yield store
    store.close()


def _folder(name: str = "Inbox") -> FolderConfig:
    return FolderConfig(
        name=name,
        storage=ProviderSpec(type="local", config={"path": "/data"}),
        monitor=ProviderSpec(type="polling", config={"path": "/data"}),
    )


async def _seed(store) -> tuple[FolderConfig, BatchJob]:
    folder = await store.create_folder(_folder())
    job = await store.create_job(BatchJob(folder_id=folder.id, name="scan"))
    return folder, job


def _record(job: BatchJob, name: str, **fields) -> FileProcessingRecord:
    return FileProcessingRecord(
        batch_job_id=job.id, folder_id=job.folder_id,
        file_name=name, file_path=f"/data/{name}", **fields,
    )


class TestFolders:
    @pytest.mark.asyncio
    async def test_crud(self, status_store):
        folder = await status_store.create_folder(_folder())
        assert folder.id == 1
        fetched = await status_store.get_folder(folder.id)
        assert fetched.storage.config == {"path": "/data"}

        updated = await status_store.update_folder(fetched.model_copy(update={"name": "Renamed"}))
        assert updated.name == "Renamed"
        assert updated.updated_at >= fetched.updated_at

        await status_store.delete_folder(folder.id)
        with pytest.raises(FolderNotFound):
            await status_store.get_folder(folder.id)

    @pytest.mark.asyncio
    async def test_active_only(self, status_store):
        await status_store.create_folder(_folder("a"))
        inactive = _folder("b").model_copy(update={"is_active": False})
        await status_store.create_folder(inactive)
        assert [f.name for f in await status_store.list_folders()] == ["a", "b"]
        assert [f.name for f in await status_store.list_folders(active_only=True)] == ["a"]

    @pytest.mark.asyncio
    async def test_update_missing(self, status_store):
        with pytest.raises(FolderNotFound):
            await status_store.update_folder(_folder().model_copy(update={"id": 99}))


class TestJobs:
    @pytest.mark.asyncio
    async def test_list_newest_first_and_filters(self, status_store):
        folder, first = await _seed(status_store)
        second = await status_store.create_job(
            BatchJob(folder_id=folder.id, name="scan 2", status=JobStatus.RUNNING)
        )
        jobs = await status_store.list_jobs()
        assert [j.id for j in jobs] == [second.id, first.id]
        running = await status_store.list_jobs(status=JobStatus.RUNNING)
        assert [j.id for j in running] == [second.id]
        assert len(await status_store.list_jobs(limit=1, offset=1)) == 1

    @pytest.mark.asyncio
    async def test_update_and_missing(self, status_store):
        _, job = await _seed(status_store)
        updated = await status_store.update_job(job.model_copy(update={"total_files": 4}))
        assert (await status_store.get_job(updated.id)).total_files == 4
        with pytest.raises(JobNotFound):
            await status_store.get_job(404)


class TestRecords:
    @pytest.mark.asyncio
    async def test_round_trip_keeps_history_and_errors(self, status_store):
        _, job = await _seed(status_store)
        record = await status_store.create_record(_record(
            job, "a.mp3",
            status=FileStatus.FAILED,
            error_code=ErrorCode.NETWORK_ERROR,
            error_details={"attempt": 1},
            history=[StatusChange(from_status=None, to_status=FileStatus.DISCOVERED)],
        ))
        fetched = await status_store.get_record(record.id)
        assert fetched.error_code is ErrorCode.NETWORK_ERROR
        assert fetched.error_details == {"attempt": 1}
        assert fetched.history[0].to_status is FileStatus.DISCOVERED

    @pytest.mark.asyncio
    async def test_filters_and_count(self, status_store):
        _, job = await _seed(status_store)
        await status_store.create_record(_record(job, "Call_One.mp3"))
        await status_store.create_record(_record(job, "call_two.mp3", status=FileStatus.FAILED))
        await status_store.create_record(_record(job, "other.wav", status=FileStatus.FAILED))

        assert await status_store.count_records(job_id=job.id) == 3
        assert await status_store.count_records(status=FileStatus.FAILED) == 2
        named = await status_store.list_records(file_name="call_")
        assert [r.file_name for r in named] == ["Call_One.mp3", "call_two.mp3"]
        assert await status_store.count_records(status=FileStatus.FAILED, file_name="call") == 1
        page = await status_store.list_records(job_id=job.id, limit=2, offset=1)
        assert [r.file_name for r in page] == ["call_two.mp3", "other.wav"]

    @pytest.mark.asyncio
    async def test_find_record_returns_latest(self, status_store):
        _, job = await _seed(status_store)
        await status_store.create_record(_record(job, "a.mp3"))
        latest = await status_store.create_record(_record(job, "a.mp3"))
        found = await status_store.find_record(job.folder_id, "/data/a.mp3")
        assert found.id == latest.id
        assert await status_store.find_record(job.folder_id, "/data/none.mp3") is None

    @pytest.mark.asyncio
    async def test_find_completed_by_name(self, status_store):
        _, job = await _seed(status_store)
        await status_store.create_record(_record(job, "a.mp3", status=FileStatus.FAILED))
        assert await status_store.find_completed_by_name(job.folder_id, "a.mp3") is None
        done = await status_store.create_record(_record(job, "a.mp3", status=FileStatus.COMPLETED))
        assert (await status_store.find_completed_by_name(job.folder_id, "a.mp3")).id == done.id

    @pytest.mark.asyncio
    async def test_missing_record(self, status_store):
        with pytest.raises(RecordNotFound):
            await status_store.get_record(1)


class TestNotifications:
    @pytest.mark.asyncio
    async def test_crud(self, status_store):
        config = await status_store.create_notification(NotificationConfig(
            name="ops", type="webhook", config={"url": "https://h.example.com"},
            conditions=["file_failed"],
        ))
        fetched = await status_store.get_notification(config.id)
        assert fetched.conditions[0].value == "file_failed"
        await status_store.update_notification(fetched.model_copy(update={"is_active": False}))
        assert await status_store.list_notifications(active_only=True) == []
        await status_store.delete_notification(config.id)
        with pytest.raises(NotificationConfigNotFound):
            await status_store.delete_notification(config.id)


class TestMemoryIsolation:
    @pytest.mark.asyncio
    async def test_returned_copies_are_detached(self):
        store = MemoryStatusStore()
        folder = await store.create_folder(_folder())
        folder.storage.config["path"] = "/mutated"
        assert (await store.get_folder(folder.id)).storage.config["path"] == "/data"


class TestSqlitePersistence:
    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        db = tmp_path / "callbatch.db"
        store = SqliteStatusStore(db)
        folder = await store.create_folder(_folder())
        store.close()
        reopened = SqliteStatusStore(db)
        assert (await reopened.get_folder(folder.id)).name == "Inbox"
        reopened.close()


class TestStoreFactory:
    def test_default_is_memory(self):
        assert isinstance(create_status_store(), MemoryStatusStore)

    def test_sqlite_from_settings(self, tmp_path):
        settings = Settings(_env_file=None, store_path=tmp_path / "x.db")
        store = create_status_store(settings)
        assert isinstance(store, SqliteStatusStore)
        store.close()
