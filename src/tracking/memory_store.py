# src/tracking/memory_store.py — v1
"""In-process status store (STORE_BACKEND=memory).

Holds deep copies so callers can never mutate stored state by accident.
Used for tests and for throwaway runs; nothing survives a restart.
"""

from __future__ import annotations

import itertools
from typing import Generic, TypeVar

from pydantic import BaseModel

from callbatch.core.errors import (
    FolderNotFound,
    JobNotFound,
    NotFoundError,
    NotificationConfigNotFound,
    RecordNotFound,
)
from callbatch.core.models import (
    BatchJob,
    FileProcessingRecord,
    FileStatus,
    FolderConfig,
    JobStatus,
    NotificationConfig,
    utcnow,
)
from callbatch.tracking.base_status_store import BaseStatusStore

M = TypeVar("M", bound=BaseModel)


class _Table(Generic[M]):
    """id → model map with its own id sequence."""

    def __init__(self, not_found: type[NotFoundError], label: str) -> None:
        self.rows: dict[int, M] = {}
        self._ids = itertools.count(1)
        self._not_found = not_found
        self._label = label

    def insert(self, item: M) -> M:
        stored = item.model_copy(update={"id": next(self._ids)}, deep=True)
        self.rows[stored.id] = stored  # type: ignore[attr-defined]
        return stored.model_copy(deep=True)

    def fetch(self, item_id: int) -> M:
        if item_id not in self.rows:
            raise self._not_found(f"{self._label} {item_id} not found", {"id": item_id})
        return self.rows[item_id].model_copy(deep=True)

    def replace(self, item: M, **stamp: object) -> M:
        item_id = item.id  # type: ignore[attr-defined]
        if item_id not in self.rows:
            raise self._not_found(f"{self._label} {item_id} not found", {"id": item_id})
        stored = item.model_copy(update=stamp, deep=True)
        self.rows[item_id] = stored
        return stored.model_copy(deep=True)

    def remove(self, item_id: int) -> None:
        if self.rows.pop(item_id, None) is None:
            raise self._not_found(f"{self._label} {item_id} not found", {"id": item_id})

    def ordered(self) -> list[M]:
        return [self.rows[k].model_copy(deep=True) for k in sorted(self.rows)]


class MemoryStatusStore(BaseStatusStore):
    """Dict-backed store; every call completes without yielding."""

    def __init__(self) -> None:
        self._folders: _Table[FolderConfig] = _Table(FolderNotFound, "Folder")
        self._jobs: _Table[BatchJob] = _Table(JobNotFound, "Batch job")
        self._records: _Table[FileProcessingRecord] = _Table(RecordNotFound, "File record")
        self._notifications: _Table[NotificationConfig] = _Table(
            NotificationConfigNotFound, "Notification config"
        )

    # --- Folder configurations ---

    async def create_folder(self, folder: FolderConfig) -> FolderConfig:
        return self._folders.insert(folder)

    async def get_folder(self, folder_id: int) -> FolderConfig:
        return self._folders.fetch(folder_id)

    async def list_folders(self, active_only: bool = False) -> list[FolderConfig]:
        return [f for f in self._folders.ordered() if f.is_active or not active_only]

    async def update_folder(self, folder: FolderConfig) -> FolderConfig:
        return self._folders.replace(folder, updated_at=utcnow())

    async def delete_folder(self, folder_id: int) -> None:
        self._folders.remove(folder_id)

    # --- Batch jobs ---

    async def create_job(self, job: BatchJob) -> BatchJob:
        return self._jobs.insert(job)

    async def get_job(self, job_id: int) -> BatchJob:
        return self._jobs.fetch(job_id)

    async def list_jobs(
        self,
        folder_id: int | None = None,
        status: JobStatus | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[BatchJob]:
        jobs = [
            j for j in reversed(self._jobs.ordered())
            if (folder_id is None or j.folder_id == folder_id)
            and (status is None or j.status == status)
        ]
        return _page(jobs, limit, offset)

    async def update_job(self, job: BatchJob) -> BatchJob:
        return self._jobs.replace(job)

    # --- File processing records ---

    async def create_record(self, record: FileProcessingRecord) -> FileProcessingRecord:
        return self._records.insert(record)

    async def get_record(self, record_id: int) -> FileProcessingRecord:
        return self._records.fetch(record_id)

    def _filter_records(
        self,
        job_id: int | None,
        folder_id: int | None,
        status: FileStatus | None,
        file_name: str | None,
    ) -> list[FileProcessingRecord]:
        needle = file_name.lower() if file_name else None
        return [
            r for r in self._records.ordered()
            if (job_id is None or r.batch_job_id == job_id)
            and (folder_id is None or r.folder_id == folder_id)
            and (status is None or r.status == status)
            and (needle is None or needle in r.file_name.lower())
        ]

    async def list_records(
        self,
        job_id: int | None = None,
        folder_id: int | None = None,
        status: FileStatus | None = None,
        file_name: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[FileProcessingRecord]:
        return _page(self._filter_records(job_id, folder_id, status, file_name), limit, offset)

    async def count_records(
        self,
        job_id: int | None = None,
        folder_id: int | None = None,
        status: FileStatus | None = None,
        file_name: str | None = None,
    ) -> int:
        return len(self._filter_records(job_id, folder_id, status, file_name))

    async def update_record(self, record: FileProcessingRecord) -> FileProcessingRecord:
        return self._records.replace(record)

    async def find_record(self, folder_id: int, file_path: str) -> FileProcessingRecord | None:
        matches = [
            r for r in self._records.ordered()
            if r.folder_id == folder_id and r.file_path == file_path
        ]
        return matches[-1] if matches else None

    async def find_completed_by_name(
        self, folder_id: int, file_name: str
    ) -> FileProcessingRecord | None:
        for r in self._records.ordered():
            if (
                r.folder_id == folder_id
                and r.file_name == file_name
                and r.status == FileStatus.COMPLETED
            ):
                return r
        return None

    # --- Notification configurations ---

    async def create_notification(self, config: NotificationConfig) -> NotificationConfig:
        return self._notifications.insert(config)

    async def get_notification(self, config_id: int) -> NotificationConfig:
        return self._notifications.fetch(config_id)

    async def list_notifications(self, active_only: bool = False) -> list[NotificationConfig]:
        return [n for n in self._notifications.ordered() if n.is_active or not active_only]

    async def update_notification(self, config: NotificationConfig) -> NotificationConfig:
        return self._notifications.replace(config, updated_at=utcnow())

    async def delete_notification(self, config_id: int) -> None:
        self._notifications.remove(config_id)


def _page(items: list[M], limit: int | None, offset: int) -> list[M]:
    items = items[offset:]
    return items if limit is None else items[:limit]
