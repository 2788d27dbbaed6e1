# src/tracking/base_status_store.py — v1
"""Abstract persistence interface for folders, jobs, records and
notification configurations.

Every write is atomic per call. Lookups of missing ids raise the
matching ``*NotFound`` error.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from callbatch.core.models import (
    BatchJob,
    FileProcessingRecord,
    FileStatus,
    FolderConfig,
    JobStatus,
    NotificationConfig,
)


class BaseStatusStore(ABC):
    """Unified interface for status store backends."""

    # --- Folder configurations ---

    @abstractmethod
    async def create_folder(self, folder: FolderConfig) -> FolderConfig:
        """Persist a new folder and return it with its id."""

    @abstractmethod
    async def get_folder(self, folder_id: int) -> FolderConfig:
        """Raises FolderNotFound."""

    @abstractmethod
    async def list_folders(self, active_only: bool = False) -> list[FolderConfig]:
        """Folders ordered by id."""

    @abstractmethod
    async def update_folder(self, folder: FolderConfig) -> FolderConfig:
        """Replace a stored folder. Raises FolderNotFound."""

    @abstractmethod
    async def delete_folder(self, folder_id: int) -> None:
        """Remove a folder. Raises FolderNotFound."""

    # --- Batch jobs ---

    @abstractmethod
    async def create_job(self, job: BatchJob) -> BatchJob:
        """Persist a new job and return it with its id."""

    @abstractmethod
    async def get_job(self, job_id: int) -> BatchJob:
        """Raises JobNotFound."""

    @abstractmethod
    async def list_jobs(
        self,
        folder_id: int | None = None,
        status: JobStatus | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[BatchJob]:
        """Jobs, newest first."""

    @abstractmethod
    async def update_job(self, job: BatchJob) -> BatchJob:
        """Replace a stored job. Raises JobNotFound."""

    # --- File processing records ---

    @abstractmethod
    async def create_record(self, record: FileProcessingRecord) -> FileProcessingRecord:
        """Persist a new record and return it with its id."""

    @abstractmethod
    async def get_record(self, record_id: int) -> FileProcessingRecord:
        """Raises RecordNotFound."""

    @abstractmethod
    async def list_records(
        self,
        job_id: int | None = None,
        folder_id: int | None = None,
        status: FileStatus | None = None,
        file_name: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[FileProcessingRecord]:
        """Records ordered by id; ``file_name`` is a substring filter."""

    @abstractmethod
    async def count_records(
        self,
        job_id: int | None = None,
        folder_id: int | None = None,
        status: FileStatus | None = None,
        file_name: str | None = None,
    ) -> int:
        """Number of records matching the same filters as list_records()."""

    @abstractmethod
    async def update_record(self, record: FileProcessingRecord) -> FileProcessingRecord:
        """Replace a stored record. Raises RecordNotFound."""

    @abstractmethod
    async def find_record(self, folder_id: int, file_path: str) -> FileProcessingRecord | None:
        """Most recent record for a folder + path, if any."""

    @abstractmethod
    async def find_completed_by_name(
        self, folder_id: int, file_name: str
    ) -> FileProcessingRecord | None:
        """A completed record with this file name in the folder, if any."""

    # --- Notification configurations ---

    @abstractmethod
    async def create_notification(self, config: NotificationConfig) -> NotificationConfig:
        """Persist a new notification config and return it with its id."""

    @abstractmethod
    async def get_notification(self, config_id: int) -> NotificationConfig:
        """Raises NotificationConfigNotFound."""

    @abstractmethod
    async def list_notifications(self, active_only: bool = False) -> list[NotificationConfig]:
        """Notification configs ordered by id."""

    @abstractmethod
    async def update_notification(self, config: NotificationConfig) -> NotificationConfig:
        """Replace a stored config. Raises NotificationConfigNotFound."""

    @abstractmethod
    async def delete_notification(self, config_id: int) -> None:
        """Remove a config. Raises NotificationConfigNotFound."""

    def close(self) -> None:
        """Release resources. Default: nothing to release."""
