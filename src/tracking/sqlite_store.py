# src/tracking/sqlite_store.py — v1
"""SQLite-backed status store (STORE_BACKEND=sqlite).

Uses stdlib sqlite3: each entity is a JSON document plus the indexed
columns needed for filtering. Statements run synchronously inside the
async methods, so every call is atomic with respect to other tasks on
the loop.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, TypeVar

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

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS folders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    is_active INTEGER NOT NULL DEFAULT 1,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS batch_jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    folder_id INTEGER NOT NULL REFERENCES folders(id),
    status TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_jobs_folder ON batch_jobs(folder_id, status);
CREATE TABLE IF NOT EXISTS file_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    batch_job_id INTEGER NOT NULL REFERENCES batch_jobs(id),
    folder_id INTEGER NOT NULL,
    file_name TEXT NOT NULL,
    file_path TEXT NOT NULL,
    status TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_records_job ON file_records(batch_job_id, status);
CREATE INDEX IF NOT EXISTS idx_records_path ON file_records(folder_id, file_path);
CREATE INDEX IF NOT EXISTS idx_records_name ON file_records(folder_id, file_name, status);
CREATE TABLE IF NOT EXISTS notification_configs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    is_active INTEGER NOT NULL DEFAULT 1,
    data TEXT NOT NULL
);
"""

_FOLDER_COLS = ("is_active",)
_JOB_COLS = ("folder_id", "status")
_RECORD_COLS = ("batch_job_id", "folder_id", "file_name", "file_path", "status")
_NOTIFICATION_COLS = ("is_active",)


class SqliteStatusStore(BaseStatusStore):
    """SQLite store for folders, jobs, file records and notification configs."""

    def __init__(self, db_path: Path | str) -> None:
        if str(db_path) == ":memory:":
            target = ":memory:"
        else:
            path = Path(db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            target = str(path)
        self._conn = sqlite3.connect(target, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA)
        logger.debug("Status store opened: %s", target)

    # --- Generic helpers ---

    def _insert(self, table: str, cols: tuple[str, ...], item: M) -> M:
        payload = _dump(item)
        values = [_column(payload[c]) for c in cols]
        with self._conn:
            cursor = self._conn.execute(
                f"INSERT INTO {table} ({', '.join(cols)}, data) "
                f"VALUES ({', '.join('?' * (len(cols) + 1))})",
                (*values, json.dumps(payload)),
            )
        return item.model_copy(update={"id": cursor.lastrowid}, deep=True)

    def _fetch(
        self, table: str, model: type[M], item_id: int, not_found: type[NotFoundError], label: str
    ) -> M:
        row = self._conn.execute(f"SELECT id, data FROM {table} WHERE id = ?", (item_id,)).fetchone()
        if row is None:
            raise not_found(f"{label} {item_id} not found", {"id": item_id})
        return _load(model, row)

    def _replace(
        self, table: str, cols: tuple[str, ...], item: M, not_found: type[NotFoundError], label: str
    ) -> M:
        item_id = item.id  # type: ignore[attr-defined]
        payload = _dump(item)
        assignments = ", ".join(f"{c} = ?" for c in cols)
        with self._conn:
            cursor = self._conn.execute(
                f"UPDATE {table} SET {assignments}, data = ? WHERE id = ?",
                (*[_column(payload[c]) for c in cols], json.dumps(payload), item_id),
            )
        if cursor.rowcount == 0:
            raise not_found(f"{label} {item_id} not found", {"id": item_id})
        return item.model_copy(deep=True)

    def _delete(self, table: str, item_id: int, not_found: type[NotFoundError], label: str) -> None:
        with self._conn:
            cursor = self._conn.execute(f"DELETE FROM {table} WHERE id = ?", (item_id,))
        if cursor.rowcount == 0:
            raise not_found(f"{label} {item_id} not found", {"id": item_id})

    def _select(self, model: type[M], sql: str, params: tuple[Any, ...] = ()) -> list[M]:
        return [_load(model, row) for row in self._conn.execute(sql, params).fetchall()]

    # --- Folder configurations ---

    async def create_folder(self, folder: FolderConfig) -> FolderConfig:
        return self._insert("folders", _FOLDER_COLS, folder)

    async def get_folder(self, folder_id: int) -> FolderConfig:
        return self._fetch("folders", FolderConfig, folder_id, FolderNotFound, "Folder")

    async def list_folders(self, active_only: bool = False) -> list[FolderConfig]:
        where = " WHERE is_active = 1" if active_only else ""
        return self._select(FolderConfig, f"SELECT id, data FROM folders{where} ORDER BY id")

    async def update_folder(self, folder: FolderConfig) -> FolderConfig:
        folder = folder.model_copy(update={"updated_at": utcnow()})
        return self._replace("folders", _FOLDER_COLS, folder, FolderNotFound, "Folder")

    async def delete_folder(self, folder_id: int) -> None:
        self._delete("folders", folder_id, FolderNotFound, "Folder")

    # --- Batch jobs ---

    async def create_job(self, job: BatchJob) -> BatchJob:
        return self._insert("batch_jobs", _JOB_COLS, job)

    async def get_job(self, job_id: int) -> BatchJob:
        return self._fetch("batch_jobs", BatchJob, job_id, JobNotFound, "Batch job")

    async def list_jobs(
        self,
        folder_id: int | None = None,
        status: JobStatus | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[BatchJob]:
        where, params = _where({"folder_id": folder_id, "status": status})
        sql = f"SELECT id, data FROM batch_jobs{where} ORDER BY id DESC" + _limit(limit, offset)
        return self._select(BatchJob, sql, params)

    async def update_job(self, job: BatchJob) -> BatchJob:
        return self._replace("batch_jobs", _JOB_COLS, job, JobNotFound, "Batch job")

    # --- File processing records ---

    async def create_record(self, record: FileProcessingRecord) -> FileProcessingRecord:
        return self._insert("file_records", _RECORD_COLS, record)

    async def get_record(self, record_id: int) -> FileProcessingRecord:
        return self._fetch("file_records", FileProcessingRecord, record_id, RecordNotFound, "File record")

    async def list_records(
        self,
        job_id: int | None = None,
        folder_id: int | None = None,
        status: FileStatus | None = None,
        file_name: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[FileProcessingRecord]:
        where, params = _record_filters(job_id, folder_id, status, file_name)
        sql = f"SELECT id, data FROM file_records{where} ORDER BY id" + _limit(limit, offset)
        return self._select(FileProcessingRecord, sql, params)

    async def count_records(
        self,
        job_id: int | None = None,
        folder_id: int | None = None,
        status: FileStatus | None = None,
        file_name: str | None = None,
    ) -> int:
        where, params = _record_filters(job_id, folder_id, status, file_name)
        row = self._conn.execute(f"SELECT COUNT(*) FROM file_records{where}", params).fetchone()
        return int(row[0])

    async def update_record(self, record: FileProcessingRecord) -> FileProcessingRecord:
        return self._replace("file_records", _RECORD_COLS, record, RecordNotFound, "File record")

    async def find_record(self, folder_id: int, file_path: str) -> FileProcessingRecord | None:
        rows = self._select(
            FileProcessingRecord,
            "SELECT id, data FROM file_records WHERE folder_id = ? AND file_path = ? "
            "ORDER BY id DESC LIMIT 1",
            (folder_id, file_path),
        )
        return rows[0] if rows else None

    async def find_completed_by_name(
        self, folder_id: int, file_name: str
    ) -> FileProcessingRecord | None:
        rows = self._select(
            FileProcessingRecord,
            "SELECT id, data FROM file_records WHERE folder_id = ? AND file_name = ? "
            "AND status = ? ORDER BY id LIMIT 1",
            (folder_id, file_name, FileStatus.COMPLETED.value),
        )
        return rows[0] if rows else None

    # --- Notification configurations ---

    async def create_notification(self, config: NotificationConfig) -> NotificationConfig:
        return self._insert("notification_configs", _NOTIFICATION_COLS, config)

    async def get_notification(self, config_id: int) -> NotificationConfig:
        return self._fetch(
            "notification_configs", NotificationConfig, config_id,
            NotificationConfigNotFound, "Notification config",
        )

    async def list_notifications(self, active_only: bool = False) -> list[NotificationConfig]:
        where = " WHERE is_active = 1" if active_only else ""
        return self._select(
            NotificationConfig, f"SELECT id, data FROM notification_configs{where} ORDER BY id"
        )

    async def update_notification(self, config: NotificationConfig) -> NotificationConfig:
        config = config.model_copy(update={"updated_at": utcnow()})
        return self._replace(
            "notification_configs", _NOTIFICATION_COLS, config,
            NotificationConfigNotFound, "Notification config",
        )

    async def delete_notification(self, config_id: int) -> None:
        self._delete(
            "notification_configs", config_id, NotificationConfigNotFound, "Notification config"
        )

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()


def _dump(item: BaseModel) -> dict[str, Any]:
    return item.model_dump(mode="json", exclude={"id"})


def _load(model: type[M], row: tuple[Any, ...]) -> M:
    return model.model_validate({**json.loads(row[1]), "id": row[0]})


def _column(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    return value


def _where(filters: dict[str, Any]) -> tuple[str, tuple[Any, ...]]:
    clauses: list[str] = []
    params: list[Any] = []
    for column, value in filters.items():
        if value is None:
            continue
        clauses.append(f"{column} = ?")
        params.append(getattr(value, "value", value))
    return (" WHERE " + " AND ".join(clauses) if clauses else ""), tuple(params)


def _record_filters(
    job_id: int | None, folder_id: int | None, status: FileStatus | None, file_name: str | None
) -> tuple[str, tuple[Any, ...]]:
    where, params = _where({"batch_job_id": job_id, "folder_id": folder_id, "status": status})
    if file_name:
        escaped = file_name.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        where += (" AND " if where else " WHERE ") + "file_name LIKE ? ESCAPE '\\'"
        params = (*params, f"%{escaped}%")
    return where, params


def _limit(limit: int | None, offset: int) -> str:
    if limit is None:
        return f" LIMIT -1 OFFSET {int(offset)}" if offset else ""
    return f" LIMIT {int(limit)} OFFSET {int(offset)}"
