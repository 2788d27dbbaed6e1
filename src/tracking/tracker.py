# src/tracking/tracker.py — v1
"""Authoritative lifecycle updates for file processing records.

``transition`` is the only way a record changes status. It re-reads the
stored record under a per-record lock, checks the move against the state
machine, stamps timestamps, appends history and persists everything in a
single ``update_record`` call.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from callbatch.core.models import (
    BatchJob,
    DiscoveredFile,
    ErrorCode,
    FileProcessingRecord,
    FileStatus,
    StatusChange,
    StatusUpdate,
    utcnow,
)
from callbatch.tracking.base_status_store import BaseStatusStore
from callbatch.tracking.state_machine import SETTLED_STATES, check_transition

logger = logging.getLogger(__name__)

StatusPublisher = Callable[[StatusUpdate], None]


class StatusTracker:
    """Creates records and moves them through the lifecycle."""

    def __init__(
        self,
        store: BaseStatusStore,
        publish: StatusPublisher | None = None,
    ) -> None:
        self._store = store
        self._publish = publish
        self._locks: dict[int, asyncio.Lock] = {}

    async def create_record(
        self, job: BatchJob, file: DiscoveredFile, max_retries: int
    ) -> FileProcessingRecord:
        """Persist a new record in ``discovered``."""
        now = utcnow()
        record = await self._store.create_record(
            FileProcessingRecord(
                batch_job_id=job.id,  # type: ignore[arg-type]
                folder_id=job.folder_id,
                file_name=file.name,
                file_path=file.path,
                file_size=file.size,
                modified_at=file.modified_at,
                status=FileStatus.DISCOVERED,
                max_retries=max_retries,
                created_at=now,
                updated_at=now,
                history=[StatusChange(from_status=None, to_status=FileStatus.DISCOVERED, at=now)],
            )
        )
        logger.info("Discovered %s (record %s, job %s)", record.file_name, record.id, job.id)
        self._emit(record, None)
        return record

    async def transition(
        self,
        record: FileProcessingRecord | int,
        to_status: FileStatus,
        *,
        error_code: ErrorCode | None = None,
        error_message: str | None = None,
        error_details: dict[str, Any] | None = None,
        **changes: Any,
    ) -> FileProcessingRecord:
        """Move a record to ``to_status`` and persist it.

        Raises:
            InvalidTransition: If the stored status does not allow the move.
            RecordNotFound: If the record does not exist.
        """
        record_id = record if isinstance(record, int) else record.id
        to_status = FileStatus(to_status)
        lock = self._locks.setdefault(record_id, asyncio.Lock())  # type: ignore[arg-type]
        async with lock:
            current = await self._store.get_record(record_id)  # type: ignore[arg-type]
            check_transition(record_id, current.status, to_status)

            now = utcnow()
            update: dict[str, Any] = {"status": to_status, "updated_at": now, **changes}
            if to_status == FileStatus.PROCESSING and current.processing_started_at is None:
                update["processing_started_at"] = now
            if to_status in SETTLED_STATES:
                update["processing_completed_at"] = now
            if error_code is not None:
                update["error_code"] = error_code
                update["error_message"] = error_message
                update["error_details"] = error_details
            elif to_status == FileStatus.COMPLETED:
                update["error_code"] = None
                update["error_message"] = None
                update["error_details"] = None

            history = list(current.history)
            history.append(
                StatusChange(
                    from_status=current.status, to_status=to_status, at=now, error_code=error_code
                )
            )
            update["history"] = history

            updated = await self._store.update_record(current.model_copy(update=update))

        if to_status in SETTLED_STATES:
            self._locks.pop(record_id, None)  # type: ignore[arg-type]

        if error_code is not None:
            logger.info(
                "Record %s: %s → %s [%s] %s",
                record_id, current.status.value, to_status.value, error_code.value, error_message or "",
            )
        else:
            logger.info("Record %s: %s → %s", record_id, current.status.value, to_status.value)
        self._emit(updated, current.status)
        return updated

    def _emit(self, record: FileProcessingRecord, previous: FileStatus | None) -> None:
        if self._publish is None:
            return
        self._publish(
            StatusUpdate(
                kind="record",
                folder_id=record.folder_id,
                job_id=record.batch_job_id,
                record_id=record.id,
                status=record.status.value,
                previous_status=previous.value if previous else None,
                error_code=record.error_code,
                file_name=record.file_name,
            )
        )
