# src/tracking/reports.py — v1
"""Read-only reports over file processing records: aggregate stats,
per-job error summaries and per-file timelines."""

from __future__ import annotations

from collections import Counter
from datetime import timedelta
from typing import Any

from callbatch.core.models import ErrorCode, FileProcessingRecord, FileStatus, utcnow
from callbatch.tracking.base_status_store import BaseStatusStore
from callbatch.tracking.state_machine import STATUS_DESCRIPTIONS

ERROR_DESCRIPTIONS: dict[ErrorCode, str] = {
    ErrorCode.FILE_TOO_LARGE: "File size exceeds configured limit",
    ErrorCode.INVALID_FORMAT: "File format is not supported",
    ErrorCode.INVALID_FILENAME: "File name does not match UUID pattern",
    ErrorCode.ACCESS_DENIED: "Permission denied accessing file",
    ErrorCode.CORRUPTED_FILE: "File appears to be corrupted",
    ErrorCode.DUPLICATE_FILE: "File has already been processed",
    ErrorCode.PROCESSING_ERROR: "Error during file processing",
    ErrorCode.NETWORK_ERROR: "Network error during file download",
    ErrorCode.STORAGE_ERROR: "Error accessing storage provider",
    ErrorCode.SYSTEM_ERROR: "System resource error",
    ErrorCode.MAX_RETRIES_EXCEEDED: "Maximum retry attempts exceeded",
    ErrorCode.JOB_CANCELLED: "Batch job was cancelled before the file was processed",
}

_MESSAGE_PREVIEW = 50


async def file_stats(
    store: BaseStatusStore,
    job_id: int | None = None,
    folder_id: int | None = None,
    hours: float | None = None,
) -> dict[str, Any]:
    """Totals by status, averages and success rate.

    ``success_rate`` is a percentage over completed + failed records.
    ``average_processing_time`` is in seconds.
    """
    records = await store.list_records(job_id=job_id, folder_id=folder_id)
    if hours is not None:
        since = utcnow() - timedelta(hours=hours)
        records = [r for r in records if r.created_at >= since]

    by_status = Counter(r.status.value for r in records)
    durations = [
        (r.processing_completed_at - r.processing_started_at).total_seconds()
        for r in records
        if r.processing_started_at and r.processing_completed_at
    ]
    completed = by_status.get(FileStatus.COMPLETED.value, 0)
    failed = by_status.get(FileStatus.FAILED.value, 0)

    return {
        "total": len(records),
        "by_status": dict(by_status),
        "average_file_size": sum(r.file_size for r in records) / len(records) if records else 0.0,
        "average_processing_time": sum(durations) / len(durations) if durations else 0.0,
        "total_retries": sum(r.retry_count for r in records),
        "success_rate": completed / (completed + failed) * 100 if completed + failed else 0.0,
    }


async def error_summary(store: BaseStatusStore, job_id: int) -> dict[str, Any]:
    """Failed and skipped records of a job grouped by code and message."""
    records = [
        r for r in await store.list_records(job_id=job_id)
        if r.status in (FileStatus.FAILED, FileStatus.SKIPPED)
    ]
    by_code = Counter(r.error_code.value for r in records if r.error_code)
    by_message = Counter(_preview(r.error_message) for r in records if r.error_message)
    return {
        "total_errors": len(records),
        "by_error_code": dict(by_code),
        "by_error_message": dict(by_message),
        "files": [
            {
                "record_id": r.id,
                "file_name": r.file_name,
                "status": r.status.value,
                "error_code": r.error_code.value if r.error_code else None,
                "error_message": r.error_message,
            }
            for r in records
        ],
    }


def timeline(record: FileProcessingRecord) -> list[dict[str, Any]]:
    """Chronological lifecycle events built from the record history."""
    events: list[dict[str, Any]] = []
    for change in sorted(record.history, key=lambda c: c.at):
        description = STATUS_DESCRIPTIONS[change.to_status]
        if change.to_status == FileStatus.RETRYING:
            attempt = sum(
                1 for c in record.history
                if c.to_status == FileStatus.RETRYING and c.at <= change.at
            )
            description = f"Retry attempt {attempt} of {record.max_retries}"
        event: dict[str, Any] = {
            "timestamp": change.at,
            "event": change.to_status.value,
            "from": change.from_status.value if change.from_status else None,
            "description": description,
        }
        if change.error_code is not None:
            event["error_code"] = change.error_code.value
            event["error_description"] = ERROR_DESCRIPTIONS.get(change.error_code, "")
        events.append(event)
    return events


def error_details(record: FileProcessingRecord) -> dict[str, Any]:
    """Structured error view of one record."""
    return {
        "record_id": record.id,
        "file_name": record.file_name,
        "status": record.status.value,
        "error_code": record.error_code.value if record.error_code else None,
        "error_description": ERROR_DESCRIPTIONS.get(record.error_code) if record.error_code else None,
        "error_message": record.error_message,
        "error_details": record.error_details,
        "retry_count": record.retry_count,
        "max_retries": record.max_retries,
        "can_retry": record.status == FileStatus.FAILED,
    }


def _preview(message: str) -> str:
    if len(message) <= _MESSAGE_PREVIEW:
        return message
    return message[:_MESSAGE_PREVIEW] + "..."
