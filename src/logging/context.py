# src/logging/context.py — v1
"""Contextual logging support — attach folder_id, job_id, record_id, provider to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Context variables for structured logging — set per worker / per file.
_folder_id: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "folder_id", default=None
)
_job_id: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "job_id", default=None
)
_record_id: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "record_id", default=None
)
_provider: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "provider", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    folder_id: int | None = None
    job_id: int | None = None
    record_id: int | None = None
    provider: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        folder_id=_folder_id.get(),
        job_id=_job_id.get(),
        record_id=_record_id.get(),
        provider=_provider.get(),
    )


def set_job_context(folder_id: int | None, job_id: int | None = None) -> None:
    """Set folder/job-level context (called once per worker task)."""
    _folder_id.set(folder_id)
    _job_id.set(job_id)


def set_record_context(record_id: int | None, job_id: int | None = None) -> None:
    """Set record-level context (called per file)."""
    _record_id.set(record_id)
    if job_id is not None:
        _job_id.set(job_id)


def set_provider_context(provider: str | None) -> None:
    """Set provider context (notification delivery, storage calls)."""
    _provider.set(provider)


def clear_context() -> None:
    """Reset all context variables."""
    _folder_id.set(None)
    _job_id.set(None)
    _record_id.set(None)
    _provider.set(None)
