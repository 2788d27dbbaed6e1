# src/core/errors.py — v1
"""Exception hierarchy for the batch ingestion engine.

Processing errors carry an ``error_code`` and a ``retryable`` flag so the
orchestrator can decide between ``retrying`` and terminal ``failed``
without inspecting exception types ad hoc.
"""

from __future__ import annotations

import errno
from typing import Any

from callbatch.core.models import ErrorCode


class CallBatchError(Exception):
    """Base class for all callbatch errors."""

    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# === Provider / configuration errors ===


class ProviderNotFound(CallBatchError):
    """Lookup of a provider type that is not registered."""

    code = "PROVIDER_NOT_FOUND"

    def __init__(self, kind: str, type_name: str, available: list[str] | None = None) -> None:
        self.kind = kind
        self.type_name = type_name
        self.available = sorted(available or [])
        super().__init__(
            f"{kind} provider '{type_name}' not found. "
            f"Available providers: {', '.join(self.available) or 'none'}",
            {"kind": kind, "type": type_name, "available": self.available},
        )


class ConfigurationInvalid(CallBatchError):
    """Provider or folder configuration failed validation."""

    code = "CONFIGURATION_INVALID"

    def __init__(self, kind: str, type_name: str | None, errors: list[str]) -> None:
        self.kind = kind
        self.type_name = type_name
        self.errors = list(errors)
        label = f"{kind} '{type_name}'" if type_name else kind
        super().__init__(
            f"Invalid {label} configuration: {', '.join(self.errors)}",
            {"kind": kind, "type": type_name, "errors": self.errors},
        )


class MonitorConflict(CallBatchError):
    """Another monitor is already watching the same physical path."""

    code = "MONITOR_CONFLICT"

    def __init__(self, path: str, owner: str | None = None) -> None:
        self.path = path
        super().__init__(
            f"Path is already monitored: {path}", {"path": path, "owner": owner},
        )


class InvalidTransition(CallBatchError):
    """Illegal file lifecycle transition."""

    code = "INVALID_TRANSITION"

    def __init__(self, record_id: int | None, from_status: str, to_status: str) -> None:
        self.record_id = record_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid status transition from {from_status} to {to_status}"
            f" (record {record_id})",
            {"record_id": record_id, "from": from_status, "to": to_status},
        )


class NotFoundError(CallBatchError):
    code = "NOT_FOUND"


class RecordNotFound(NotFoundError):
    code = "RECORD_NOT_FOUND"


class JobNotFound(NotFoundError):
    code = "JOB_NOT_FOUND"


class FolderNotFound(NotFoundError):
    code = "FOLDER_NOT_FOUND"


class NotificationConfigNotFound(NotFoundError):
    code = "NOTIFICATION_NOT_FOUND"


class FolderInactive(CallBatchError):
    code = "FOLDER_INACTIVE"


class FolderInUse(CallBatchError):
    code = "FOLDER_IN_USE"


class RetryNotAllowed(CallBatchError):
    code = "RETRY_NOT_ALLOWED"


class JobNotCancellable(CallBatchError):
    code = "JOB_NOT_CANCELLABLE"


# === Processing errors ===


class ProcessingError(CallBatchError):
    """Failure while handling a single file."""

    code = ErrorCode.PROCESSING_ERROR.value
    default_error_code = ErrorCode.PROCESSING_ERROR
    default_retryable = True

    def __init__(
        self,
        message: str,
        error_code: ErrorCode | None = None,
        retryable: bool | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.error_code = error_code or self.default_error_code
        self.retryable = self.default_retryable if retryable is None else retryable
        self.code = self.error_code.value


class StorageError(ProcessingError):
    default_error_code = ErrorCode.STORAGE_ERROR


class NetworkError(ProcessingError):
    default_error_code = ErrorCode.NETWORK_ERROR


class AnalysisError(ProcessingError):
    """Raised by the analysis collaborator.

    ``permanent=True`` signals a rejection (e.g. corrupted audio) that must
    not be retried.
    """

    def __init__(
        self,
        message: str,
        permanent: bool = False,
        error_code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        if error_code is None:
            error_code = ErrorCode.CORRUPTED_FILE if permanent else ErrorCode.PROCESSING_ERROR
        super().__init__(message, error_code=error_code, retryable=not permanent, details=details)
        self.permanent = permanent


class SystemResourceError(ProcessingError):
    default_error_code = ErrorCode.SYSTEM_ERROR


def classify_exception(exc: BaseException) -> tuple[ErrorCode, bool]:
    """Map any exception to ``(error_code, retryable)``."""
    if isinstance(exc, ProcessingError):
        return exc.error_code, exc.retryable
    if isinstance(exc, PermissionError):
        return ErrorCode.ACCESS_DENIED, False
    if isinstance(exc, FileNotFoundError):
        return ErrorCode.STORAGE_ERROR, True
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ErrorCode.NETWORK_ERROR, True
    if isinstance(exc, MemoryError):
        return ErrorCode.SYSTEM_ERROR, True
    if isinstance(exc, OSError):
        if exc.errno in (errno.ENOSPC, errno.EMFILE, errno.ENFILE, errno.ENOMEM):
            return ErrorCode.SYSTEM_ERROR, True
        if exc.errno in (errno.EACCES, errno.EPERM):
            return ErrorCode.ACCESS_DENIED, False
        return ErrorCode.STORAGE_ERROR, True
    return ErrorCode.PROCESSING_ERROR, True
