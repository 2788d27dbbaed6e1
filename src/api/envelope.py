# src/api/envelope.py — v1
"""Response envelope and error → HTTP status mapping.

Success: ``{"success": true, "data": ..., "timestamp": ...}``
Failure: ``{"success": false, "error": {"code", "message", "details"}, "timestamp": ...}``
"""

from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder

from callbatch.config.settings import ConfigurationError
from callbatch.core.errors import (
    CallBatchError,
    ConfigurationInvalid,
    FolderInactive,
    FolderInUse,
    InvalidTransition,
    JobNotCancellable,
    MonitorConflict,
    NotFoundError,
    ProviderNotFound,
    RetryNotAllowed,
)
from callbatch.core.models import utcnow

_STATUS_BY_ERROR: tuple[tuple[type[Exception], int], ...] = (
    (NotFoundError, 404),
    (ConfigurationInvalid, 400),
    (ProviderNotFound, 400),
    (ConfigurationError, 400),
    (MonitorConflict, 409),
    (InvalidTransition, 409),
    (FolderInUse, 409),
    (FolderInactive, 409),
    (RetryNotAllowed, 409),
    (JobNotCancellable, 409),
)


def success(data: Any = None, message: str | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {
        "success": True,
        "data": jsonable_encoder(data),
        "timestamp": utcnow().isoformat(),
    }
    if message:
        body["message"] = message
    return body


def failure(code: str, message: str, details: Any = None) -> dict[str, Any]:
    return {
        "success": False,
        "error": {"code": code, "message": message, "details": jsonable_encoder(details)},
        "timestamp": utcnow().isoformat(),
    }


def status_for(exc: Exception) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def failure_for(exc: Exception) -> dict[str, Any]:
    """Envelope body for any exception raised by a route."""
    if isinstance(exc, CallBatchError):
        return failure(exc.code, exc.message, exc.details or None)
    if isinstance(exc, ConfigurationError):
        return failure("CONFIGURATION_INVALID", str(exc))
    return failure("INTERNAL_ERROR", "Internal server error")
