# src/batch/file_validator.py — v1
"""Pre-flight validation of discovered files.

Checks run in a fixed order (size, extension, file name, duplicate) and
the first failure wins. A failing file is ``skipped`` and never retried.

Decision flow per file:
  1. size > max_file_size            → FILE_TOO_LARGE
  2. extension not allowed           → INVALID_FORMAT
  3. stem is not a UUID (if required) → INVALID_FILENAME
  4. same name already completed     → DUPLICATE_FILE
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath

from callbatch.core.models import MIB, DiscoveredFile, ErrorCode, ProcessingConfig
from callbatch.tracking.base_status_store import BaseStatusStore
from callbatch.validation.config_validator import is_uuid_filename


@dataclass(frozen=True)
class Rejection:
    """Why a file was refused before dispatch."""

    error_code: ErrorCode
    message: str


def _extension(file_name: str) -> str:
    return PurePosixPath(file_name).suffix.lower()


def check_static(file: DiscoveredFile, processing: ProcessingConfig) -> Rejection | None:
    """Size, extension and name checks against fully resolved settings."""
    max_size = processing.max_file_size
    if max_size is not None and file.size > max_size:
        return Rejection(
            ErrorCode.FILE_TOO_LARGE,
            f"File size {file.size / MIB:.1f}MB exceeds limit of {max_size / MIB:.1f}MB",
        )

    allowed = [e.lower() if e.startswith(".") else f".{e.lower()}" for e in processing.allowed_extensions or []]
    ext = _extension(file.name)
    if allowed and ext not in allowed:
        return Rejection(
            ErrorCode.INVALID_FORMAT,
            f"File extension '{ext or '(none)'}' is not allowed (allowed: {', '.join(allowed)})",
        )

    if processing.require_uuid_filename and not is_uuid_filename(file.name):
        return Rejection(
            ErrorCode.INVALID_FILENAME, f"File name '{file.name}' does not match UUID pattern"
        )
    return None


async def check_file(
    file: DiscoveredFile,
    processing: ProcessingConfig,
    store: BaseStatusStore,
    folder_id: int,
) -> Rejection | None:
    """Full pre-flight check including the duplicate lookup."""
    rejection = check_static(file, processing)
    if rejection is not None:
        return rejection

    previous = await store.find_completed_by_name(folder_id, file.name)
    if previous is not None:
        return Rejection(
            ErrorCode.DUPLICATE_FILE,
            f"File '{file.name}' was already processed (record {previous.id})",
        )
    return None
