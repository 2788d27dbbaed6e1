# tests/unit/batch/test_unit_file_validator.py — v1
"""Tests for batch/file_validator.py — pre-flight file checks."""

from __future__ import annotations

import uuid

import pytest

from callbatch.batch.file_validator import check_file, check_static
from callbatch.core.models import MIB, DiscoveredFile, ErrorCode, FileStatus, ProcessingConfig

PROCESSING = ProcessingConfig(
    max_file_size=500 * MIB,
    allowed_extensions=[".mp3", ".wav"],
    require_uuid_filename=True,
)


def _file(name: str | None = None, size: int = 1024) -> DiscoveredFile:
    name = name or f"{uuid.uuid4()}.mp3"
    return DiscoveredFile(name=name, path=f"/data/{name}", size=size)


class TestCheckStatic:
    def test_accepts_valid_file(self):
        assert check_static(_file(), PROCESSING) is None

    def test_too_large(self):
        rejection = check_static(_file(size=600 * MIB), PROCESSING)
        assert rejection.error_code is ErrorCode.FILE_TOO_LARGE
        assert rejection.message == "File size 600.0MB exceeds limit of 500.0MB"

    def test_size_at_limit_is_allowed(self):
        assert check_static(_file(size=500 * MIB), PROCESSING) is None

    def test_bad_extension(self):
        rejection = check_static(_file(f"{uuid.uuid4()}.flac"), PROCESSING)
        assert rejection.error_code is ErrorCode.INVALID_FORMAT

    def test_extension_case_insensitive(self):
        assert check_static(_file(f"{uuid.uuid4()}.MP3"), PROCESSING) is None

    def test_non_uuid_name(self):
        rejection = check_static(_file("call-monday.mp3"), PROCESSING)
        assert rejection.error_code is ErrorCode.INVALID_FILENAME

    def test_uuid_not_required(self):
        relaxed = PROCESSING.model_copy(update={"require_uuid_filename": False})
        assert check_static(_file("call-monday.mp3"), relaxed) is None

    def test_size_checked_first(self):
        rejection = check_static(_file("notes.txt", size=600 * MIB), PROCESSING)
        assert rejection.error_code is ErrorCode.FILE_TOO_LARGE


class TestCheckFile:
    @pytest.mark.asyncio
    async def test_duplicate_of_completed(self, store, job, record_factory):
        file = _file()
        await record_factory(job, file_name=file.name, status=FileStatus.COMPLETED)
        rejection = await check_file(file, PROCESSING, store, job.folder_id)
        assert rejection.error_code is ErrorCode.DUPLICATE_FILE

    @pytest.mark.asyncio
    async def test_failed_previous_is_not_duplicate(self, store, job, record_factory):
        file = _file()
        await record_factory(job, file_name=file.name, status=FileStatus.FAILED)
        assert await check_file(file, PROCESSING, store, job.folder_id) is None
