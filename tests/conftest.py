# tests/conftest.py — v1
"""Shared test fixtures for all unit and integration tests.

Provides settings, an in-memory status store, a scripted analyzer,
UUID-named audio files in temp directories and folder builders.
No external dependencies — every network collaborator is mocked.
"""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path
from typing import Any

import pytest

from callbatch.analysis.base_analyzer import BaseAnalyzer
from callbatch.config.settings import Settings
from callbatch.core.models import (
    AnalysisOutcome,
    BatchJob,
    DiscoveredFile,
    FileProcessingRecord,
    FolderConfig,
    Notification,
    NotificationResult,
    ProcessingConfig,
    ProviderSpec,
    RetryPolicy,
    ValidationResult,
)
from callbatch.providers.base_notifier import BaseNotifier
from callbatch.tracking.memory_store import MemoryStatusStore
from callbatch.validation.config_validator import validate_webhook_config


# === Helpers ===


class ScriptedAnalyzer(BaseAnalyzer):
    """Analyzer whose outcome per file name is scripted by the test.

    ``failures[name]`` is a list of exceptions raised on successive calls
    for that file; once exhausted, calls succeed.
    """

    def __init__(self, delay_s: float = 0.0) -> None:
        self.failures: dict[str, list[Exception]] = {}
        self.calls: list[str] = []
        self.delay_s = delay_s
        self.active = 0
        self.peak_active = 0

    async def analyze(self, file_path: str, metadata: dict[str, Any]) -> AnalysisOutcome:
        name = metadata["file_name"]
        self.calls.append(name)
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
            pending = self.failures.get(name)
            if pending:
                raise pending.pop(0)
            return AnalysisOutcome(transcript="hello", confidence=0.9, analysis_ref=f"ref-{name}")
        finally:
            self.active -= 1


def write_audio(directory: Path, size: int = 1024, suffix: str = ".mp3", name: str | None = None) -> Path:
    """Create a file named ``<uuid><suffix>`` (or ``name``) of ``size`` bytes."""
    path = directory / (name or f"{uuid.uuid4()}{suffix}")
    path.write_bytes(b"\0" * size)
    return path


def make_folder(
    path: Path,
    name: str = "Inbox",
    monitor: str = "polling",
    retry: RetryPolicy | None = None,
    **processing: Any,
) -> FolderConfig:
    monitor_config: dict[str, Any] = {"path": str(path)}
    if monitor == "polling":
        monitor_config["scan_interval"] = 3600
    return FolderConfig(
        name=name,
        storage=ProviderSpec(type="local", config={"path": str(path)}),
        monitor=ProviderSpec(type=monitor, config=monitor_config),
        processing=ProcessingConfig(
            retry=retry or RetryPolicy(max_retries=3, delay_seconds=0, exponential_backoff=False),
            **processing,
        ),
    )


def folder_body(path: Path, **overrides: Any) -> dict[str, Any]:
    """JSON body for the configuration API; retry delay kept inside the allowed range."""
    folder = make_folder(path, retry=RetryPolicy(max_retries=3, delay_seconds=10))
    body = folder.model_dump(mode="json", exclude={"id", "created_at", "updated_at"})
    body.update(overrides)
    return body


# === FIXTURES ===


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        store_backend="memory",
        download_dir=tmp_path / "downloads",
        notification_base_delay_s=0.0,
    )


@pytest.fixture
def store() -> MemoryStatusStore:
    return MemoryStatusStore()


@pytest.fixture
def analyzer() -> ScriptedAnalyzer:
    return ScriptedAnalyzer()


@pytest.fixture
def inbox(tmp_path: Path) -> Path:
    directory = tmp_path / "inbox"
    directory.mkdir()
    return directory


@pytest.fixture
def discovered_file() -> DiscoveredFile:
    return DiscoveredFile(
        name=f"{uuid.uuid4()}.mp3", path="/data/inbox/call.mp3", size=2048,
    )


@pytest.fixture
async def job(store: MemoryStatusStore, inbox: Path) -> BatchJob:
    folder = await store.create_folder(make_folder(inbox))
    return await store.create_job(BatchJob(folder_id=folder.id, name="job"))


@pytest.fixture
def record_factory(store: MemoryStatusStore):
    async def _make(job: BatchJob, **fields: Any) -> FileProcessingRecord:
        data: dict[str, Any] = {
            "batch_job_id": job.id,
            "folder_id": job.folder_id,
            "file_name": f"{uuid.uuid4()}.mp3",
            "file_path": "/data/inbox/call.mp3",
            "file_size": 1024,
        }
        data.update(fields)
        return await store.create_record(FileProcessingRecord(**data))

    return _make


def make_recording_notifier(failures: int = 0, always_fail: bool = False) -> type[BaseNotifier]:
    """A fresh notifier class that records what it delivers.

    The first ``failures`` sends report ``success=False``; with
    ``always_fail`` every send does. Config rules are the webhook ones.
    """

    class RecordingNotifier(BaseNotifier):
        sent: list[Notification] = []
        attempts = 0
        remaining_failures = failures

        @property
        def provider_type(self) -> str:
            return "webhook"

        async def send_notification(self, notification: Notification) -> NotificationResult:
            cls = type(self)
            cls.attempts += 1
            if always_fail or cls.remaining_failures > 0:
                cls.remaining_failures -= 1
                return self._failure("Webhook returned HTTP 503")
            cls.sent.append(notification)
            return NotificationResult(success=True, provider=self.provider_type)

        @classmethod
        def validate_config(cls, config: dict[str, Any]) -> ValidationResult:
            return validate_webhook_config(config)

    return RecordingNotifier
