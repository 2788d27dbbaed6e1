# src/core/models.py — v1
"""Core data models shared by every batch ingestion component.

Folder, job, record and notification configuration entities plus the
value objects that flow between monitors, the orchestrator and
notification providers.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Timezone-aware current time (UTC)."""
    return datetime.now(timezone.utc)


# === ENUMS ===


class FileStatus(str, Enum):
    DISCOVERED = "discovered"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    SKIPPED = "skipped"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_JOB_STATES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


class ErrorCode(str, Enum):
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    INVALID_FORMAT = "INVALID_FORMAT"
    INVALID_FILENAME = "INVALID_FILENAME"
    ACCESS_DENIED = "ACCESS_DENIED"
    CORRUPTED_FILE = "CORRUPTED_FILE"
    DUPLICATE_FILE = "DUPLICATE_FILE"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    SYSTEM_ERROR = "SYSTEM_ERROR"
    MAX_RETRIES_EXCEEDED = "MAX_RETRIES_EXCEEDED"
    JOB_CANCELLED = "JOB_CANCELLED"


class ProviderKind(str, Enum):
    STORAGE = "storage"
    MONITOR = "monitor"
    NOTIFICATION = "notification"


class StorageType(str, Enum):
    LOCAL = "local"
    S3 = "s3"


class MonitorType(str, Enum):
    POLLING = "polling"
    EVENTS = "events"
    CLOUD_EVENTS = "cloud-events"


class NotificationType(str, Enum):
    EMAIL = "email"
    WEBHOOK = "webhook"
    CHAT = "chat"
    SMS = "sms"


class NotificationCondition(str, Enum):
    FILE_PROCESSED = "file_processed"
    FILE_FAILED = "file_failed"
    FILE_SKIPPED = "file_skipped"
    BATCH_COMPLETED = "batch_completed"
    BATCH_FAILED = "batch_failed"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


DEFAULT_AUDIO_EXTENSIONS: list[str] = [".mp3", ".wav", ".m4a", ".aac", ".ogg"]

MIB = 1024 * 1024
GIB = 1024 * MIB


# === CONFIGURATION ENTITIES ===


class ProviderSpec(BaseModel):
    """A typed provider fragment: ``{"type": ..., "config": {...}}``."""

    type: str
    config: dict[str, Any] = Field(default_factory=dict)


class RetryPolicy(BaseModel):
    """File-level retry budget."""

    enabled: bool = True
    max_retries: int = 3
    delay_seconds: float = 60
    exponential_backoff: bool = True
    max_delay_seconds: float = 3600

    def delay_for(self, attempt: int) -> float:
        """Delay before retry ``attempt`` (0-based), capped at ``max_delay_seconds``."""
        if self.exponential_backoff:
            return min(self.delay_seconds * (2 ** attempt), self.max_delay_seconds)
        return self.delay_seconds


class ProcessingConfig(BaseModel):
    """Per-folder processing limits; ``None`` means use the global default."""

    max_file_size: int | None = None
    allowed_extensions: list[str] | None = None
    require_uuid_filename: bool | None = None
    max_concurrent_files: int | None = None
    auto_start: bool = True
    retry: RetryPolicy | None = None


class FolderConfig(BaseModel):
    """One watched source and the providers that serve it."""

    id: int | None = None
    name: str
    storage: ProviderSpec
    monitor: ProviderSpec
    processing: ProcessingConfig = Field(default_factory=ProcessingConfig)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class NotificationConfig(BaseModel):
    """A named, typed notification channel and its trigger conditions."""

    id: int | None = None
    name: str
    type: NotificationType
    config: dict[str, Any] = Field(default_factory=dict)
    conditions: list[NotificationCondition] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# === PROCESSING ENTITIES ===


class BatchJob(BaseModel):
    """One discovery-to-completion run over a folder."""

    id: int | None = None
    folder_id: int
    name: str
    status: JobStatus = JobStatus.PENDING
    total_files: int = 0
    processed_files: int = 0
    failed_files: int = 0
    skipped_files: int = 0
    cancel_requested: bool = False
    error_message: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATES

    @property
    def settled_files(self) -> int:
        return self.processed_files + self.failed_files + self.skipped_files


class StatusChange(BaseModel):
    """A single persisted lifecycle transition."""

    from_status: FileStatus | None
    to_status: FileStatus
    at: datetime = Field(default_factory=utcnow)
    error_code: ErrorCode | None = None


class FileProcessingRecord(BaseModel):
    """Lifecycle and error tracking for one discovered file."""

    id: int | None = None
    batch_job_id: int
    folder_id: int
    file_name: str
    file_path: str
    file_size: int = 0
    modified_at: datetime | None = None
    status: FileStatus = FileStatus.DISCOVERED
    error_code: ErrorCode | None = None
    error_message: str | None = None
    error_details: dict[str, Any] | None = None
    retry_count: int = 0
    max_retries: int = 3
    analysis_ref: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None
    history: list[StatusChange] = Field(default_factory=list)


# === VALUE OBJECTS ===


class DiscoveredFile(BaseModel):
    """A file reported by a monitor or a storage listing."""

    name: str
    path: str
    size: int = 0
    modified_at: datetime | None = None


class DiscoveryEvent(BaseModel):
    """A batch of discoveries delivered from a monitor to the orchestrator."""

    folder_id: int
    files: list[DiscoveredFile] = Field(default_factory=list)
    source: str = "monitor"
    timestamp: datetime = Field(default_factory=utcnow)


class MonitorHandle(BaseModel):
    """Opaque reference to a running watch."""

    id: str
    monitor_type: MonitorType
    path: str
    started_at: datetime = Field(default_factory=utcnow)


class Notification(BaseModel):
    """Payload handed to notification providers."""

    condition: NotificationCondition | str
    severity: Severity = Severity.INFO
    title: str = ""
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class NotificationResult(BaseModel):
    """Delivery outcome reported by a notification provider."""

    success: bool
    provider: str
    message_id: str | None = None
    error: str | None = None
    sent_at: datetime = Field(default_factory=utcnow)


class ValidationResult(BaseModel):
    """Outcome of a configuration validation; never mutates its input."""

    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_errors(
        cls, errors: list[str], warnings: list[str] | None = None,
    ) -> ValidationResult:
        return cls(valid=not errors, errors=list(errors), warnings=list(warnings or []))

    def merge(self, other: ValidationResult) -> ValidationResult:
        return ValidationResult.from_errors(
            self.errors + other.errors, self.warnings + other.warnings,
        )


class AnalysisOutcome(BaseModel):
    """Result returned by the external analysis collaborator."""

    transcript: str = ""
    scores: dict[str, float] = Field(default_factory=dict)
    confidence: float = 0.0
    analysis_ref: str | None = None


class StatusUpdate(BaseModel):
    """Real-time status channel message."""

    kind: str  # "record" or "job"
    folder_id: int
    job_id: int | None = None
    record_id: int | None = None
    status: str
    previous_status: str | None = None
    error_code: ErrorCode | None = None
    file_name: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)
