# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Global defaults for every folder; each folder may override the
processing values in its own ``processing`` section.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from callbatch.core.models import MIB, ProcessingConfig, RetryPolicy
from callbatch.logging.handlers import parse_size


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Persistence ===
    store_backend: Literal["sqlite", "memory"] = "sqlite"
    store_path: Path = Path("~/.callbatch/callbatch.db")
    download_dir: Path = Path("~/.callbatch/downloads")

    # === Processing defaults ===
    default_max_concurrent_files: int = 5
    default_max_file_size: int = 500 * MIB
    default_allowed_extensions: str = ".mp3,.wav,.m4a,.aac,.ogg"
    default_require_uuid_filename: bool = True
    default_max_retries: int = 3
    default_retry_delay_seconds: int = 60
    default_exponential_backoff: bool = True

    # === Monitoring defaults ===
    default_scan_interval_seconds: int = 300
    default_debounce_ms: int = 2000

    # === Notification delivery ===
    notification_max_attempts: int = 3
    notification_base_delay_s: float = 2.0

    # === Analysis collaborator ===
    analysis_endpoint: str = ""
    analysis_api_key: str = ""
    analysis_timeout_s: int = 300

    # === Management API ===
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: str = ""
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("notification_max_attempts")
    @classmethod
    def validate_notification_attempts(cls, v: int) -> int:  # noqa: N805
        if v < 1:
            raise ValueError("notification_max_attempts must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Reject out-of-range defaults before any folder inherits them."""
        errors: list[str] = []

        if not 1 <= self.default_max_concurrent_files <= 20:
            errors.append("DEFAULT_MAX_CONCURRENT_FILES must be between 1 and 20")
        if not MIB <= self.default_max_file_size <= 2048 * MIB:
            errors.append("DEFAULT_MAX_FILE_SIZE must be between 1MB and 2GB")
        if not 0 <= self.default_max_retries <= 10:
            errors.append("DEFAULT_MAX_RETRIES must be between 0 and 10")
        if not 10 <= self.default_retry_delay_seconds <= 300:
            errors.append("DEFAULT_RETRY_DELAY_SECONDS must be between 10 and 300")
        if not 30 <= self.default_scan_interval_seconds <= 3600:
            errors.append("DEFAULT_SCAN_INTERVAL_SECONDS must be between 30 and 3600")
        if self.default_debounce_ms < 0:
            errors.append("DEFAULT_DEBOUNCE_MS must be >= 0")
        if self.store_backend == "sqlite" and not str(self.store_path).strip():
            errors.append("STORE_PATH must be set when STORE_BACKEND=sqlite")
        try:
            parse_size(self.log_rotation)
        except ValueError:
            errors.append(f"LOG_ROTATION must be a size such as 10MB, got {self.log_rotation!r}")
        if self.log_retention < 0:
            errors.append("LOG_RETENTION must be >= 0")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def allowed_extensions_list(self) -> list[str]:
        """Parse comma-separated extensions, normalised to ``.ext`` lowercase."""
        exts = []
        for raw in self.default_allowed_extensions.split(","):
            ext = raw.strip().lower()
            if not ext:
                continue
            exts.append(ext if ext.startswith(".") else f".{ext}")
        return exts

    def default_processing(self) -> ProcessingConfig:
        """Global processing config with every field filled in."""
        return ProcessingConfig(
            max_file_size=self.default_max_file_size,
            allowed_extensions=self.allowed_extensions_list,
            require_uuid_filename=self.default_require_uuid_filename,
            max_concurrent_files=self.default_max_concurrent_files,
            auto_start=True,
            retry=RetryPolicy(
                enabled=True,
                max_retries=self.default_max_retries,
                delay_seconds=self.default_retry_delay_seconds,
                exponential_backoff=self.default_exponential_backoff,
            ),
        )

    def effective_processing(self, folder: ProcessingConfig) -> ProcessingConfig:
        """Overlay a folder's explicit values on top of the global defaults."""
        defaults = self.default_processing()
        overrides = folder.model_dump(exclude_none=True)
        if "retry" in overrides:
            overrides["retry"] = RetryPolicy(
                **{**defaults.retry.model_dump(), **overrides["retry"]}  # type: ignore[union-attr]
            )
        return defaults.model_copy(update=overrides)


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
