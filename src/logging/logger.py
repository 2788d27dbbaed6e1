# src/logging/logger.py — v1
"""Logger factory with JSON and text formatters.

Every record carries the folder/job/record/provider context of the
worker that emitted it.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from callbatch.logging.context import get_context
from callbatch.logging.handlers import create_rotating_handler

if TYPE_CHECKING:
    from callbatch.config.settings import Settings


class JsonFormatter(logging.Formatter):
    """One JSON object per line; context under ``context``."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_context()
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context_dict = ctx.as_dict()
        if context_dict:
            log_entry["context"] = context_dict

        # Extra data passed via extra={"data": {...}}
        if hasattr(record, "data") and record.data:  # type: ignore[attr-defined]
            log_entry["data"] = record.data  # type: ignore[attr-defined]

        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_context()
        parts = [
            datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
            f"[{record.levelname:8s}]",
            record.name,
        ]
        if ctx.folder_id is not None:
            parts.append(f"[folder={ctx.folder_id}]")
        if ctx.job_id is not None:
            parts.append(f"[job={ctx.job_id}]")
        if ctx.record_id is not None:
            parts.append(f"(record={ctx.record_id})")
        if ctx.provider:
            parts.append(f"<{ctx.provider}>")
        parts.append(f"- {record.getMessage()}")
        line = " ".join(parts)
        if record.exc_info and record.exc_info[1] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


# Client libraries that log every request at INFO/DEBUG.
_NOISY_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "httpx", "httpcore", "watchdog")


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: str | None = None,
    rotation: str = "10MB",
    retention: int = 30,
) -> None:
    """Configure the ``callbatch`` logger tree.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format ("json" or "text").
        log_file: Path to a rotating log file (None = stdout only).
        rotation: Max file size before rotation (e.g. "10MB").
        retention: Number of rotated files to keep.
    """
    root_logger = logging.getLogger("callbatch")
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicates on re-init
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter = JsonFormatter() if log_format == "json" else TextFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        root_logger.addHandler(
            create_rotating_handler(log_file, rotation=rotation, retention=retention, formatter=formatter)
        )

    noisy_level = logging.DEBUG if root_logger.level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def setup_from_settings(settings: Settings) -> None:
    """Apply the logging section of the service settings."""
    setup_logging(
        level=settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file.strip() or None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
