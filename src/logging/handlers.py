# src/logging/handlers.py — v1
"""Size-based rotating file handler for the service log.

Sizes use the same binary units as file-size limits (``10MB`` is
``10 * MIB``); a bare number is a byte count.
"""

from __future__ import annotations

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

from callbatch.core.models import GIB, MIB

_SIZE_RE = re.compile(r"^(\d+)\s*(B|KB|MB|GB)?$", re.IGNORECASE)
_UNITS = {"B": 1, "KB": 1024, "MB": MIB, "GB": GIB}


def parse_size(size_str: str) -> int:
    """Parse ``10MB`` / ``512KB`` / ``1048576`` into bytes."""
    match = _SIZE_RE.match(size_str.strip())
    if not match:
        raise ValueError(f"Invalid size format: {size_str!r}. Use e.g. '10MB'.")
    size = int(match.group(1)) * _UNITS[(match.group(2) or "B").upper()]
    if size <= 0:
        raise ValueError(f"Invalid size format: {size_str!r}. Size must be positive.")
    return size


def create_rotating_handler(
    log_file: str,
    rotation: str = "10MB",
    retention: int = 30,
    formatter: logging.Formatter | None = None,
) -> RotatingFileHandler:
    """Rotating handler for ``log_file``; the file is opened on first write.

    Raises:
        ValueError: If ``rotation`` is not a valid size.
    """
    max_bytes = parse_size(rotation)
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        filename=str(path),
        maxBytes=max_bytes,
        backupCount=retention,
        encoding="utf-8",
        delay=True,
    )
    if formatter is not None:
        handler.setFormatter(formatter)
    return handler
