# src/providers/storage/local_storage.py — v1
"""Local filesystem storage provider (storage type ``local``)."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from callbatch.core.errors import StorageError
from callbatch.core.models import DiscoveredFile, ErrorCode, StorageType, ValidationResult
from callbatch.providers.base_storage import BaseStorageProvider
from callbatch.validation.config_validator import validate_local_storage_config

logger = logging.getLogger(__name__)


class LocalStorageProvider(BaseStorageProvider):
    """List and copy files from a local directory."""

    concurrent_safe = True

    def __init__(self) -> None:
        self._root: Path | None = None

    @property
    def provider_type(self) -> str:
        return StorageType.LOCAL.value

    @property
    def root(self) -> Path:
        if self._root is None:
            raise StorageError("Local storage provider is not connected")
        return self._root

    async def connect(self, config: dict[str, Any]) -> None:
        """Resolve the root directory and check it is readable."""
        root = Path(config["path"]).expanduser()
        if not root.is_dir():
            raise StorageError(f"Local path does not exist or is not a directory: {root}")
        if not os.access(root, os.R_OK):
            raise StorageError(
                f"No read permission for path: {root}",
                error_code=ErrorCode.ACCESS_DENIED,
                retryable=False,
            )
        self._root = root.resolve()
        logger.info("Local storage connected: %s", self._root)

    def _resolve(self, path: str | None) -> Path:
        if not path:
            return self.root
        candidate = Path(path)
        return candidate if candidate.is_absolute() else self.root / candidate

    async def list_files(self, path: str | None = None) -> list[DiscoveredFile]:
        """List regular files directly under ``path``."""
        directory = self._resolve(path)
        return await asyncio.to_thread(scan_directory, directory)

    async def download_file(self, remote_path: str, local_path: str) -> str:
        """Copy a file into the local staging area."""
        src = self._resolve(remote_path)
        dst = Path(local_path)
        try:
            await asyncio.to_thread(_copy_file, src, dst)
        except PermissionError as e:
            raise StorageError(
                f"Access denied reading {src}: {e}",
                error_code=ErrorCode.ACCESS_DENIED,
                retryable=False,
            ) from e
        except FileNotFoundError as e:
            raise StorageError(f"File not found: {src}") from e
        logger.debug("Local copy: %s → %s", src, dst)
        return str(dst)

    @classmethod
    def validate_config(cls, config: dict[str, Any]) -> ValidationResult:
        result = validate_local_storage_config(config)
        if not result.valid:
            return result
        path = Path(config["path"]).expanduser()
        errors: list[str] = []
        if not path.exists():
            errors.append(f"Local path does not exist: {config['path']}")
        elif not path.is_dir():
            errors.append(f"Path is not a directory: {config['path']}")
        elif not os.access(path, os.R_OK):
            errors.append(f"No read permission for path: {config['path']}")
        return ValidationResult.from_errors(errors, result.warnings)

    def watch_path(self, config: dict[str, Any]) -> str:
        return str(Path(config["path"]).expanduser().resolve())

    async def close(self) -> None:
        self._root = None


def scan_directory(directory: Path) -> list[DiscoveredFile]:
    files: list[DiscoveredFile] = []
    with os.scandir(directory) as entries:
        for entry in entries:
            if not entry.is_file() or entry.name.startswith("."):
                continue
            stat = entry.stat()
            files.append(
                DiscoveredFile(
                    name=entry.name,
                    path=str(Path(entry.path).resolve()),
                    size=stat.st_size,
                    modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
    return sorted(files, key=lambda f: f.name)


def _copy_file(src: Path, dst: Path) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(str(src), str(dst))
