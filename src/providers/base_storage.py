# src/providers/base_storage.py — v1
"""Abstract storage provider interface.

A storage provider lists and downloads files from one watched location
(a local directory, an object-storage bucket/prefix).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from callbatch.core.models import DiscoveredFile, ValidationResult


class BaseStorageProvider(ABC):
    """Unified interface for storage back-ends."""

    # Whether the orchestrator may issue overlapping calls into one instance.
    concurrent_safe: bool = False

    @property
    @abstractmethod
    def provider_type(self) -> str:
        """Provider identifier (local, s3)."""

    @abstractmethod
    async def connect(self, config: dict[str, Any]) -> None:
        """Bind the provider to its location and check it is reachable."""

    @abstractmethod
    async def list_files(self, path: str | None = None) -> list[DiscoveredFile]:
        """List files (non-recursive) under ``path`` or the configured root."""

    @abstractmethod
    async def download_file(self, remote_path: str, local_path: str) -> str:
        """Copy ``remote_path`` to ``local_path`` and return the local path."""

    @classmethod
    @abstractmethod
    def validate_config(cls, config: dict[str, Any]) -> ValidationResult:
        """Check a configuration fragment without side effects."""

    def watch_path(self, config: dict[str, Any]) -> str:
        """Canonical identity of the location, used for monitor conflicts."""
        return str(config.get("path", ""))

    async def close(self) -> None:
        """Release connections. Default: nothing to release."""
