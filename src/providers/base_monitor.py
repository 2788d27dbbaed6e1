# src/providers/base_monitor.py — v1
"""Abstract file monitor interface.

Monitors never call processing logic; they hand discovered files to a
sink which enqueues them for the orchestrator.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable

from callbatch.core.models import DiscoveredFile, MonitorHandle, ValidationResult
from callbatch.providers.base_storage import BaseStorageProvider

# Non-blocking callback: receives a batch of newly discovered files.
DiscoverySink = Callable[[list[DiscoveredFile]], None]


class BaseMonitor(ABC):
    """Unified interface for discovery monitors."""

    def __init__(self) -> None:
        self.storage: BaseStorageProvider | None = None
        self.storage_root: str | None = None

    def attach_storage(
        self, storage: BaseStorageProvider, storage_config: dict[str, Any] | None = None
    ) -> None:
        """Let the monitor list files through the folder's storage provider."""
        self.storage = storage
        if storage_config is not None:
            self.storage_root = storage.watch_path(storage_config)

    def watch_path(self, config: dict[str, Any]) -> str:
        """Physical location this monitor observes; two monitors may not share one."""
        return canonical_path(str(config["path"]))

    @property
    @abstractmethod
    def provider_type(self) -> str:
        """Provider identifier (polling, events, cloud-events)."""

    @abstractmethod
    async def start_monitoring(
        self, config: dict[str, Any], sink: DiscoverySink
    ) -> MonitorHandle:
        """Start watching and return a handle for stop_monitoring()."""

    @abstractmethod
    async def stop_monitoring(self, handle: MonitorHandle) -> None:
        """Stop one watch. Unknown handles are ignored."""

    @classmethod
    @abstractmethod
    def validate_config(cls, config: dict[str, Any]) -> ValidationResult:
        """Check a configuration fragment without side effects."""

    @property
    @abstractmethod
    def active_handles(self) -> list[MonitorHandle]:
        """Currently running watches."""

    async def close(self) -> None:
        """Stop every running watch."""
        for handle in list(self.active_handles):
            await self.stop_monitoring(handle)


def canonical_path(path: str) -> str:
    """Resolve local paths; remote URIs (``s3://bucket/prefix``) are kept as given."""
    if "://" in path:
        return path.rstrip("/")
    return str(Path(path).expanduser().resolve())
