# src/tracking/store_factory.py — v1
"""Factory for status store instantiation."""

from __future__ import annotations

from callbatch.config.settings import Settings
from callbatch.tracking.base_status_store import BaseStatusStore


def create_status_store(settings: Settings | None = None) -> BaseStatusStore:
    """Instantiate the configured status store backend.

    Args:
        settings: Application settings. Defaults to the in-memory backend.

    Returns:
        Configured BaseStatusStore implementation.
    """
    backend = "memory" if settings is None else settings.store_backend

    if backend == "memory":
        from callbatch.tracking.memory_store import MemoryStatusStore
        return MemoryStatusStore()

    if backend == "sqlite":
        from callbatch.tracking.sqlite_store import SqliteStatusStore
        return SqliteStatusStore(db_path=settings.store_path)  # type: ignore[union-attr]

    raise ValueError(f"Unsupported status store backend: {backend!r}")
