# src/providers/registry.py — v1
"""Provider registry — catalog of live provider instances.

Owned by the orchestrator's lifetime: constructed explicitly, torn down
with ``shutdown()``. Entries are keyed by ``(kind, name)``; ``name``
defaults to the provider type, so a lookup by type works for singleton
providers while per-folder instances get their own names.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from callbatch.core.errors import MonitorConflict, ProviderNotFound
from callbatch.core.models import ProviderKind

logger = logging.getLogger(__name__)


@dataclass
class RegistryEntry:
    kind: ProviderKind
    name: str
    type_name: str
    instance: Any


class ProviderRegistry:
    """In-memory map of ``(kind, name)`` to provider instance."""

    def __init__(self) -> None:
        self._entries: dict[tuple[ProviderKind, str], RegistryEntry] = {}
        self._claimed_paths: dict[str, str] = {}

    def register(
        self,
        kind: ProviderKind,
        type_name: str,
        instance: Any,
        name: str | None = None,
    ) -> None:
        """Register an instance; re-registering a name replaces it."""
        key = (ProviderKind(kind), name or type_name)
        if key in self._entries:
            logger.warning("Overwriting %s provider: %s", key[0].value, key[1])
        self._entries[key] = RegistryEntry(key[0], key[1], type_name, instance)
        logger.debug("Registered %s provider %s (%s)", key[0].value, key[1], type_name)

    def get(self, kind: ProviderKind, name: str) -> Any:
        """Return the instance registered under ``name``.

        Raises:
            ProviderNotFound: If nothing is registered under that name.
        """
        entry = self._entries.get((ProviderKind(kind), name))
        if entry is None:
            raise ProviderNotFound(ProviderKind(kind).value, name, self.names(kind))
        return entry.instance

    def get_by_type(self, kind: ProviderKind, type_name: str) -> Any:
        """Return the first instance of ``type_name``."""
        kind = ProviderKind(kind)
        for entry in self._entries.values():
            if entry.kind == kind and entry.type_name == type_name:
                return entry.instance
        raise ProviderNotFound(kind.value, type_name, self.types(kind))

    def contains(self, kind: ProviderKind, name: str) -> bool:
        return (ProviderKind(kind), name) in self._entries

    def names(self, kind: ProviderKind) -> list[str]:
        kind = ProviderKind(kind)
        return sorted(n for (k, n) in self._entries if k == kind)

    def types(self, kind: ProviderKind) -> list[str]:
        kind = ProviderKind(kind)
        return sorted({e.type_name for e in self._entries.values() if e.kind == kind})

    def list_all(self) -> list[RegistryEntry]:
        """All entries ordered by kind then name."""
        return sorted(self._entries.values(), key=lambda e: (e.kind.value, e.name))

    async def unregister(self, kind: ProviderKind, name: str) -> Any | None:
        """Remove and close one instance; returns it, or None if absent."""
        entry = self._entries.pop((ProviderKind(kind), name), None)
        if entry is None:
            return None
        await _close_quietly(entry)
        return entry.instance

    # --- Monitor path ownership ---

    def claim_path(self, path: str, owner: str) -> None:
        """Reserve a physical path for one monitor.

        Raises:
            MonitorConflict: If another owner already watches ``path``.
        """
        current = self._claimed_paths.get(path)
        if current is not None and current != owner:
            raise MonitorConflict(path, current)
        self._claimed_paths[path] = owner

    def release_path(self, path: str, owner: str) -> None:
        if self._claimed_paths.get(path) == owner:
            del self._claimed_paths[path]

    def path_owner(self, path: str) -> str | None:
        return self._claimed_paths.get(path)

    async def shutdown(self) -> None:
        """Close every provider (monitors first, so discovery stops first)."""
        order = {ProviderKind.MONITOR: 0, ProviderKind.STORAGE: 1, ProviderKind.NOTIFICATION: 2}
        entries = sorted(self._entries.values(), key=lambda e: order[e.kind])
        for entry in entries:
            await _close_quietly(entry)
        self._entries.clear()
        self._claimed_paths.clear()
        logger.info("Provider registry shut down (%d providers closed)", len(entries))


async def _close_quietly(entry: RegistryEntry) -> None:
    close = getattr(entry.instance, "close", None)
    if close is None:
        return
    try:
        await close()
    except Exception:
        logger.exception("Error closing %s provider %s", entry.kind.value, entry.name)
