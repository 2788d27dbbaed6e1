# src/providers/monitors/polling_monitor.py — v1
"""Polling monitor (monitor type ``polling``).

Lists the watched location every ``scan_interval`` seconds and reports
files that are new or changed (size/mtime) since the previous scan.
The first scan reports everything present.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from callbatch.core.models import DiscoveredFile, MonitorHandle, MonitorType, ValidationResult
from callbatch.providers.base_monitor import BaseMonitor, DiscoverySink
from callbatch.providers.storage.local_storage import scan_directory
from callbatch.validation.config_validator import validate_polling_config

logger = logging.getLogger(__name__)

DEFAULT_SCAN_INTERVAL_S = 300


@dataclass
class _PollState:
    handle: MonitorHandle
    config: dict[str, Any]
    sink: DiscoverySink
    seen: dict[str, tuple[int, datetime | None]] = field(default_factory=dict)
    task: asyncio.Task | None = None


class PollingMonitor(BaseMonitor):
    """Periodic single-task scan producing a diff against the last listing."""

    def __init__(self) -> None:
        super().__init__()
        self._states: dict[str, _PollState] = {}

    @property
    def provider_type(self) -> str:
        return MonitorType.POLLING.value

    @property
    def active_handles(self) -> list[MonitorHandle]:
        return [s.handle for s in self._states.values()]

    def watch_path(self, config: dict[str, Any]) -> str:
        # Scans go through the attached storage when there is one.
        if self.storage_root is not None:
            return self.storage_root
        return super().watch_path(config)

    async def start_monitoring(
        self, config: dict[str, Any], sink: DiscoverySink
    ) -> MonitorHandle:
        handle = MonitorHandle(
            id=uuid.uuid4().hex,
            monitor_type=MonitorType.POLLING,
            path=str(config["path"]),
        )
        state = _PollState(handle=handle, config=dict(config), sink=sink)
        self._states[handle.id] = state
        state.task = asyncio.create_task(
            self._run(state), name=f"poll-monitor-{handle.id[:8]}"
        )
        logger.info(
            "Polling monitor started: %s (every %ss)",
            handle.path, config.get("scan_interval", DEFAULT_SCAN_INTERVAL_S),
        )
        return handle

    async def stop_monitoring(self, handle: MonitorHandle) -> None:
        state = self._states.pop(handle.id, None)
        if state is None or state.task is None:
            return
        state.task.cancel()
        try:
            await state.task
        except asyncio.CancelledError:
            pass
        logger.info("Polling monitor stopped: %s", handle.path)

    async def _run(self, state: _PollState) -> None:
        interval = float(state.config.get("scan_interval", DEFAULT_SCAN_INTERVAL_S))
        while True:
            try:
                await self._poll_state(state)
            except Exception:
                # Keep polling; a transient listing failure must not end discovery.
                logger.exception("Polling scan failed for %s", state.handle.path)
            await asyncio.sleep(interval)

    async def poll(self, handle: MonitorHandle) -> list[DiscoveredFile]:
        """Run one scan cycle now and return what it reported."""
        state = self._states.get(handle.id)
        if state is None:
            return []
        return await self._poll_state(state)

    async def _poll_state(self, state: _PollState) -> list[DiscoveredFile]:
        listing = await self._list(state.config)
        patterns = state.config.get("file_patterns") or ["*"]
        current: dict[str, tuple[int, datetime | None]] = {}
        changed: list[DiscoveredFile] = []
        for f in listing:
            if not any(fnmatch.fnmatch(f.name, p) for p in patterns):
                continue
            signature = (f.size, f.modified_at)
            current[f.path] = signature
            if state.seen.get(f.path) != signature:
                changed.append(f)
        state.seen = current
        if changed:
            logger.info("Polling found %d new/changed files in %s", len(changed), state.handle.path)
            state.sink(changed)
        return changed

    async def _list(self, config: dict[str, Any]) -> list[DiscoveredFile]:
        if self.storage is not None:
            return await self.storage.list_files()
        return await asyncio.to_thread(scan_directory, Path(config["path"]).expanduser())

    @classmethod
    def validate_config(cls, config: dict[str, Any]) -> ValidationResult:
        return validate_polling_config(config)
