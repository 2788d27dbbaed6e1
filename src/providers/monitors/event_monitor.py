# src/providers/monitors/event_monitor.py — v1
"""Event-driven monitor (monitor type ``events``) using OS notifications.

watchdog delivers events on its observer thread; they are marshalled
onto the asyncio loop and debounced per file before discovery.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from callbatch.core.models import DiscoveredFile, MonitorHandle, MonitorType, ValidationResult
from callbatch.providers.base_monitor import BaseMonitor, DiscoverySink
from callbatch.providers.monitors.debounce import Debouncer
from callbatch.validation.config_validator import validate_events_config

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 2000


class _ForwardingHandler(FileSystemEventHandler):
    """Runs on the observer thread; forwards file paths to the loop."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        debouncer: Debouncer,
        extensions: set[str] | None,
    ) -> None:
        super().__init__()
        self._loop = loop
        self._debouncer = debouncer
        self._extensions = extensions

    def _forward(self, path: str) -> None:
        p = Path(path)
        if p.name.startswith("."):
            return
        if self._extensions and p.suffix.lower() not in self._extensions:
            return
        self._loop.call_soon_threadsafe(self._debouncer.touch, str(p))

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(str(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(str(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(str(event.dest_path))


@dataclass
class _Watch:
    handle: MonitorHandle
    observer: Any
    debouncer: Debouncer


class EventMonitor(BaseMonitor):
    """OS-level change notifications with per-file debounce."""

    def __init__(self) -> None:
        super().__init__()
        self._watches: dict[str, _Watch] = {}

    @property
    def provider_type(self) -> str:
        return MonitorType.EVENTS.value

    @property
    def active_handles(self) -> list[MonitorHandle]:
        return [w.handle for w in self._watches.values()]

    async def start_monitoring(
        self, config: dict[str, Any], sink: DiscoverySink
    ) -> MonitorHandle:
        loop = asyncio.get_running_loop()
        root = Path(config["path"]).expanduser().resolve()
        handle = MonitorHandle(
            id=uuid.uuid4().hex, monitor_type=MonitorType.EVENTS, path=str(root)
        )
        delay_s = float(config.get("debounce_ms", DEFAULT_DEBOUNCE_MS)) / 1000.0

        def emit(path: str) -> None:
            found = _describe(path)
            if found is not None:
                sink([found])

        debouncer = Debouncer(loop, delay_s, emit)
        extensions = config.get("file_extensions")
        ext_set = {e.lower() if e.startswith(".") else f".{e.lower()}" for e in extensions} if extensions else None

        observer = Observer()
        observer.schedule(_ForwardingHandler(loop, debouncer, ext_set), str(root), recursive=False)
        observer.start()
        self._watches[handle.id] = _Watch(handle, observer, debouncer)
        logger.info("Event monitor started: %s (debounce %.1fs)", root, delay_s)
        return handle

    async def stop_monitoring(self, handle: MonitorHandle) -> None:
        watch = self._watches.pop(handle.id, None)
        if watch is None:
            return
        watch.debouncer.cancel_all()
        watch.observer.stop()
        await asyncio.to_thread(watch.observer.join, 5.0)
        logger.info("Event monitor stopped: %s", handle.path)

    @classmethod
    def validate_config(cls, config: dict[str, Any]) -> ValidationResult:
        result = validate_events_config(config)
        if result.valid and not Path(config["path"]).expanduser().is_dir():
            return ValidationResult.from_errors([f"Monitor path does not exist: {config['path']}"])
        return result


def _describe(path: str) -> DiscoveredFile | None:
    """Stat a file once its events settle; vanished files are dropped."""
    p = Path(path)
    try:
        stat = p.stat()
    except FileNotFoundError:
        return None
    return DiscoveredFile(
        name=p.name,
        path=str(p),
        size=stat.st_size,
        modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
    )
