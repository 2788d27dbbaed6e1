# src/providers/monitors/cloud_event_monitor.py — v1
"""Push-based monitor (monitor type ``cloud-events``).

Nothing is watched locally: an external notifier (e.g. a bucket event
subscription) posts file descriptions to the management API, which
hands them to ``deliver``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

from callbatch.core.models import DiscoveredFile, MonitorHandle, MonitorType, ValidationResult
from callbatch.providers.base_monitor import BaseMonitor, DiscoverySink
from callbatch.validation.config_validator import validate_cloud_events_config

logger = logging.getLogger(__name__)


@dataclass
class _Subscription:
    handle: MonitorHandle
    sink: DiscoverySink
    extensions: set[str] | None


class CloudEventMonitor(BaseMonitor):
    """Accepts externally pushed discovery events."""

    def __init__(self) -> None:
        super().__init__()
        self._subs: dict[str, _Subscription] = {}

    @property
    def provider_type(self) -> str:
        return MonitorType.CLOUD_EVENTS.value

    @property
    def active_handles(self) -> list[MonitorHandle]:
        return [s.handle for s in self._subs.values()]

    async def start_monitoring(
        self, config: dict[str, Any], sink: DiscoverySink
    ) -> MonitorHandle:
        handle = MonitorHandle(
            id=uuid.uuid4().hex, monitor_type=MonitorType.CLOUD_EVENTS, path=str(config["path"])
        )
        extensions = config.get("file_extensions")
        ext_set = {e.lower() for e in extensions} if extensions else None
        self._subs[handle.id] = _Subscription(handle, sink, ext_set)
        logger.info("Cloud-event subscription opened: %s", handle.path)
        return handle

    async def stop_monitoring(self, handle: MonitorHandle) -> None:
        if self._subs.pop(handle.id, None) is not None:
            logger.info("Cloud-event subscription closed: %s", handle.path)

    def deliver(self, handle: MonitorHandle, files: list[DiscoveredFile]) -> int:
        """Forward pushed files to the sink; returns how many were accepted."""
        sub = self._subs.get(handle.id)
        if sub is None:
            logger.warning("Dropping %d pushed files: subscription %s is closed", len(files), handle.id)
            return 0
        accepted = [
            f for f in files
            if sub.extensions is None or PurePosixPath(f.name).suffix.lower() in sub.extensions
        ]
        if accepted:
            sub.sink(accepted)
        return len(accepted)

    @classmethod
    def validate_config(cls, config: dict[str, Any]) -> ValidationResult:
        return validate_cloud_events_config(config)
