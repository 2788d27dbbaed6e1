# src/providers/monitors/debounce.py — v1
"""Time-windowed coalescing of repeated file events.

A burst of events for one path (create, several modifies while the file
is still being written) collapses into a single callback fired once the
path has been quiet for ``delay_s`` seconds.
"""

from __future__ import annotations

import asyncio
from typing import Callable


class Debouncer:
    """Per-key trailing-edge debounce on an asyncio loop.

    Not thread-safe: call ``touch`` from the loop thread (use
    ``loop.call_soon_threadsafe`` from watcher threads).
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        delay_s: float,
        callback: Callable[[str], None],
    ) -> None:
        self._loop = loop
        self._delay_s = max(delay_s, 0.0)
        self._callback = callback
        self._pending: dict[str, asyncio.TimerHandle] = {}

    @property
    def pending(self) -> int:
        return len(self._pending)

    def touch(self, key: str) -> None:
        """Record an event for ``key``, restarting its quiet window."""
        timer = self._pending.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._pending[key] = self._loop.call_later(self._delay_s, self._fire, key)

    def _fire(self, key: str) -> None:
        self._pending.pop(key, None)
        self._callback(key)

    def cancel_all(self) -> None:
        for timer in self._pending.values():
            timer.cancel()
        self._pending.clear()
