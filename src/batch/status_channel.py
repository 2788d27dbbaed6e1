# src/batch/status_channel.py — v1
"""Real-time status channel: fan-out of record/job transitions.

Each subscriber owns a bounded queue. ``publish`` never blocks; when a
subscriber falls behind, its oldest pending update is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from callbatch.core.models import StatusUpdate

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000


class Subscription:
    """One consumer of the status channel, optionally scoped to a folder."""

    def __init__(self, channel: StatusChannel, folder_id: int | None, maxsize: int) -> None:
        self.folder_id = folder_id
        self.queue: asyncio.Queue[StatusUpdate] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self._channel = channel

    def matches(self, update: StatusUpdate) -> bool:
        return self.folder_id is None or update.folder_id == self.folder_id

    def offer(self, update: StatusUpdate) -> None:
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(update)

    async def get(self) -> StatusUpdate:
        return await self.queue.get()

    def close(self) -> None:
        self._channel.unsubscribe(self)

    async def __aiter__(self) -> AsyncIterator[StatusUpdate]:
        while True:
            yield await self.queue.get()


class StatusChannel:
    """Publish/subscribe hub for ``StatusUpdate`` messages."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, folder_id: int | None = None) -> Subscription:
        """Subscribe to one folder's updates, or to all with ``None``."""
        sub = Subscription(self, folder_id, self._queue_size)
        self._subscribers.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)

    def publish(self, update: StatusUpdate) -> None:
        for sub in list(self._subscribers):
            if sub.matches(update):
                sub.offer(update)
