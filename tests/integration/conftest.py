# tests/integration/conftest.py — v1
"""Shared fixtures for integration tests.

Every scenario runs the full orchestrator in-process: a SQLite status
store in a temp directory, local storage, the scripted analyzer and a
recording notifier in place of the webhook channel. No network, no
Docker.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, Awaitable, Callable

import pytest

from callbatch.batch.container import Container, build_container
from callbatch.core.models import ProviderKind
from callbatch.providers.base_notifier import BaseNotifier
from callbatch.providers.factory import ProviderFactory
from callbatch.providers.registry import ProviderRegistry
from callbatch.tracking.sqlite_store import SqliteStatusStore


async def wait_until(
    predicate: Callable[[], Awaitable[bool]], timeout_s: float = 5.0, poll_s: float = 0.02
) -> bool:
    """Poll an async predicate until it holds or the timeout expires."""
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if await predicate():
            return True
        await asyncio.sleep(poll_s)
    return await predicate()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "status.db"


@pytest.fixture
async def orchestrator(settings, analyzer, db_path):
    """Factory for wired containers; every one built is closed at teardown."""
    built: list[Container] = []

    def _build(notifier: type[BaseNotifier] | None = None, **overrides: Any) -> Container:
        factory = ProviderFactory(ProviderRegistry())
        if notifier is not None:
            factory.register_provider(ProviderKind.NOTIFICATION, "webhook", notifier)
        container = build_container(
            overrides.pop("settings", settings),
            store=overrides.pop("store", None) or SqliteStatusStore(db_path),
            analyzer=overrides.pop("analyzer", analyzer),
            factory=factory,
        )
        built.append(container)
        return container

    yield _build
    for container in built:
        await container.close()
