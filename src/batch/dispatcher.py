# src/batch/dispatcher.py — v1
"""Notification dispatch.

``notify`` returns immediately: matching configurations are looked up
and delivered in background tasks, each with its own capped exponential
backoff. A failing channel is logged and never affects the transition
that triggered it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from callbatch.batch.retry import RetryConfig, RetryExhausted, with_retry
from callbatch.config.settings import Settings
from callbatch.core.models import (
    BatchJob,
    ErrorCode,
    FileProcessingRecord,
    Notification,
    NotificationCondition,
    NotificationConfig,
    NotificationResult,
    ProviderKind,
    ProviderSpec,
    Severity,
)
from callbatch.logging.context import set_provider_context
from callbatch.providers.base_notifier import BaseNotifier
from callbatch.providers.factory import ProviderFactory
from callbatch.tracking.base_status_store import BaseStatusStore

logger = logging.getLogger(__name__)

_CRITICAL_CODES = frozenset({ErrorCode.MAX_RETRIES_EXCEEDED, ErrorCode.SYSTEM_ERROR})


class DeliveryFailed(Exception):
    """A provider reported ``success=False``."""


# === Notification builders ===


def file_notification(
    condition: NotificationCondition, record: FileProcessingRecord, folder_name: str = ""
) -> Notification:
    data: dict[str, Any] = {
        "folder_id": record.folder_id,
        "folder_name": folder_name,
        "job_id": record.batch_job_id,
        "record_id": record.id,
        "file_name": record.file_name,
        "file_path": record.file_path,
        "file_size": record.file_size,
        "status": record.status.value,
        "retry_count": record.retry_count,
    }
    if condition == NotificationCondition.FILE_PROCESSED:
        data["analysis_ref"] = record.analysis_ref
        return Notification(
            condition=condition,
            severity=Severity.INFO,
            title="File processed",
            message=f"{record.file_name} was processed successfully",
            data=data,
        )

    code = record.error_code.value if record.error_code else None
    data["error_code"] = code
    data["error_message"] = record.error_message
    if condition == NotificationCondition.FILE_SKIPPED:
        return Notification(
            condition=condition,
            severity=Severity.WARNING,
            title="File skipped",
            message=f"{record.file_name} was skipped: [{code}] {record.error_message}",
            data=data,
        )
    severity = Severity.CRITICAL if record.error_code in _CRITICAL_CODES else Severity.WARNING
    return Notification(
        condition=condition,
        severity=severity,
        title="File processing failed",
        message=f"{record.file_name} failed: [{code}] {record.error_message}",
        data=data,
    )


def job_notification(
    condition: NotificationCondition, job: BatchJob, folder_name: str = ""
) -> Notification:
    data = {
        "folder_id": job.folder_id,
        "folder_name": folder_name,
        "job_id": job.id,
        "job_name": job.name,
        "status": job.status.value,
        "total_files": job.total_files,
        "processed_files": job.processed_files,
        "failed_files": job.failed_files,
        "skipped_files": job.skipped_files,
    }
    summary = (
        f"{job.processed_files} processed, {job.failed_files} failed, "
        f"{job.skipped_files} skipped of {job.total_files}"
    )
    if condition == NotificationCondition.BATCH_FAILED:
        return Notification(
            condition=condition,
            severity=Severity.CRITICAL,
            title="Batch job failed",
            message=f"Batch job '{job.name}' failed: {summary}",
            data=data,
        )
    return Notification(
        condition=condition,
        severity=Severity.WARNING if job.failed_files else Severity.INFO,
        title="Batch job completed",
        message=f"Batch job '{job.name}' {job.status.value}: {summary}",
        data=data,
    )


# === Dispatcher ===


class NotificationDispatcher:
    """Fan-out of notifications to every active, matching configuration."""

    def __init__(
        self,
        store: BaseStatusStore,
        factory: ProviderFactory,
        settings: Settings,
    ) -> None:
        self._store = store
        self._factory = factory
        self._retry = RetryConfig(
            max_attempts=settings.notification_max_attempts,
            base_delay_s=settings.notification_base_delay_s,
        )
        self._providers: dict[int, BaseNotifier] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def notify(self, condition: NotificationCondition, notification: Notification) -> None:
        """Schedule delivery; never blocks and never raises."""
        self._spawn(self._fan_out(condition, notification), f"notify-{condition.value}")

    def _spawn(self, coro: Any, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fan_out(self, condition: NotificationCondition, notification: Notification) -> None:
        try:
            configs = await self._store.list_notifications(active_only=True)
        except Exception:
            logger.exception("Cannot load notification configurations for %s", condition.value)
            return
        for config in configs:
            if condition in config.conditions:
                self._spawn(self._deliver(config, notification), f"deliver-{config.id}")

    async def _deliver(self, config: NotificationConfig, notification: Notification) -> None:
        set_provider_context(f"{config.type.value}:{config.name}")
        try:
            provider = await self._provider_for(config)
            await with_retry(
                self._send_once, provider, config, notification,
                config=self._retry, label=f"notification '{config.name}'",
            )
        except RetryExhausted as e:
            logger.error(
                "Notification '%s' (%s) not delivered for %s: %s",
                config.name, config.type.value, notification.condition, e.last_error,
            )
            return
        except Exception:
            logger.exception("Notification '%s' could not be prepared", config.name)
            return
        logger.info(
            "Notification '%s' delivered (%s, %s)",
            config.name, config.type.value, getattr(notification.condition, "value", notification.condition),
        )

    async def _send_once(
        self, provider: BaseNotifier, config: NotificationConfig, notification: Notification
    ) -> NotificationResult:
        lock = None if provider.concurrent_safe else self._locks.setdefault(config.id, asyncio.Lock())  # type: ignore[arg-type]
        if lock is None:
            result = await provider.send_notification(notification)
        else:
            async with lock:
                result = await provider.send_notification(notification)
        if not result.success:
            raise DeliveryFailed(result.error or "provider reported failure")
        return result

    async def _provider_for(self, config: NotificationConfig) -> BaseNotifier:
        provider = self._providers.get(config.id)  # type: ignore[arg-type]
        if provider is None:
            provider = await self.build_provider(config, name=f"notification-{config.id}")
            self._providers[config.id] = provider  # type: ignore[index]
        return provider

    async def build_provider(
        self, config: NotificationConfig, name: str | None = None
    ) -> BaseNotifier:
        """Validate, construct and configure a provider for ``config``.

        With ``name`` the instance is also registered in the registry.
        """
        spec = ProviderSpec(type=config.type.value, config=config.config)
        provider = self._factory.create(
            ProviderKind.NOTIFICATION, spec, name=name, register=name is not None
        )
        await provider.configure(config.config)
        return provider

    async def send_test(self, config: NotificationConfig) -> NotificationResult:
        """Send one test message through a fresh, unregistered provider."""
        provider = await self.build_provider(config)
        notification = Notification(
            condition="test",
            severity=Severity.INFO,
            title="Test notification",
            message=f"Test notification from configuration '{config.name}'",
            data={"notification_id": config.id, "type": config.type.value},
        )
        try:
            return await provider.send_notification(notification)
        finally:
            await provider.close()

    async def invalidate(self, config_id: int) -> None:
        """Drop the cached provider after its configuration changed."""
        if self._providers.pop(config_id, None) is not None:
            await self._factory.registry.unregister(
                ProviderKind.NOTIFICATION, f"notification-{config_id}"
            )

    async def drain(self) -> None:
        """Wait for every scheduled delivery (including retries) to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
