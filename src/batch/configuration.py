# src/batch/configuration.py — v1
"""Folder, notification and global configuration management.

Every write is validated first (configuration validator rules, then the
provider's own ``validate_config``); invalid input raises
``ConfigurationInvalid`` carrying the error list unchanged.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from callbatch.batch.dispatcher import NotificationDispatcher
from callbatch.config.settings import ConfigurationError, Settings
from callbatch.core.errors import CallBatchError, ConfigurationInvalid, FolderInUse
from callbatch.core.models import (
    FolderConfig,
    JobStatus,
    NotificationConfig,
    NotificationResult,
    ProviderKind,
    ValidationResult,
    utcnow,
)
from callbatch.providers.factory import ProviderFactory
from callbatch.tracking.base_status_store import BaseStatusStore
from callbatch.validation.config_validator import (
    validate_folder_config,
    validate_notification_config,
)

if TYPE_CHECKING:
    from callbatch.batch.service import BatchProcessingService

logger = logging.getLogger(__name__)

# Settings fields exposed as the editable global configuration.
GLOBAL_CONFIG_FIELDS: tuple[str, ...] = (
    "default_max_concurrent_files",
    "default_max_file_size",
    "default_allowed_extensions",
    "default_require_uuid_filename",
    "default_max_retries",
    "default_retry_delay_seconds",
    "default_exponential_backoff",
    "default_scan_interval_seconds",
    "default_debounce_ms",
    "notification_max_attempts",
    "notification_base_delay_s",
)

_FOLDER_READONLY = {"id", "created_at", "updated_at"}
_SAMPLE_SIZE = 10


def _as_dict(data: BaseModel | dict[str, Any]) -> dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", exclude=_FOLDER_READONLY)
    return {k: v for k, v in data.items() if k not in _FOLDER_READONLY}


class BatchConfigurationService:
    """CRUD and test operations behind the configuration endpoints."""

    def __init__(
        self,
        store: BaseStatusStore,
        factory: ProviderFactory,
        settings: Settings,
        dispatcher: NotificationDispatcher,
        service: BatchProcessingService | None = None,
    ) -> None:
        self.store = store
        self.factory = factory
        self.settings = settings
        self.dispatcher = dispatcher
        self.service = service

    # === Folders ===

    def validate_folder(self, data: dict[str, Any]) -> ValidationResult:
        result = validate_folder_config(data)
        if not result.valid:
            return result
        result = result.merge(self.factory.validate(ProviderKind.STORAGE, data["storage"]))
        return result.merge(self.factory.validate(ProviderKind.MONITOR, data["monitor"]))

    async def create_folder(self, data: BaseModel | dict[str, Any]) -> FolderConfig:
        payload = _as_dict(data)
        result = self.validate_folder(payload)
        if not result.valid:
            raise ConfigurationInvalid("folder", None, result.errors)
        folder = await self.store.create_folder(FolderConfig.model_validate(payload))
        logger.info("Folder %s (%s) created", folder.id, folder.name)
        if self.service is not None and folder.is_active and folder.processing.auto_start:
            await self.service.start_folder(folder.id)  # type: ignore[arg-type]
        return folder

    async def get_folder(self, folder_id: int) -> FolderConfig:
        return await self.store.get_folder(folder_id)

    async def list_folders(self, active_only: bool = False) -> list[FolderConfig]:
        return await self.store.list_folders(active_only=active_only)

    async def update_folder(self, folder_id: int, changes: dict[str, Any]) -> FolderConfig:
        """Apply a partial update; a running folder is restarted with it."""
        existing = await self.store.get_folder(folder_id)
        payload = {**_as_dict(existing), **_as_dict(changes)}
        result = self.validate_folder(payload)
        if not result.valid:
            raise ConfigurationInvalid("folder", None, result.errors)

        folder = FolderConfig.model_validate(
            {**payload, "id": folder_id, "created_at": existing.created_at}
        )
        folder = await self.store.update_folder(folder)
        logger.info("Folder %s (%s) updated", folder_id, folder.name)

        if self.service is not None and folder_id in self.service.running_folders:
            await self.service.stop_folder(folder_id)
            if folder.is_active:
                await self.service.start_folder(folder_id)
        return folder

    async def delete_folder(self, folder_id: int) -> FolderConfig:
        """Soft-disable a folder.

        Raises:
            FolderInUse: The folder still has pending or running jobs.
        """
        folder = await self.store.get_folder(folder_id)
        active_jobs = [
            job
            for status in (JobStatus.PENDING, JobStatus.RUNNING)
            for job in await self.store.list_jobs(folder_id=folder_id, status=status)
        ]
        if active_jobs:
            raise FolderInUse(
                f"Folder {folder_id} has {len(active_jobs)} active batch jobs",
                {"folder_id": folder_id, "job_ids": [j.id for j in active_jobs]},
            )
        if self.service is not None:
            await self.service.stop_folder(folder_id)
        folder.is_active = False
        folder = await self.store.update_folder(folder)
        logger.info("Folder %s (%s) disabled", folder_id, folder.name)
        return folder

    async def test_folder(self, data: BaseModel | dict[str, Any]) -> dict[str, Any]:
        """Validate a folder configuration and try to list its storage."""
        payload = _as_dict(data)
        result = self.validate_folder(payload)
        report: dict[str, Any] = {
            "valid": result.valid,
            "errors": result.errors,
            "warnings": result.warnings,
            "connected": False,
        }
        if not result.valid:
            return report

        folder = FolderConfig.model_validate(payload)
        storage = self.factory.create(ProviderKind.STORAGE, folder.storage, register=False)
        try:
            await storage.connect(folder.storage.config)
            files = await storage.list_files()
        except CallBatchError as e:
            report["errors"] = [e.message]
            report["valid"] = False
            return report
        finally:
            await storage.close()

        report["connected"] = True
        report["file_count"] = len(files)
        report["sample_files"] = [f.name for f in files[:_SAMPLE_SIZE]]
        return report

    # === Notifications ===

    def _check_notification(self, payload: dict[str, Any]) -> None:
        result = validate_notification_config(payload)
        if not result.valid:
            raise ConfigurationInvalid("notification", payload.get("type"), result.errors)

    async def create_notification(
        self, data: BaseModel | dict[str, Any]
    ) -> NotificationConfig:
        payload = _as_dict(data)
        self._check_notification(payload)
        config = await self.store.create_notification(NotificationConfig.model_validate(payload))
        logger.info("Notification %s (%s, %s) created", config.id, config.name, config.type.value)
        return config

    async def get_notification(self, config_id: int) -> NotificationConfig:
        return await self.store.get_notification(config_id)

    async def list_notifications(self, active_only: bool = False) -> list[NotificationConfig]:
        return await self.store.list_notifications(active_only=active_only)

    async def update_notification(
        self, config_id: int, changes: dict[str, Any]
    ) -> NotificationConfig:
        existing = await self.store.get_notification(config_id)
        payload = {**_as_dict(existing), **_as_dict(changes)}
        self._check_notification(payload)
        config = NotificationConfig.model_validate(
            {**payload, "id": config_id, "created_at": existing.created_at}
        )
        config = await self.store.update_notification(config)
        await self.dispatcher.invalidate(config_id)
        logger.info("Notification %s (%s) updated", config_id, config.name)
        return config

    async def delete_notification(self, config_id: int) -> None:
        await self.store.delete_notification(config_id)
        await self.dispatcher.invalidate(config_id)
        logger.info("Notification %s deleted", config_id)

    async def test_notification(self, config_id: int) -> NotificationResult:
        config = await self.store.get_notification(config_id)
        result = await self.dispatcher.send_test(config)
        if result.success:
            logger.info("Test notification '%s' delivered", config.name)
        else:
            logger.warning("Test notification '%s' failed: %s", config.name, result.error)
        return result

    # === Global configuration ===

    def get_global_config(self) -> dict[str, Any]:
        return {name: getattr(self.settings, name) for name in GLOBAL_CONFIG_FIELDS}

    def update_global_config(self, changes: dict[str, Any]) -> dict[str, Any]:
        """Range-check and apply new global defaults.

        Folders pick the new values up the next time they start.
        """
        unknown = sorted(set(changes) - set(GLOBAL_CONFIG_FIELDS))
        if unknown:
            raise ConfigurationInvalid(
                "global", None, [f"Unknown configuration key: {key}" for key in unknown]
            )
        merged = {**self.settings.model_dump(), **changes}
        try:
            candidate = type(self.settings)(**merged)
        except ConfigurationError as e:
            raise ConfigurationInvalid("global", None, str(e).split("; ")) from e
        except ValidationError as e:
            raise ConfigurationInvalid(
                "global", None,
                [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
            ) from e

        for name in changes:
            setattr(self.settings, name, getattr(candidate, name))
        logger.info("Global configuration updated: %s", ", ".join(sorted(changes)))
        return self.get_global_config()

    async def summary(self) -> dict[str, Any]:
        folders = await self.store.list_folders()
        notifications = await self.store.list_notifications()
        return {
            "folders": {
                "total": len(folders),
                "active": sum(1 for f in folders if f.is_active),
                "running": self.service.running_folders if self.service else [],
            },
            "notifications": {
                "total": len(notifications),
                "active": sum(1 for n in notifications if n.is_active),
            },
            "global": self.get_global_config(),
            "generated_at": utcnow().isoformat(),
        }

    def providers(self) -> dict[str, list[str]]:
        return self.factory.available_types()
