# src/providers/factory.py — v1
"""Factory: validate a provider fragment, instantiate and register it.

Concrete classes are resolved lazily from dotted paths so optional
back-ends (boto3, watchdog) are only imported when used.
"""

from __future__ import annotations

import importlib
import logging
from typing import Any

from callbatch.core.errors import ConfigurationInvalid, ProviderNotFound
from callbatch.core.models import ProviderKind, ProviderSpec, ValidationResult
from callbatch.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

# Registry of kind → type name → class path (lazy import).
_PROVIDER_CLASSES: dict[ProviderKind, dict[str, str]] = {
    ProviderKind.STORAGE: {
        "local": "callbatch.providers.storage.local_storage.LocalStorageProvider",
        "s3": "callbatch.providers.storage.s3_storage.S3StorageProvider",
    },
    ProviderKind.MONITOR: {
        "polling": "callbatch.providers.monitors.polling_monitor.PollingMonitor",
        "events": "callbatch.providers.monitors.event_monitor.EventMonitor",
        "cloud-events": "callbatch.providers.monitors.cloud_event_monitor.CloudEventMonitor",
    },
    ProviderKind.NOTIFICATION: {
        "email": "callbatch.providers.notifications.email_notifier.EmailNotifier",
        "webhook": "callbatch.providers.notifications.webhook_notifier.WebhookNotifier",
        "chat": "callbatch.providers.notifications.chat_notifier.ChatNotifier",
        "sms": "callbatch.providers.notifications.sms_notifier.SmsNotifier",
    },
}


class ProviderFactory:
    """Builds providers from ``{"type": ..., "config": {...}}`` fragments."""

    def __init__(
        self,
        registry: ProviderRegistry,
        classes: dict[ProviderKind, dict[str, str | type]] | None = None,
    ) -> None:
        self.registry = registry
        source = classes or _PROVIDER_CLASSES
        self._classes = {kind: dict(paths) for kind, paths in source.items()}

    def available_types(self) -> dict[str, list[str]]:
        """Provider type names per kind."""
        return {kind.value: sorted(paths) for kind, paths in self._classes.items()}

    def register_provider(
        self, kind: ProviderKind, type_name: str, class_path: str | type
    ) -> None:
        """Register a custom provider implementation (dotted path or class)."""
        self._classes.setdefault(ProviderKind(kind), {})[type_name] = class_path
        logger.info("Registered %s provider type: %s → %s", kind, type_name, class_path)

    def provider_class(self, kind: ProviderKind, type_name: str) -> type:
        """Resolve a provider class.

        Raises:
            ProviderNotFound: If the type is unknown for this kind.
        """
        kind = ProviderKind(kind)
        paths = self._classes.get(kind, {})
        if type_name not in paths:
            raise ProviderNotFound(kind.value, type_name, list(paths))
        return _import_class(paths[type_name])

    def validate(self, kind: ProviderKind, spec: ProviderSpec | dict[str, Any]) -> ValidationResult:
        """Run the provider's own validate_config on a fragment."""
        spec = _as_spec(spec)
        cls = self.provider_class(kind, spec.type)
        return cls.validate_config(spec.config)

    def create(
        self,
        kind: ProviderKind,
        spec: ProviderSpec | dict[str, Any],
        name: str | None = None,
        register: bool = True,
    ) -> Any:
        """Validate, construct (not started) and register a provider.

        Raises:
            ProviderNotFound: Unknown provider type.
            ConfigurationInvalid: Validation failed; carries the errors
                exactly as reported by the provider.
        """
        kind = ProviderKind(kind)
        spec = _as_spec(spec)
        cls = self.provider_class(kind, spec.type)
        result = cls.validate_config(spec.config)
        if not result.valid:
            raise ConfigurationInvalid(kind.value, spec.type, result.errors)

        instance = cls()
        if register:
            self.registry.register(kind, spec.type, instance, name=name)
        logger.debug("Created %s provider: type=%s name=%s", kind.value, spec.type, name)
        return instance


def _as_spec(spec: ProviderSpec | dict[str, Any]) -> ProviderSpec:
    if isinstance(spec, ProviderSpec):
        return spec
    if not isinstance(spec, dict) or not spec.get("type"):
        raise ConfigurationInvalid("provider", None, ["Provider type is required"])
    return ProviderSpec(type=spec["type"], config=spec.get("config") or {})


def _import_class(class_path: str | type) -> type:
    """Dynamically import a class from its fully qualified path."""
    if isinstance(class_path, type):
        return class_path
    module_path, class_name = class_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    return getattr(module, class_name)
