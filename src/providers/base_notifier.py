# src/providers/base_notifier.py — v1
"""Abstract notification provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from callbatch.core.models import Notification, NotificationResult, ValidationResult


class BaseNotifier(ABC):
    """Unified interface for notification channels."""

    concurrent_safe: bool = True

    def __init__(self) -> None:
        self.config: dict[str, Any] | None = None

    @property
    @abstractmethod
    def provider_type(self) -> str:
        """Provider identifier (email, webhook, chat, sms)."""

    async def configure(self, config: dict[str, Any]) -> None:
        """Store the (already validated) configuration."""
        self.config = dict(config)

    @property
    def configured(self) -> bool:
        return self.config is not None

    @abstractmethod
    async def send_notification(self, notification: Notification) -> NotificationResult:
        """Deliver one notification.

        Delivery failures are reported as ``success=False``; exceptions
        are reserved for programming errors.
        """

    @classmethod
    @abstractmethod
    def validate_config(cls, config: dict[str, Any]) -> ValidationResult:
        """Check a configuration fragment without side effects."""

    def _failure(self, error: str) -> NotificationResult:
        return NotificationResult(success=False, provider=self.provider_type, error=error)

    async def close(self) -> None:
        """Release connections. Default: nothing to release."""
