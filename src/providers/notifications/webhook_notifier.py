# src/providers/notifications/webhook_notifier.py — v1
"""Generic JSON webhook notifications (notification type ``webhook``)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from callbatch.core.models import Notification, NotificationResult, NotificationType, ValidationResult
from callbatch.providers.base_notifier import BaseNotifier
from callbatch.validation.config_validator import validate_webhook_config
from callbatch.version import __version__

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 10000


def build_payload(notification: Notification) -> dict[str, Any]:
    """Wire format of a webhook notification."""
    return {
        "provider": "callbatch",
        "version": __version__,
        "timestamp": notification.timestamp.isoformat(),
        "condition": getattr(notification.condition, "value", notification.condition),
        "severity": notification.severity.value,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data,
    }


class WebhookNotifier(BaseNotifier):
    """POST a JSON payload to a configured URL."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        super().__init__()
        self.transport = transport

    @property
    def provider_type(self) -> str:
        return NotificationType.WEBHOOK.value

    async def send_notification(self, notification: Notification) -> NotificationResult:
        if self.config is None:
            return self._failure("Webhook notification provider not configured")

        url = self.config["url"]
        timeout_s = float(self.config.get("timeout_ms", DEFAULT_TIMEOUT_MS)) / 1000.0
        headers = {"User-Agent": f"callbatch/{__version__}"}
        headers.update(self.config.get("headers") or {})

        try:
            async with httpx.AsyncClient(timeout=timeout_s, transport=self.transport) as client:
                response = await client.post(url, json=build_payload(notification), headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            return self._failure(f"Webhook returned HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            return self._failure(f"Webhook request failed: {e}")

        logger.debug("Webhook delivered to %s (HTTP %d)", url, response.status_code)
        return NotificationResult(
            success=True,
            provider=self.provider_type,
            message_id=response.headers.get("x-request-id"),
        )

    @classmethod
    def validate_config(cls, config: dict[str, Any]) -> ValidationResult:
        return validate_webhook_config(config)
