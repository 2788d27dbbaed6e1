# src/providers/notifications/chat_notifier.py — v1
"""Chat notifications via an incoming-webhook URL (notification type ``chat``).

Messages use the Slack attachment format, which most chat tools with
incoming webhooks accept.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from callbatch.core.models import (
    Notification,
    NotificationResult,
    NotificationType,
    Severity,
    ValidationResult,
)
from callbatch.providers.base_notifier import BaseNotifier
from callbatch.validation.config_validator import validate_chat_config

logger = logging.getLogger(__name__)

_COLORS: dict[Severity, str] = {
    Severity.INFO: "good",
    Severity.WARNING: "warning",
    Severity.CRITICAL: "danger",
}

# Scalar data keys rendered as attachment fields.
_FIELD_KEYS = ("folder_name", "file_name", "error_code", "job_id", "total_files", "failed_files")


def build_message(notification: Notification, channel: str) -> dict[str, Any]:
    attachment: dict[str, Any] = {
        "title": notification.title,
        "text": notification.message,
        "color": _COLORS[notification.severity],
        "fields": [
            {"title": key, "value": str(notification.data[key]), "short": True}
            for key in _FIELD_KEYS
            if notification.data.get(key) is not None
        ],
        "ts": int(notification.timestamp.timestamp()),
    }
    return {"channel": channel, "text": notification.message, "attachments": [attachment]}


class ChatNotifier(BaseNotifier):
    """Post a formatted message to a chat channel."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        super().__init__()
        self.transport = transport

    @property
    def provider_type(self) -> str:
        return NotificationType.CHAT.value

    async def send_notification(self, notification: Notification) -> NotificationResult:
        if self.config is None:
            return self._failure("Chat notification provider not configured")

        message = build_message(notification, self.config["channel"])
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self.transport) as client:
                response = await client.post(self.config["webhook_url"], json=message)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            return self._failure(
                f"Chat webhook request failed: {e.response.status_code} {e.response.reason_phrase}"
            )
        except httpx.HTTPError as e:
            return self._failure(f"Chat webhook request failed: {e}")

        logger.debug("Chat message posted to %s", self.config["channel"])
        return NotificationResult(success=True, provider=self.provider_type)

    @classmethod
    def validate_config(cls, config: dict[str, Any]) -> ValidationResult:
        return validate_chat_config(config)
