# src/providers/notifications/sms_notifier.py — v1
"""SMS notifications through the Twilio REST API (notification type ``sms``)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from callbatch.core.models import Notification, NotificationResult, NotificationType, ValidationResult
from callbatch.providers.base_notifier import BaseNotifier
from callbatch.validation.config_validator import validate_sms_config

logger = logging.getLogger(__name__)

TWILIO_API = "https://api.twilio.com/2010-04-01"
SMS_MAX_CHARS = 160


def format_sms(notification: Notification) -> str:
    text = f"{notification.title}: {notification.message}" if notification.title else notification.message
    if len(text) > SMS_MAX_CHARS:
        text = text[: SMS_MAX_CHARS - 3] + "..."
    return text


class SmsNotifier(BaseNotifier):
    """Send a short text message to one phone number."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        super().__init__()
        self.transport = transport

    @property
    def provider_type(self) -> str:
        return NotificationType.SMS.value

    async def send_notification(self, notification: Notification) -> NotificationResult:
        if self.config is None:
            return self._failure("SMS notification provider not configured")

        sid = self.config["account_sid"]
        url = f"{TWILIO_API}/Accounts/{sid}/Messages.json"
        form = {
            "From": self.config["from_number"],
            "To": self.config["to_number"],
            "Body": format_sms(notification),
        }
        try:
            async with httpx.AsyncClient(
                timeout=10.0,
                auth=(sid, self.config["auth_token"]),
                transport=self.transport,
            ) as client:
                response = await client.post(url, data=form)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as e:
            return self._failure(f"SMS API request failed: HTTP {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            return self._failure(f"SMS API request failed: {e}")

        logger.debug("SMS queued for %s", self.config["to_number"])
        return NotificationResult(success=True, provider=self.provider_type, message_id=body.get("sid"))

    @classmethod
    def validate_config(cls, config: dict[str, Any]) -> ValidationResult:
        return validate_sms_config(config)
