# src/providers/notifications/email_notifier.py — v1
"""SMTP email notifications (notification type ``email``).

smtplib is blocking, so delivery runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Any

from callbatch.core.models import Notification, NotificationResult, NotificationType, ValidationResult
from callbatch.providers.base_notifier import BaseNotifier
from callbatch.validation.config_validator import validate_email_config

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "Batch processing notification"


def build_message(notification: Notification, config: dict[str, Any]) -> EmailMessage:
    recipients = config.get("to") or [config["auth"]["user"]]
    message = EmailMessage()
    message["From"] = config["from_address"]
    message["To"] = ", ".join(recipients)
    message["Subject"] = notification.title or config.get("subject") or DEFAULT_SUBJECT
    message["Message-ID"] = make_msgid(domain=config["from_address"].split("@", 1)[-1])

    lines = [notification.message, ""]
    for key, value in notification.data.items():
        lines.append(f"{key}: {value}")
    lines.append("")
    lines.append(f"Sent {notification.timestamp.isoformat()}")
    message.set_content("\n".join(lines))
    return message


class EmailNotifier(BaseNotifier):
    """Send plain-text email through an SMTP server."""

    # One SMTP session per send; no shared connection state.
    concurrent_safe = True

    @property
    def provider_type(self) -> str:
        return NotificationType.EMAIL.value

    async def send_notification(self, notification: Notification) -> NotificationResult:
        if self.config is None:
            return self._failure("Email notification provider not configured")

        config = self.config
        message = build_message(notification, config)

        def _send_sync() -> None:
            context = ssl.create_default_context()
            user = config["auth"]["user"]
            password = config["auth"]["password"]
            if config.get("secure"):
                with smtplib.SMTP_SSL(config["host"], config["port"], context=context) as client:
                    client.login(user, password)
                    client.send_message(message)
                return

            with smtplib.SMTP(config["host"], config["port"]) as client:
                if config.get("use_tls", True):
                    client.starttls(context=context)
                client.login(user, password)
                client.send_message(message)

        try:
            await asyncio.to_thread(_send_sync)
        except (smtplib.SMTPException, OSError) as e:
            return self._failure(f"Failed to send email: {e}")

        logger.debug("Email sent to %s", message["To"])
        return NotificationResult(
            success=True, provider=self.provider_type, message_id=message["Message-ID"]
        )

    @classmethod
    def validate_config(cls, config: dict[str, Any]) -> ValidationResult:
        return validate_email_config(config)
