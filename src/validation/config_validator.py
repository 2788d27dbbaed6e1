# src/validation/config_validator.py — v1
"""Structural and semantic validation of folder, monitor, processing and
notification configurations.

Every function is pure: it inspects its input, never mutates it, and
returns a ``ValidationResult``. Provider classes reuse the per-type rules
in their own ``validate_config``.
"""

from __future__ import annotations

import re
import uuid
from typing import Any, Callable, Mapping
from urllib.parse import urlparse

from pydantic import BaseModel

from callbatch.core.models import (
    GIB,
    MIB,
    MonitorType,
    NotificationCondition,
    NotificationType,
    StorageType,
    ValidationResult,
)

# Accepted ranges, inclusive.
MAX_FILE_SIZE_RANGE = (MIB, 2 * GIB)
SCAN_INTERVAL_RANGE = (30, 3600)
MAX_RETRIES_RANGE = (0, 10)
RETRY_DELAY_RANGE = (10, 300)
CONCURRENCY_RANGE = (1, 20)
WEBHOOK_TIMEOUT_MS_RANGE = (1000, 30000)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^\+[1-9]\d{1,14}$")
_S3_BUCKET_RE = re.compile(r"^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")
_AWS_REGION_RE = re.compile(r"^[a-z]{2}(-gov)?-[a-z]+-\d$")
_EXTENSION_RE = re.compile(r"^\.?[A-Za-z0-9]+$")


# === Primitive checks ===


def is_valid_url(value: Any, schemes: tuple[str, ...] = ("http", "https")) -> bool:
    if not isinstance(value, str) or not value:
        return False
    parsed = urlparse(value)
    return parsed.scheme in schemes and bool(parsed.netloc)


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and bool(_EMAIL_RE.match(value))


def is_valid_phone(value: Any) -> bool:
    return isinstance(value, str) and bool(_PHONE_RE.match(value))


def is_uuid_filename(file_name: str) -> bool:
    """True when the file stem (name without extension) is a UUID."""
    stem = file_name.rsplit("/", 1)[-1]
    if "." in stem:
        stem = stem.rsplit(".", 1)[0]
    try:
        uuid.UUID(stem)
    except ValueError:
        return False
    return True


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_range(
    errors: list[str], label: str, value: Any, bounds: tuple[int, int], unit: str = ""
) -> None:
    low, high = bounds
    if not _is_number(value):
        errors.append(f"{label} must be a number")
    elif not low <= value <= high:
        suffix = f" {unit}" if unit else ""
        errors.append(f"{label} must be between {low} and {high}{suffix}")


def _as_mapping(data: Any) -> Mapping[str, Any] | None:
    if isinstance(data, BaseModel):
        return data.model_dump()
    if isinstance(data, Mapping):
        return data
    return None


# === Storage provider rules ===


def validate_local_storage_config(config: Mapping[str, Any]) -> ValidationResult:
    errors: list[str] = []
    path = config.get("path")
    if not path or not isinstance(path, str):
        errors.append("Local storage path is required")
    return ValidationResult.from_errors(errors)


def validate_s3_storage_config(config: Mapping[str, Any]) -> ValidationResult:
    errors: list[str] = []
    warnings: list[str] = []
    bucket = config.get("bucket")
    region = config.get("region")
    if not bucket:
        errors.append("S3 bucket name is required")
    elif not isinstance(bucket, str) or not _S3_BUCKET_RE.match(bucket):
        errors.append("Invalid S3 bucket name format")
    if not region:
        errors.append("AWS region is required")
    elif not isinstance(region, str) or not _AWS_REGION_RE.match(region):
        errors.append("Invalid AWS region format")

    credentials = config.get("credentials")
    if credentials is None:
        warnings.append("No explicit credentials; the default AWS credential chain is used")
    elif not isinstance(credentials, Mapping):
        errors.append("AWS credentials must be an object")
    else:
        if not credentials.get("access_key_id"):
            errors.append("AWS access key ID is required")
        if not credentials.get("secret_access_key"):
            errors.append("AWS secret access key is required")

    endpoint = config.get("endpoint_url")
    if endpoint and not is_valid_url(endpoint):
        errors.append("Invalid S3 endpoint URL format")
    return ValidationResult.from_errors(errors, warnings)


# === Monitor provider rules ===


def _check_monitor_path(errors: list[str], config: Mapping[str, Any]) -> None:
    path = config.get("path")
    if not path or not isinstance(path, str):
        errors.append("Monitor path is required")


def validate_polling_config(config: Mapping[str, Any]) -> ValidationResult:
    errors: list[str] = []
    _check_monitor_path(errors, config)
    if "scan_interval" in config:
        _check_range(errors, "Scan interval", config["scan_interval"], SCAN_INTERVAL_RANGE, "seconds")
    patterns = config.get("file_patterns")
    if patterns is not None and (
        not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns)
    ):
        errors.append("File patterns must be a list of strings")
    return ValidationResult.from_errors(errors)


def validate_events_config(config: Mapping[str, Any]) -> ValidationResult:
    errors: list[str] = []
    _check_monitor_path(errors, config)
    debounce = config.get("debounce_ms")
    if debounce is not None and (not _is_number(debounce) or debounce < 0):
        errors.append("Debounce time must be a positive number")
    extensions = config.get("file_extensions")
    if extensions is not None and (
        not isinstance(extensions, list) or not all(isinstance(e, str) for e in extensions)
    ):
        errors.append("File extensions must be a list of strings")
    return ValidationResult.from_errors(errors)


def validate_cloud_events_config(config: Mapping[str, Any]) -> ValidationResult:
    errors: list[str] = []
    _check_monitor_path(errors, config)
    extensions = config.get("file_extensions")
    if extensions is not None and not isinstance(extensions, list):
        errors.append("File extensions must be a list of strings")
    return ValidationResult.from_errors(errors)


_STORAGE_RULES: dict[str, Callable[[Mapping[str, Any]], ValidationResult]] = {
    StorageType.LOCAL.value: validate_local_storage_config,
    StorageType.S3.value: validate_s3_storage_config,
}

_MONITOR_RULES: dict[str, Callable[[Mapping[str, Any]], ValidationResult]] = {
    MonitorType.POLLING.value: validate_polling_config,
    MonitorType.EVENTS.value: validate_events_config,
    MonitorType.CLOUD_EVENTS.value: validate_cloud_events_config,
}


# === Notification provider rules ===


def validate_email_config(config: Mapping[str, Any]) -> ValidationResult:
    errors: list[str] = []
    if not config.get("host"):
        errors.append("SMTP host is required")
    port = config.get("port")
    if port is None or port == "":
        errors.append("SMTP port is required")
    elif not _is_int(port) or not 1 <= port <= 65535:
        errors.append("SMTP port must be a valid port number (1-65535)")

    auth = config.get("auth")
    if not isinstance(auth, Mapping):
        errors.append("SMTP authentication is required")
    else:
        if not auth.get("user"):
            errors.append("SMTP username is required")
        if not auth.get("password"):
            errors.append("SMTP password is required")

    sender = config.get("from_address")
    if not sender:
        errors.append("From email address is required")
    elif not is_valid_email(sender):
        errors.append("Invalid from email address format")

    recipients = config.get("to") or []
    if not isinstance(recipients, list):
        errors.append("Recipients must be a list of email addresses")
    else:
        for email in recipients:
            if not is_valid_email(email):
                errors.append(f"Invalid recipient email format: {email}")
    return ValidationResult.from_errors(errors)


def validate_webhook_config(config: Mapping[str, Any]) -> ValidationResult:
    errors: list[str] = []
    url = config.get("url")
    if not url:
        errors.append("Webhook URL is required")
    elif not isinstance(url, str) or not urlparse(url).netloc:
        errors.append("Invalid webhook URL format")
    elif not is_valid_url(url):
        errors.append("Webhook URL must use HTTP or HTTPS protocol")

    if "timeout_ms" in config:
        _check_range(errors, "Timeout", config["timeout_ms"], WEBHOOK_TIMEOUT_MS_RANGE, "milliseconds")
    headers = config.get("headers")
    if headers is not None and not isinstance(headers, Mapping):
        errors.append("Headers must be an object")
    return ValidationResult.from_errors(errors)


def validate_chat_config(config: Mapping[str, Any]) -> ValidationResult:
    errors: list[str] = []
    url = config.get("webhook_url")
    if not url:
        errors.append("Webhook URL is required")
    elif not is_valid_url(url):
        errors.append("Invalid webhook URL format")
    channel = config.get("channel")
    if not channel:
        errors.append("Channel is required")
    elif not isinstance(channel, str) or not channel.startswith("#"):
        errors.append("Channel must start with #")
    return ValidationResult.from_errors(errors)


def validate_sms_config(config: Mapping[str, Any]) -> ValidationResult:
    errors: list[str] = []
    sid = config.get("account_sid")
    if not sid:
        errors.append("Account SID is required")
    elif not isinstance(sid, str) or not sid.startswith("AC"):
        errors.append("Account SID must start with AC")
    if not config.get("auth_token"):
        errors.append("Auth token is required")
    for key, label in (("from_number", "From number"), ("to_number", "To number")):
        value = config.get(key)
        if not value:
            errors.append(f"{label} is required")
        elif not is_valid_phone(value):
            errors.append(f"Invalid {label[0].lower() + label[1:]} format")
    return ValidationResult.from_errors(errors)


_NOTIFICATION_RULES: dict[str, Callable[[Mapping[str, Any]], ValidationResult]] = {
    NotificationType.EMAIL.value: validate_email_config,
    NotificationType.WEBHOOK.value: validate_webhook_config,
    NotificationType.CHAT.value: validate_chat_config,
    NotificationType.SMS.value: validate_sms_config,
}


# === Top-level validators ===


def _validate_provider_fragment(
    label: str,
    fragment: Any,
    rules: dict[str, Callable[[Mapping[str, Any]], ValidationResult]],
) -> ValidationResult:
    data = _as_mapping(fragment)
    if data is None:
        return ValidationResult.from_errors([f"{label} configuration is required"])
    type_name = data.get("type")
    if not type_name:
        return ValidationResult.from_errors([f"{label} type is required"])
    type_name = getattr(type_name, "value", type_name)
    if type_name not in rules:
        return ValidationResult.from_errors(
            [f"{label} type must be one of: {', '.join(sorted(rules))}"]
        )
    config = data.get("config") or {}
    if not isinstance(config, Mapping):
        return ValidationResult.from_errors([f"{label} config must be an object"])
    return rules[type_name](config)


def validate_storage_config(fragment: Any) -> ValidationResult:
    """Validate a ``{"type", "config"}`` storage fragment."""
    return _validate_provider_fragment("Storage", fragment, _STORAGE_RULES)


def validate_monitor_config(fragment: Any) -> ValidationResult:
    """Validate a ``{"type", "config"}`` monitor fragment."""
    return _validate_provider_fragment("Monitor", fragment, _MONITOR_RULES)


def validate_processing_config(processing: Any) -> ValidationResult:
    """Validate per-folder processing overrides; absent values are fine."""
    if processing is None:
        return ValidationResult()
    data = _as_mapping(processing)
    if data is None:
        return ValidationResult.from_errors(["Processing configuration must be an object"])

    errors: list[str] = []
    if data.get("max_file_size") is not None:
        value = data["max_file_size"]
        if not _is_int(value) or not MAX_FILE_SIZE_RANGE[0] <= value <= MAX_FILE_SIZE_RANGE[1]:
            errors.append("Max file size must be between 1MB and 2GB")
    if data.get("max_concurrent_files") is not None:
        _check_range(errors, "Max concurrent files", data["max_concurrent_files"], CONCURRENCY_RANGE)

    extensions = data.get("allowed_extensions")
    if extensions is not None:
        if not isinstance(extensions, list) or not extensions:
            errors.append("Allowed extensions must be a non-empty list")
        else:
            for ext in extensions:
                if not isinstance(ext, str) or not _EXTENSION_RE.match(ext):
                    errors.append(f"Invalid file extension: {ext}")

    retry = data.get("retry")
    if retry is not None:
        retry_data = _as_mapping(retry)
        if retry_data is None:
            errors.append("Retry configuration must be an object")
        else:
            if retry_data.get("max_retries") is not None:
                _check_range(errors, "Max retries", retry_data["max_retries"], MAX_RETRIES_RANGE)
            if retry_data.get("delay_seconds") is not None:
                _check_range(errors, "Retry delay", retry_data["delay_seconds"], RETRY_DELAY_RANGE, "seconds")
    return ValidationResult.from_errors(errors)


def validate_folder_config(folder: Any) -> ValidationResult:
    """Validate a full folder configuration (storage, monitor, processing)."""
    data = _as_mapping(folder)
    if data is None:
        return ValidationResult.from_errors(["Folder configuration must be an object"])

    errors: list[str] = []
    name = data.get("name")
    if not name or not isinstance(name, str) or not name.strip():
        errors.append("Folder name is required")
    elif len(name) > 255:
        errors.append("Folder name must be at most 255 characters")

    result = ValidationResult.from_errors(errors)
    result = result.merge(validate_storage_config(data.get("storage")))
    result = result.merge(validate_monitor_config(data.get("monitor")))
    return result.merge(validate_processing_config(data.get("processing")))


def validate_notification_config(notification: Any) -> ValidationResult:
    """Validate a notification configuration (type, conditions, channel config)."""
    data = _as_mapping(notification)
    if data is None:
        return ValidationResult.from_errors(["Notification configuration must be an object"])

    errors: list[str] = []
    if not data.get("name"):
        errors.append("Notification name is required")

    conditions = data.get("conditions")
    valid_conditions = {c.value for c in NotificationCondition}
    if not conditions or not isinstance(conditions, list):
        errors.append("At least one notification condition is required")
    else:
        for condition in conditions:
            condition = getattr(condition, "value", condition)
            if condition not in valid_conditions:
                errors.append(f"Unknown notification condition: {condition}")

    result = ValidationResult.from_errors(errors)
    return result.merge(
        _validate_provider_fragment(
            "Notification",
            {"type": data.get("type"), "config": data.get("config")},
            _NOTIFICATION_RULES,
        )
    )
