# src/providers/storage/s3_storage.py — v1
"""S3-compatible storage provider (storage type ``s3``).

Supports AWS S3, MinIO, and other S3-compatible storage via
``endpoint_url``.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from callbatch.core.errors import NetworkError, StorageError
from callbatch.core.models import DiscoveredFile, ErrorCode, StorageType, ValidationResult
from callbatch.providers.base_storage import BaseStorageProvider
from callbatch.validation.config_validator import validate_s3_storage_config

logger = logging.getLogger(__name__)


class S3StorageProvider(BaseStorageProvider):
    """List and download objects under one bucket/prefix."""

    # boto3 clients are thread-safe; calls run in worker threads.
    concurrent_safe = True

    def __init__(self) -> None:
        self._s3: Any = None
        self._bucket = ""
        self._prefix = ""

    @property
    def provider_type(self) -> str:
        return StorageType.S3.value

    async def connect(self, config: dict[str, Any]) -> None:
        """Create the client and check the bucket is reachable."""
        kwargs: dict[str, Any] = {"region_name": config["region"]}
        if config.get("endpoint_url"):
            kwargs["endpoint_url"] = config["endpoint_url"]
        credentials = config.get("credentials") or {}
        if credentials:
            kwargs["aws_access_key_id"] = credentials["access_key_id"]
            kwargs["aws_secret_access_key"] = credentials["secret_access_key"]

        self._s3 = boto3.client("s3", **kwargs)
        self._bucket = config["bucket"]
        prefix = config.get("prefix") or ""
        self._prefix = prefix.rstrip("/") + "/" if prefix else ""

        try:
            await asyncio.to_thread(self._s3.head_bucket, Bucket=self._bucket)
        except ClientError as e:
            raise _map_client_error(e, f"s3://{self._bucket}") from e
        except BotoCoreError as e:
            raise NetworkError(f"Cannot reach S3 bucket {self._bucket}: {e}") from e
        logger.info("S3 storage connected: s3://%s/%s", self._bucket, self._prefix)

    def _full_prefix(self, path: str | None) -> str:
        if not path:
            return self._prefix
        return self._prefix + path.strip("/") + "/"

    async def list_files(self, path: str | None = None) -> list[DiscoveredFile]:
        """List objects directly under the prefix (simulated directory)."""
        if self._s3 is None:
            raise StorageError("S3 storage provider is not connected")
        prefix = self._full_prefix(path)
        try:
            return await asyncio.to_thread(self._list_objects, prefix)
        except ClientError as e:
            raise _map_client_error(e, f"s3://{self._bucket}/{prefix}") from e
        except BotoCoreError as e:
            raise NetworkError(f"S3 listing failed: {e}") from e

    def _list_objects(self, prefix: str) -> list[DiscoveredFile]:
        paginator = self._s3.get_paginator("list_objects_v2")
        files: list[DiscoveredFile] = []
        for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix, Delimiter="/"):
            for obj in page.get("Contents", []):
                key = obj["Key"]
                name = key[len(prefix):]
                if not name:  # Skip the prefix marker itself
                    continue
                files.append(
                    DiscoveredFile(
                        name=name,
                        path=key,
                        size=obj.get("Size", 0),
                        modified_at=obj.get("LastModified"),
                    )
                )
        return sorted(files, key=lambda f: f.name)

    async def download_file(self, remote_path: str, local_path: str) -> str:
        """Download one object to ``local_path``."""
        if self._s3 is None:
            raise StorageError("S3 storage provider is not connected")
        dst = Path(local_path)
        dst.parent.mkdir(parents=True, exist_ok=True)
        try:
            await asyncio.to_thread(self._s3.download_file, self._bucket, remote_path, str(dst))
        except ClientError as e:
            raise _map_client_error(e, f"s3://{self._bucket}/{remote_path}") from e
        except BotoCoreError as e:
            raise NetworkError(f"S3 download failed for {remote_path}: {e}") from e
        logger.debug("S3 download: s3://%s/%s → %s", self._bucket, remote_path, dst)
        return str(dst)

    @classmethod
    def validate_config(cls, config: dict[str, Any]) -> ValidationResult:
        return validate_s3_storage_config(config)

    def watch_path(self, config: dict[str, Any]) -> str:
        prefix = (config.get("prefix") or "").strip("/")
        return f"s3://{config.get('bucket', '')}/{prefix}".rstrip("/")

    async def close(self) -> None:
        self._s3 = None


def _map_client_error(error: ClientError, target: str) -> StorageError:
    code = str(error.response.get("Error", {}).get("Code", ""))
    if code in ("403", "AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"):
        return StorageError(
            f"Access denied to {target}",
            error_code=ErrorCode.ACCESS_DENIED,
            retryable=False,
            details={"aws_error": code},
        )
    if code in ("404", "NoSuchKey", "NoSuchBucket"):
        return StorageError(f"Not found: {target}", details={"aws_error": code})
    return StorageError(f"S3 error on {target}: {code}", details={"aws_error": code})
