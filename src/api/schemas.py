# src/api/schemas.py — v1
"""Request bodies for the management API.

Folder and notification bodies are plain objects so the configuration
validator, not the request parser, reports what is wrong with them.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from callbatch.core.models import DiscoveredFile


class RetryRequest(BaseModel):
    reset_retry_count: bool = False


class PushEventsRequest(BaseModel):
    """Files reported by an external bucket-notification source."""

    files: list[DiscoveredFile] = Field(default_factory=list)
