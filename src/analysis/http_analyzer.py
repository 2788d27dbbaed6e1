# src/analysis/http_analyzer.py — v1
"""HTTP adapter for the analysis service.

POSTs the audio file as multipart form data with the record metadata and
expects ``{"transcript", "scores", "confidence", "id"}`` back.
"""

from __future__ import annotations

import json
import logging
import mimetypes
from pathlib import Path
from typing import Any

import httpx

from callbatch.analysis.base_analyzer import BaseAnalyzer
from callbatch.core.errors import AnalysisError, NetworkError
from callbatch.core.models import AnalysisOutcome, ErrorCode

logger = logging.getLogger(__name__)

# Rejections of the audio itself; retrying cannot help.
_CORRUPTED_STATUSES = frozenset({415, 422})
# Client errors that are worth retrying.
_TRANSIENT_CLIENT_STATUSES = frozenset({408, 429})


class HttpAnalyzer(BaseAnalyzer):
    """Calls the analysis service over HTTP."""

    def __init__(
        self,
        endpoint: str,
        api_key: str = "",
        timeout_s: float = 300,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._timeout_s = timeout_s
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            timeout=timeout_s, headers=self._headers, transport=transport
        )

    async def analyze(self, file_path: str, metadata: dict[str, Any]) -> AnalysisOutcome:
        if not self._endpoint:
            raise AnalysisError("Analysis endpoint is not configured", permanent=True,
                                error_code=ErrorCode.PROCESSING_ERROR)

        path = Path(file_path)
        mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        try:
            with path.open("rb") as fh:
                response = await self._client.post(
                    self._endpoint,
                    files={"file": (path.name, fh, mime)},
                    data={"metadata": json.dumps(metadata, default=str)},
                )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Analysis request timed out after {self._timeout_s}s") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Analysis service unreachable: {e}") from e

        status = response.status_code
        if status in _CORRUPTED_STATUSES:
            raise AnalysisError(
                f"Analysis rejected {path.name}: HTTP {status}",
                permanent=True,
                details={"status_code": status, "body": response.text[:500]},
            )
        if 400 <= status < 500 and status not in _TRANSIENT_CLIENT_STATUSES:
            raise AnalysisError(
                f"Analysis request refused: HTTP {status}",
                permanent=True,
                error_code=ErrorCode.PROCESSING_ERROR,
                details={"status_code": status},
            )
        if status >= 400:
            raise AnalysisError(
                f"Analysis service error: HTTP {status}", details={"status_code": status}
            )

        try:
            body = response.json()
        except ValueError as e:
            raise AnalysisError("Analysis service returned invalid JSON") from e

        logger.debug("Analysis complete for %s (confidence=%s)", path.name, body.get("confidence"))
        return AnalysisOutcome(
            transcript=body.get("transcript", ""),
            scores=body.get("scores") or {},
            confidence=float(body.get("confidence", 0.0)),
            analysis_ref=str(body["id"]) if body.get("id") is not None else None,
        )

    async def close(self) -> None:
        await self._client.aclose()
