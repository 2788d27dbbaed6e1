# src/analysis/base_analyzer.py — v1
"""Contract with the external analysis collaborator (transcription and
scoring happen elsewhere)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from callbatch.core.models import AnalysisOutcome


class BaseAnalyzer(ABC):
    """Analyze one downloaded audio file."""

    # Whether overlapping analyze() calls on one instance are allowed.
    concurrent_safe: bool = True

    @abstractmethod
    async def analyze(self, file_path: str, metadata: dict[str, Any]) -> AnalysisOutcome:
        """Return transcript/scores/confidence.

        Raises:
            AnalysisError: ``permanent=True`` for rejections that must not
                be retried (e.g. corrupted audio), otherwise transient.
            NetworkError: The collaborator could not be reached.
        """

    async def close(self) -> None:
        """Release connections. Default: nothing to release."""
