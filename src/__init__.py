"""callbatch: batch ingestion and processing of recorded sales calls."""

from callbatch.version import __version__

__all__ = ["__version__"]
