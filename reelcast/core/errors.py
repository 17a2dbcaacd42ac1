"""Exception types raised across the ingestion and reconciliation pipeline.

Per-file failures (fingerprint, metadata, derivatives, primary publish) are caught by
the orchestrator and turned into a ``failed`` disposition. Per-record provider failures
are caught by the reconciler and retried on the next pass. Only ``ConfigurationError``
and ``ReconcilerBusyError`` abort a whole run.
"""

from __future__ import annotations


class ReelcastError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(ReelcastError):
    """Missing tool, credential or directory; raised before any file is touched."""


class FingerprintError(ReelcastError, OSError):
    """The source file could not be read to completion; still an ``OSError`` for callers."""


class MetadataError(ReelcastError):
    """ffprobe failed, timed out or produced output we cannot use."""


class DerivativeError(ReelcastError):
    """ffmpeg could not produce the placeholder or the preview."""


class ProviderError(ReelcastError):
    """A hosting provider request failed at the transport or API level."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class PublishError(ReelcastError):
    """The required primary provider could not accept the upload."""


class DownloadError(ReelcastError):
    """The external downloader could not fetch a URL into the intake directory."""


class ReconcilerBusyError(ReelcastError):
    """Another process currently holds the reconciler lease."""


__all__ = [
    "ReelcastError",
    "ConfigurationError",
    "FingerprintError",
    "MetadataError",
    "DerivativeError",
    "ProviderError",
    "PublishError",
    "DownloadError",
    "ReconcilerBusyError",
]
