"""Streaming-specific exceptions for error handling."""

from typing import Dict, List, Optional


class StreamError(Exception):
    """Base exception for stream resolution and caching."""

    pass


class InvalidIdentifierError(StreamError):
    """Raised when a track identifier is malformed. No network call is made."""

    def __init__(self, raw_id: Optional[str], message: Optional[str] = None):
        self.raw_id = raw_id
        super().__init__(message or f"Invalid track identifier: {raw_id!r}")


class ProviderError(StreamError):
    """Raised by a provider when a single resolution attempt fails."""

    pass


class ProviderTimeoutError(ProviderError):
    """Raised when a provider attempt exceeds its timeout."""

    pass


class NoPlayableFormatsError(ProviderError):
    """Raised when a provider answers but returns no format with a usable URL."""

    pass


class AllProvidersExhaustedError(StreamError):
    """Raised when every tier of the provider chain failed.

    Carries the per-tier failure reasons for logging; callers facing a UI
    only need to know that resolution failed.
    """

    def __init__(self, track_id: str, reasons: Dict[str, List[str]]):
        self.track_id = track_id
        self.reasons = reasons
        summary = "; ".join(
            f"{tier}: {', '.join(tier_reasons) or 'skipped'}"
            for tier, tier_reasons in reasons.items()
        )
        super().__init__(f"All providers exhausted for {track_id} ({summary})")


class PartialDownloadError(StreamError):
    """Raised when a payload is smaller than the minimum valid size."""

    def __init__(self, track_id: str, size_bytes: int, min_bytes: int):
        self.track_id = track_id
        self.size_bytes = size_bytes
        self.min_bytes = min_bytes
        super().__init__(
            f"Payload for {track_id} too small: {size_bytes} bytes (minimum {min_bytes})"
        )


class DiskWriteError(StreamError):
    """Raised when a payload cannot be persisted to disk."""

    pass


class DownloadError(StreamError):
    """Raised when fetching an audio payload over HTTP fails."""

    pass
