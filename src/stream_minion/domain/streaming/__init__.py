"""Stream resolution: identifiers, formats, providers and the resolver."""

from .exceptions import (
    AllProvidersExhaustedError,
    DiskWriteError,
    DownloadError,
    InvalidIdentifierError,
    NoPlayableFormatsError,
    PartialDownloadError,
    ProviderError,
    ProviderTimeoutError,
    StreamError,
)
from .identifiers import is_valid_track_id, normalize_track_id, parse_track_id
from .models import MP4A, OPUS, AudioFormat, ResolvedStream
from .resolver import StickyProvider, StreamResolver
from .selection import compute_expires_at, select_best_format

__all__ = [
    "AllProvidersExhaustedError",
    "DiskWriteError",
    "DownloadError",
    "InvalidIdentifierError",
    "NoPlayableFormatsError",
    "PartialDownloadError",
    "ProviderError",
    "ProviderTimeoutError",
    "StreamError",
    "is_valid_track_id",
    "normalize_track_id",
    "parse_track_id",
    "MP4A",
    "OPUS",
    "AudioFormat",
    "ResolvedStream",
    "StickyProvider",
    "StreamResolver",
    "compute_expires_at",
    "select_best_format",
]
