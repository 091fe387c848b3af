"""Audio caching: persistent metadata, on-disk payloads, eviction and prefetch."""

from .byte_cache import CACHE_EXTENSIONS, ByteCache, CachedFile
from .janitor import CacheJanitor, ProtectedIds, SweepResult
from .metadata import MetadataCache
from .prefetch import PrefetchScheduler
from .transfer import fetch_artwork, stream_audio

__all__ = [
    "CACHE_EXTENSIONS",
    "ByteCache",
    "CachedFile",
    "CacheJanitor",
    "ProtectedIds",
    "SweepResult",
    "MetadataCache",
    "PrefetchScheduler",
    "fetch_artwork",
    "stream_audio",
]
