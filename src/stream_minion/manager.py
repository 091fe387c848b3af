"""
Cache manager: the entry point collaborators use.

Owns the resolver, both caches, the janitor and the prefetch scheduler, plus
the process-wide state they share (sticky provider, protected ids). Build one
with CacheManager.from_config(), call start(), and close() it on shutdown.
"""

import os
import re
import shutil
import sqlite3
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Protocol

from loguru import logger

from .core.config import Config, get_downloads_dir
from .domain.cache import (
    ByteCache,
    CacheJanitor,
    MetadataCache,
    PrefetchScheduler,
    ProtectedIds,
    SweepResult,
    fetch_artwork,
    stream_audio,
)
from .domain.streaming import (
    AllProvidersExhaustedError,
    DownloadError,
    InvalidIdentifierError,
    ResolvedStream,
    StickyProvider,
    StreamError,
    StreamResolver,
    parse_track_id,
)
from .domain.streaming.models import MP4A, AudioFormat
from .domain.streaming.providers import ProviderTier, build_provider_tiers

# Extensions used for permanent downloads
DOWNLOAD_EXTENSIONS = {"mp4a": ".m4a", "opus": ".opus"}


class LibraryIngest(Protocol):
    """Adds a downloaded file to the local music library."""

    def ingest(
        self,
        path: Path,
        title: str,
        artist: str,
        album: str,
        artwork: Optional[bytes] = None,
    ) -> None: ...


@dataclass
class DownloadResult:
    """Outcome of a permanent download."""

    success: bool
    path: Optional[Path] = None
    error: Optional[str] = None


def sanitize_path_component(value: Optional[str], fallback: str) -> str:
    """Make a string safe to use as a single file or folder name.

    Example:
        "AC/DC: Live?" -> "AC_DC_ Live_"
    """
    cleaned = re.sub(r"[^\w\s-]", "_", value or "")

    # Collapse whitespace runs
    cleaned = re.sub(r"\s+", " ", cleaned).strip()

    # Keep room for an extension within common 255 byte name limits
    cleaned = cleaned[:200].strip()

    return cleaned or fallback


def _write_file_atomic(path: Path, chunks: Iterable[bytes]) -> int:
    """Write chunks to path via a temp file in the same folder."""
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".part", dir=path.parent)
    size = 0
    try:
        with os.fdopen(fd, "wb") as f:
            for chunk in chunks:
                f.write(chunk)
                size += len(chunk)
        if size == 0:
            raise DownloadError("Downloaded empty payload")
        os.replace(temp_name, path)
    except Exception:
        Path(temp_name).unlink(missing_ok=True)
        raise
    return size


class CacheManager:
    """Facade over stream resolution and audio caching.

    Args:
        resolver: Resolver wired to the metadata cache
        metadata_cache: Persistent stream metadata cache
        byte_cache: On-disk payload cache
        protected: Ids the janitor must never evict
        janitor: Periodic cache sweeper
        downloads_dir: Root folder for permanent downloads
        prefetch_enabled: Start prefetch workers on start()
        prefetch_workers: Maximum concurrent prefetch downloads
        preferred_codec: Codec selected first when several are available
        download_timeout: Overall deadline for one payload transfer, in seconds
        cache_on_play: Download full payloads before handing out a reference
        library_ingest: Optional collaborator notified of finished downloads
    """

    def __init__(
        self,
        resolver: StreamResolver,
        metadata_cache: MetadataCache,
        byte_cache: ByteCache,
        protected: ProtectedIds,
        janitor: CacheJanitor,
        downloads_dir: Path,
        prefetch_enabled: bool = True,
        prefetch_workers: int = 2,
        preferred_codec: str = MP4A,
        download_timeout: float = 30.0,
        cache_on_play: bool = True,
        library_ingest: Optional[LibraryIngest] = None,
    ):
        self.resolver = resolver
        self.metadata_cache = metadata_cache
        self.byte_cache = byte_cache
        self.protected = protected
        self.janitor = janitor
        self.downloads_dir = Path(downloads_dir)
        self.prefetch_enabled = prefetch_enabled
        self.preferred_codec = preferred_codec
        self.download_timeout = download_timeout
        self.cache_on_play = cache_on_play
        self.library_ingest = library_ingest

        self.scheduler = PrefetchScheduler(
            fetch=self._prefetch_one,
            is_cached=self.byte_cache.has,
            workers=prefetch_workers,
        )
        self._started = False

    @classmethod
    def from_config(
        cls,
        config: Config,
        db_path: Optional[Path] = None,
        tiers: Optional[list[ProviderTier]] = None,
        library_ingest: Optional[LibraryIngest] = None,
    ) -> "CacheManager":
        """Build a manager and all of its components from configuration."""
        metadata_cache = MetadataCache(db_path)
        byte_cache = ByteCache(
            config.cache.directory,
            min_bytes=config.cache.min_file_bytes,
            freshness_seconds=config.cache.freshness_hours * 3600,
        )
        resolver = StreamResolver(
            tiers if tiers is not None else build_provider_tiers(config.resolver),
            metadata_cache=metadata_cache,
            sticky=StickyProvider(),
            preferred_codec=config.resolver.preferred_codec,
            default_ttl=config.resolver.default_ttl_hours * 3600,
            expiry_margin=config.resolver.expiry_margin_minutes * 60,
            race_grace=config.resolver.race_grace_seconds,
        )
        protected = ProtectedIds()
        janitor = CacheJanitor(
            byte_cache,
            protected,
            max_age_seconds=config.cache.max_age_days * 24 * 3600,
            max_bytes=config.cache.max_size_mb * 1024 * 1024,
            interval_seconds=config.cache.cleanup_interval_minutes * 60,
            metadata_cache=metadata_cache,
        )
        return cls(
            resolver=resolver,
            metadata_cache=metadata_cache,
            byte_cache=byte_cache,
            protected=protected,
            janitor=janitor,
            downloads_dir=get_downloads_dir(config),
            prefetch_enabled=config.prefetch.enabled,
            prefetch_workers=config.prefetch.workers,
            preferred_codec=config.resolver.preferred_codec,
            download_timeout=config.cache.download_timeout_seconds,
            cache_on_play=config.cache.cache_on_play,
            library_ingest=library_ingest,
        )

    # Lifecycle

    def start(self) -> None:
        """Start the janitor (which sweeps immediately) and the prefetch workers."""
        if self._started:
            return
        self.janitor.start()
        if self.prefetch_enabled:
            self.scheduler.start()
        self._started = True
        logger.info(f"Cache manager started (cache dir: {self.byte_cache.directory})")

    def close(self) -> None:
        """Stop background threads and release the resolver's thread pool."""
        self.scheduler.stop()
        self.janitor.stop()
        self.resolver.close()
        self._started = False
        logger.info("Cache manager stopped")

    def __enter__(self) -> "CacheManager":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # Resolution

    def resolve(self, raw_id: str) -> ResolvedStream:
        """Resolve an id to its formats.

        Raises:
            InvalidIdentifierError: If the id is malformed
            AllProvidersExhaustedError: If every provider failed
        """
        return self.resolver.resolve(raw_id)

    def get_direct_stream_url(self, raw_id: str) -> Optional[str]:
        """Return the network URL of the best format, or None if resolution fails."""
        try:
            stream = self.resolver.resolve(raw_id)
        except StreamError as e:
            logger.warning(f"Could not resolve {raw_id!r}: {e}")
            return None

        best = stream.best_format(self.preferred_codec)
        return best.url if best else None

    def get_stream_url(self, raw_id: str) -> Optional[str]:
        """Return a playable reference: a cached file path or a network URL.

        A valid cached file wins. Otherwise, with cache_on_play, the payload
        is downloaded first; if that download fails the network URL is
        returned instead. Returns None only when the track can't be resolved.
        """
        try:
            track_id = parse_track_id(raw_id)
        except InvalidIdentifierError as e:
            logger.warning(str(e))
            return None

        path = self.byte_cache.path(track_id)
        if path is not None:
            logger.debug(f"Serving {track_id} from byte cache")
            return str(path)

        if self.cache_on_play:
            try:
                return str(self.cache_track(track_id))
            except AllProvidersExhaustedError as e:
                logger.warning(str(e))
                return None
            except StreamError as e:
                logger.warning(f"Caching {track_id} failed, falling back to network URL: {e}")

        return self.get_direct_stream_url(track_id)

    # Byte cache population

    def _download_payload(
        self, track_id: str, stream: ResolvedStream
    ) -> tuple[AudioFormat, Iterator[bytes]]:
        best = stream.best_format(self.preferred_codec)
        if best is None:
            raise DownloadError(f"No playable format for {track_id}")
        return best, stream_audio(best.url, timeout=self.download_timeout)

    def cache_track(self, raw_id: str) -> Path:
        """Make sure a valid payload for raw_id is in the byte cache.

        Concurrent callers for the same id wait for the first one and then
        reuse its file.

        Raises:
            InvalidIdentifierError: If the id is malformed
            AllProvidersExhaustedError: If the track can't be resolved
            DownloadError: If the transfer fails
            PartialDownloadError: If the payload is truncated
            DiskWriteError: If the payload can't be written
        """
        track_id = parse_track_id(raw_id)

        with self.byte_cache.locked(track_id):
            existing = self.byte_cache.lookup(track_id)
            if existing is not None:
                return existing

            stream = self.resolver.resolve(track_id)
            best, chunks = self._download_payload(track_id, stream)
            try:
                return self.byte_cache.write(track_id, chunks, best.extension)
            except DownloadError:
                if not stream.cached:
                    raise
                # The cached URL may have been revoked early; re-resolve once
                logger.info(f"Cached URL for {track_id} failed, re-resolving")
                try:
                    self.metadata_cache.delete(track_id)
                except sqlite3.Error as e:
                    logger.error(f"Failed to drop cached metadata for {track_id}: {e}")
                    raise DownloadError(
                        f"Stale cached URL for {track_id} could not be dropped"
                    ) from e
                stream = self.resolver.resolve(track_id)
                best, chunks = self._download_payload(track_id, stream)
                return self.byte_cache.write(track_id, chunks, best.extension)

    def _prefetch_one(self, track_id: str) -> None:
        path = self.cache_track(track_id)
        logger.debug(f"Prefetched {track_id} -> {path}")

    # Permanent downloads

    def download(
        self,
        raw_id: str,
        title: str,
        artist: str,
        album: str,
        artwork_url: Optional[str] = None,
    ) -> DownloadResult:
        """Save a track permanently as <artist>/<album>/<title><ext>.

        Reuses a cached payload when one is valid. Library ingest failures
        are logged and do not fail the download.
        """
        logger.info(f"Starting download: {raw_id} ({artist} - {title})")
        try:
            track_id = parse_track_id(raw_id)
            folder = (
                self.downloads_dir
                / sanitize_path_component(artist, "Unknown Artist")
                / sanitize_path_component(album, "Unknown Album")
            )
            folder.mkdir(parents=True, exist_ok=True)
            safe_title = sanitize_path_component(title, "Unknown Title")

            cached = self.byte_cache.lookup(track_id)
            if cached is not None:
                codec = MP4A if cached.suffix == ".m4a" else "opus"
                path = folder / f"{safe_title}{DOWNLOAD_EXTENSIONS[codec]}"
                shutil.copy2(cached, path)
                self.byte_cache.touch(track_id)
                logger.info(f"Copied cached payload for {track_id} to {path}")
            else:
                stream = self.resolver.resolve(track_id)
                best, chunks = self._download_payload(track_id, stream)
                path = folder / f"{safe_title}{DOWNLOAD_EXTENSIONS.get(best.codec, '.opus')}"
                size = _write_file_atomic(path, chunks)
                logger.info(f"Downloaded {track_id} to {path} ({size} bytes)")

        except (StreamError, OSError) as e:
            logger.error(f"Download failed for {raw_id!r}: {e}")
            return DownloadResult(success=False, error=str(e))

        if self.library_ingest is not None:
            artwork = fetch_artwork(artwork_url) if artwork_url else None
            try:
                self.library_ingest.ingest(path, title, artist, album, artwork=artwork)
            except Exception:
                logger.exception(f"Failed to add {path} to library (file was saved)")

        return DownloadResult(success=True, path=path)

    # Prefetch

    def prefetch_song(self, raw_id: str) -> bool:
        """Queue one track for background caching. Returns True if it was queued."""
        return self.prefetch_videos([raw_id]) > 0

    def prefetch_videos(self, ids: Iterable[str]) -> int:
        """Queue tracks for background caching. Returns how many were queued."""
        if not self.prefetch_enabled:
            logger.debug("Prefetch disabled, ignoring request")
            return 0
        return self.scheduler.enqueue(ids)

    def clear_prefetch_queue(self) -> int:
        return self.scheduler.clear()

    def get_prefetch_status(self) -> dict[str, Any]:
        """Snapshot of prefetch activity, for introspection only."""
        status = self.scheduler.status()
        return {
            "queued": status["queued"],
            "active": status["active"],
            "cached_ids": sorted(self.byte_cache.cached_ids()),
            "in_flight": status["in_flight"],
        }

    # Cache maintenance

    def update_protected_song_ids(self, ids: Iterable[str]) -> None:
        """Replace the set of ids the janitor must keep."""
        self.protected.replace(ids)
        logger.info(f"Protected song set updated ({len(self.protected)} ids)")

    def invalidate(self, raw_id: str) -> dict[str, Any]:
        """Drop a track from both caches.

        Raises:
            InvalidIdentifierError: If the id is malformed
        """
        track_id = parse_track_id(raw_id)
        with self.byte_cache.locked(track_id):
            metadata_removed = self.metadata_cache.delete(track_id)
            files_removed = self.byte_cache.remove(track_id)
        logger.info(f"Invalidated {track_id}")
        return {"track_id": track_id, "metadata": metadata_removed, "files": files_removed}

    def sweep_cache(self) -> SweepResult:
        return self.janitor.sweep()

    def stats(self) -> dict[str, Any]:
        entries = self.byte_cache.entries()
        return {
            "metadata": self.metadata_cache.stats(),
            "files": {
                "count": len(entries),
                "total_bytes": sum(e.size_bytes for e in entries),
                "max_bytes": self.janitor.max_bytes,
                "directory": str(self.byte_cache.directory),
            },
            "protected": len(self.protected),
            "prefetch": self.scheduler.status(),
        }
