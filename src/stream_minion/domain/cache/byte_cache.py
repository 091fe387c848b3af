"""
Disk cache of downloaded audio payloads.

Files are named <track_id><ext>; several codec variants of one track may sit
side by side. A file counts as valid only if it is large enough to be a
complete payload and was written within the freshness window. Reads bump the
access time, which the janitor uses to find unused files.
"""

import os
import tempfile
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional, Union

from loguru import logger

from ..streaming.exceptions import DiskWriteError, PartialDownloadError

CACHE_EXTENSIONS = (".m4a", ".opus", ".webm")
TEMP_SUFFIX = ".part"

DEFAULT_MIN_BYTES = 100_000
DEFAULT_FRESHNESS_SECONDS = 168 * 60 * 60


@dataclass(frozen=True)
class CachedFile:
    """One payload on disk."""

    track_id: str
    path: Path
    size_bytes: int
    accessed_at: float
    modified_at: float

    @property
    def last_used(self) -> float:
        return max(self.accessed_at, self.modified_at)


class ByteCache:
    """Directory of cached audio files keyed by track id.

    Args:
        directory: Cache directory (created if missing)
        min_bytes: Files smaller than this are treated as truncated
        freshness_seconds: Files written longer ago than this are not served
        clock: Wall clock returning Unix timestamps
    """

    def __init__(
        self,
        directory: Union[str, Path],
        min_bytes: int = DEFAULT_MIN_BYTES,
        freshness_seconds: float = DEFAULT_FRESHNESS_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = Path(directory)
        self.min_bytes = min_bytes
        self.freshness_seconds = freshness_seconds
        self.clock = clock
        self.directory.mkdir(parents=True, exist_ok=True)

        self._locks_guard = threading.Lock()
        # track_id -> [lock, holders]; entries are dropped when the last holder leaves
        self._locks: dict[str, list] = {}

    def _variants(self, track_id: str) -> list[Path]:
        return [self.directory / f"{track_id}{ext}" for ext in CACHE_EXTENSIONS]

    def _is_valid(self, path: Path, now: float) -> bool:
        try:
            stat = path.stat()
        except OSError:
            return False
        return stat.st_size >= self.min_bytes and now - stat.st_mtime < self.freshness_seconds

    def lookup(self, track_id: str) -> Optional[Path]:
        """Return the first valid variant for track_id, or None."""
        now = self.clock()
        for path in self._variants(track_id):
            if self._is_valid(path, now):
                return path
        return None

    def has(self, track_id: str) -> bool:
        return self.lookup(track_id) is not None

    def path(self, track_id: str) -> Optional[Path]:
        """Return a playable file for track_id and mark it as used."""
        path = self.lookup(track_id)
        if path is not None:
            self.touch(track_id)
        return path

    def touch(self, track_id: str) -> bool:
        """Bump the access time of every variant of track_id.

        The modification time is kept so the freshness window still counts
        from when the file was written.

        Returns:
            True if at least one file was touched
        """
        now = self.clock()
        touched = False
        for path in self._variants(track_id):
            try:
                os.utime(path, (now, path.stat().st_mtime))
                touched = True
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Could not update access time for {path}: {e}")
        return touched

    @contextmanager
    def locked(self, track_id: str) -> Iterator[None]:
        """Hold the per-id guard so only one caller downloads track_id at a time."""
        with self._locks_guard:
            entry = self._locks.setdefault(track_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[track_id]

    def write(
        self,
        track_id: str,
        data: Union[bytes, Iterable[bytes]],
        extension: str,
    ) -> Path:
        """Atomically store a payload.

        Data goes to a temp file in the cache directory and is renamed into
        place only once complete, so readers never see a partial file.

        Args:
            track_id: Normalized id
            data: Payload bytes, or an iterable of chunks
            extension: Codec extension including the dot (e.g. ".m4a")

        Returns:
            Path of the cached file

        Raises:
            PartialDownloadError: If fewer than min_bytes were received
            DiskWriteError: If the file could not be written
        """
        if extension not in CACHE_EXTENSIONS:
            raise ValueError(f"Unsupported cache extension: {extension!r}")

        final_path = self.directory / f"{track_id}{extension}"
        chunks = [data] if isinstance(data, (bytes, bytearray)) else data

        try:
            fd, temp_name = tempfile.mkstemp(
                prefix=f".{track_id}.", suffix=TEMP_SUFFIX, dir=self.directory
            )
        except OSError as e:
            raise DiskWriteError(f"Cannot create temp file in {self.directory}: {e}") from e

        temp_path = Path(temp_name)
        size = 0
        try:
            try:
                with os.fdopen(fd, "wb") as f:
                    for chunk in chunks:
                        if chunk:
                            f.write(chunk)
                            size += len(chunk)
            except OSError as e:
                raise DiskWriteError(f"Failed writing {final_path}: {e}") from e

            if size < self.min_bytes:
                raise PartialDownloadError(track_id, size, self.min_bytes)

            try:
                os.replace(temp_path, final_path)
            except OSError as e:
                raise DiskWriteError(f"Failed to move payload into {final_path}: {e}") from e
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise

        logger.info(f"Cached {track_id}{extension} ({size} bytes)")
        return final_path

    def entries(self) -> list[CachedFile]:
        """List every cached payload, valid or not. Temp files are skipped."""
        entries = []
        try:
            paths = list(self.directory.iterdir())
        except FileNotFoundError:
            return entries

        for path in paths:
            if path.suffix not in CACHE_EXTENSIONS or path.name.startswith("."):
                continue
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue  # Removed concurrently
            entries.append(
                CachedFile(
                    track_id=path.stem,
                    path=path,
                    size_bytes=stat.st_size,
                    accessed_at=stat.st_atime,
                    modified_at=stat.st_mtime,
                )
            )
        return entries

    def discard(self, entry: CachedFile) -> bool:
        """Delete one cached file. Returns False if it could not be removed."""
        try:
            entry.path.unlink()
            return True
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning(f"Failed to delete cached file {entry.path}: {e}")
            return False

    def remove(self, track_id: str) -> int:
        """Delete every variant of track_id.

        Returns:
            Number of files removed
        """
        removed = 0
        for path in self._variants(track_id):
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
        if removed:
            logger.info(f"Removed {removed} cached file(s) for {track_id}")
        return removed

    def remove_stale_temp_files(self, older_than: float = 3600) -> int:
        """Delete leftover temp files from interrupted writes."""
        cutoff = self.clock() - older_than
        removed = 0
        for path in self.directory.glob(f".*{TEMP_SUFFIX}"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Failed to delete temp file {path}: {e}")
        return removed

    def total_bytes(self) -> int:
        return sum(entry.size_bytes for entry in self.entries())

    def cached_ids(self) -> set[str]:
        """Ids that currently have a valid payload."""
        now = self.clock()
        return {entry.track_id for entry in self.entries() if self._is_valid(entry.path, now)}
