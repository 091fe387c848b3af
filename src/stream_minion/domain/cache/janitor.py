"""
Periodic eviction of cached audio files.

Each sweep runs two passes over unprotected files:
1. Age: delete files unused for longer than max_age
2. Size: while unprotected files exceed the byte budget, delete the least
   recently used one
Protected files are never deleted and do not count against the budget.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from loguru import logger

from ..streaming.identifiers import normalize_track_id
from .byte_cache import ByteCache
from .metadata import MetadataCache


class ProtectedIds:
    """Thread-safe holder for the set of ids that must never be evicted.

    Updates replace the whole set; sweeps read a snapshot.
    """

    def __init__(self, ids: Iterable[str] = ()):
        self._lock = threading.Lock()
        self._ids: frozenset[str] = frozenset()
        self.replace(ids)

    def replace(self, ids: Iterable[str]) -> None:
        normalized = frozenset(filter(None, (normalize_track_id(i) for i in ids)))
        with self._lock:
            self._ids = normalized

    def snapshot(self) -> frozenset[str]:
        with self._lock:
            return self._ids

    def __contains__(self, track_id: str) -> bool:
        return track_id in self.snapshot()

    def __len__(self) -> int:
        return len(self.snapshot())


@dataclass
class SweepResult:
    """Outcome of one janitor sweep."""

    deleted_by_age: list[str] = field(default_factory=list)
    deleted_by_size: list[str] = field(default_factory=list)
    freed_bytes: int = 0
    failed: int = 0
    remaining_bytes: int = 0  # Unprotected bytes left after the sweep
    protected_bytes: int = 0
    expired_metadata: int = 0

    @property
    def deleted(self) -> list[str]:
        return self.deleted_by_age + self.deleted_by_size


class CacheJanitor:
    """Sweeps a ByteCache once at start and then on a fixed interval.

    Args:
        byte_cache: Cache to sweep
        protected: Holder of ids that must survive every sweep
        max_age_seconds: Unprotected files unused longer than this are deleted
        max_bytes: Budget for unprotected files
        interval_seconds: Time between background sweeps
        metadata_cache: If given, expired metadata rows are purged on each sweep
        clock: Wall clock returning Unix timestamps
    """

    def __init__(
        self,
        byte_cache: ByteCache,
        protected: ProtectedIds,
        max_age_seconds: float = 20 * 24 * 3600,
        max_bytes: int = 4096 * 1024 * 1024,
        interval_seconds: float = 3600,
        metadata_cache: Optional[MetadataCache] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.byte_cache = byte_cache
        self.protected = protected
        self.max_age_seconds = max_age_seconds
        self.max_bytes = max_bytes
        self.interval_seconds = interval_seconds
        self.metadata_cache = metadata_cache
        self.clock = clock

        self._sweep_lock = threading.Lock()
        self._stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None

    def sweep(self) -> SweepResult:
        """Run both eviction passes once."""
        with self._sweep_lock:
            return self._sweep()

    def _sweep(self) -> SweepResult:
        result = SweepResult()
        now = self.clock()
        protected = self.protected.snapshot()

        candidates = []
        for entry in self.byte_cache.entries():
            if entry.track_id in protected:
                result.protected_bytes += entry.size_bytes
            else:
                candidates.append(entry)

        # Pass 1: age
        survivors = []
        for entry in candidates:
            if now - entry.last_used > self.max_age_seconds:
                if self.byte_cache.discard(entry):
                    result.deleted_by_age.append(entry.track_id)
                    result.freed_bytes += entry.size_bytes
                    continue
                result.failed += 1
            survivors.append(entry)

        # Pass 2: size budget, least recently used first
        total = sum(entry.size_bytes for entry in survivors)
        for entry in sorted(survivors, key=lambda e: e.last_used):
            if total <= self.max_bytes:
                break
            if self.byte_cache.discard(entry):
                result.deleted_by_size.append(entry.track_id)
                result.freed_bytes += entry.size_bytes
                total -= entry.size_bytes
            else:
                result.failed += 1
        result.remaining_bytes = total

        self.byte_cache.remove_stale_temp_files()

        if self.metadata_cache is not None:
            result.expired_metadata = self.metadata_cache.purge_expired()

        if result.deleted:
            logger.info(
                f"Cache sweep removed {len(result.deleted)} file(s), "
                f"freed {result.freed_bytes / (1024 * 1024):.1f} MB "
                f"({len(result.deleted_by_age)} by age, {len(result.deleted_by_size)} by size)"
            )
        else:
            logger.debug("Cache sweep found nothing to remove")
        if result.failed:
            logger.warning(f"Cache sweep could not delete {result.failed} file(s)")

        return result

    def start(self) -> None:
        """Sweep now, then keep sweeping in a background thread."""
        if self.thread is not None and self.thread.is_alive():
            return

        self._stop_event.clear()
        self.thread = threading.Thread(target=self._run, name="cache-janitor", daemon=True)
        self.thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background thread."""
        self._stop_event.set()
        if self.thread is not None:
            self.thread.join(timeout=timeout)
            self.thread = None

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.sweep()
            except Exception:
                logger.exception("Cache sweep failed")
            self._stop_event.wait(self.interval_seconds)
