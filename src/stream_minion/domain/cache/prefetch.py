"""
Background prefetching of audio payloads.

A fixed pool of worker threads drains a FIFO queue of track ids, warming the
byte cache ahead of playback. Ids that are already cached, queued or being
downloaded are dropped on enqueue. A failed prefetch is logged and not
retried.
"""

import threading
from collections import deque
from typing import Any, Callable, Iterable, Optional

from loguru import logger

from ..streaming.identifiers import normalize_track_id


class PrefetchScheduler:
    """Bounded-concurrency prefetch queue.

    Args:
        fetch: Called with a track id on a worker thread; downloads it into the cache
        is_cached: Returns True if an id already has a valid cached payload
        workers: Maximum number of concurrent fetches
    """

    def __init__(
        self,
        fetch: Callable[[str], Any],
        is_cached: Callable[[str], bool],
        workers: int = 2,
    ):
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        self.fetch = fetch
        self.is_cached = is_cached
        self.workers = workers

        self._cond = threading.Condition()
        self._queue: deque[str] = deque()
        self._queued: set[str] = set()
        self._in_flight: set[str] = set()
        self._running = False
        self._threads: list[threading.Thread] = []

    def enqueue(self, ids: Iterable[str]) -> int:
        """Queue ids for prefetching.

        Returns:
            Number of ids actually added
        """
        added = 0
        for raw_id in ids:
            track_id = normalize_track_id(raw_id)
            if not track_id:
                continue

            with self._cond:
                if track_id in self._queued or track_id in self._in_flight:
                    continue

            if self.is_cached(track_id):
                continue

            with self._cond:
                # Re-check: another caller may have queued it meanwhile
                if track_id in self._queued or track_id in self._in_flight:
                    continue
                self._queue.append(track_id)
                self._queued.add(track_id)
                added += 1
                self._cond.notify()

        if added:
            logger.debug(f"Queued {added} track(s) for prefetch")
        return added

    def clear(self) -> int:
        """Drop pending ids. Downloads already running are left alone.

        Returns:
            Number of ids removed from the queue
        """
        with self._cond:
            removed = len(self._queue)
            self._queue.clear()
            self._queued.clear()
            self._cond.notify_all()
        if removed:
            logger.info(f"Cleared {removed} pending prefetch(es)")
        return removed

    def status(self) -> dict[str, Any]:
        with self._cond:
            return {
                "queued": len(self._queue),
                "active": len(self._in_flight),
                "in_flight": sorted(self._in_flight),
            }

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the queue is empty and no fetch is running.

        Returns:
            False if timeout elapsed first
        """
        with self._cond:
            return self._cond.wait_for(
                lambda: not self._queue and not self._in_flight, timeout=timeout
            )

    def start(self) -> None:
        """Start the worker threads."""
        with self._cond:
            if self._running:
                return
            self._running = True

        self._threads = [
            threading.Thread(target=self._worker, name=f"prefetch-{n}", daemon=True)
            for n in range(self.workers)
        ]
        for thread in self._threads:
            thread.start()
        logger.debug(f"Prefetch scheduler started with {self.workers} worker(s)")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop workers after their current fetch. Pending ids are dropped."""
        with self._cond:
            self._running = False
            self._queue.clear()
            self._queued.clear()
            self._cond.notify_all()

        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []

    def _next(self) -> Optional[str]:
        with self._cond:
            while self._running and not self._queue:
                self._cond.wait()
            if not self._running:
                return None
            track_id = self._queue.popleft()
            self._queued.discard(track_id)
            self._in_flight.add(track_id)
            return track_id

    def _worker(self) -> None:
        while True:
            track_id = self._next()
            if track_id is None:
                return

            try:
                self.fetch(track_id)
            except Exception as e:
                logger.warning(f"Prefetch failed for {track_id}: {e}")
            finally:
                with self._cond:
                    self._in_flight.discard(track_id)
                    self._cond.notify_all()
