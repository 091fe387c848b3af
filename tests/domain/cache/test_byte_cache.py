"""Tests for the on-disk payload cache."""

import os
import threading
import time

import pytest

from stream_minion.domain.cache.byte_cache import ByteCache
from stream_minion.domain.streaming.exceptions import (
    DownloadError,
    PartialDownloadError,
)

TRACK_ID = "abc12345678"
PAYLOAD = b"\x00" * 2048


@pytest.fixture
def cache(tmp_path) -> ByteCache:
    return ByteCache(tmp_path / "audio", min_bytes=1024)


def _leftover_temp_files(cache: ByteCache) -> list:
    return [p for p in cache.directory.iterdir() if p.name.startswith(".")]


class TestWrite:
    """Tests for atomic writes."""

    def test_write_bytes(self, cache) -> None:
        path = cache.write(TRACK_ID, PAYLOAD, ".m4a")

        assert path == cache.directory / f"{TRACK_ID}.m4a"
        assert path.read_bytes() == PAYLOAD
        assert cache.has(TRACK_ID)
        assert _leftover_temp_files(cache) == []

    def test_write_chunks(self, cache) -> None:
        chunks = (b"\x01" * 512 for _ in range(4))
        path = cache.write(TRACK_ID, chunks, ".webm")
        assert path.stat().st_size == 2048

    def test_partial_payload_discarded(self, cache) -> None:
        """A payload under the minimum size leaves no file behind."""
        with pytest.raises(PartialDownloadError) as exc_info:
            cache.write(TRACK_ID, b"\x00" * 100, ".m4a")

        assert exc_info.value.size_bytes == 100
        assert not cache.has(TRACK_ID)
        assert list(cache.directory.iterdir()) == []

    def test_failed_transfer_cleans_temp_file(self, cache) -> None:
        def broken_stream():
            yield b"\x00" * 512
            raise DownloadError("connection reset")

        with pytest.raises(DownloadError):
            cache.write(TRACK_ID, broken_stream(), ".m4a")

        assert list(cache.directory.iterdir()) == []

    def test_failed_write_keeps_previous_file(self, cache) -> None:
        cache.write(TRACK_ID, PAYLOAD, ".m4a")

        with pytest.raises(PartialDownloadError):
            cache.write(TRACK_ID, b"\x01", ".m4a")

        assert (cache.directory / f"{TRACK_ID}.m4a").read_bytes() == PAYLOAD

    def test_unknown_extension_rejected(self, cache) -> None:
        with pytest.raises(ValueError):
            cache.write(TRACK_ID, PAYLOAD, ".mp3")

    def test_codec_variants_coexist(self, cache) -> None:
        cache.write(TRACK_ID, PAYLOAD, ".m4a")
        cache.write(TRACK_ID, PAYLOAD, ".webm")
        assert {e.path.suffix for e in cache.entries()} == {".m4a", ".webm"}


class TestValidity:
    """Size and freshness rules."""

    def test_small_file_not_valid(self, cache) -> None:
        (cache.directory / f"{TRACK_ID}.m4a").write_bytes(b"\x00" * 10)
        assert not cache.has(TRACK_ID)
        assert cache.lookup(TRACK_ID) is None

    def test_stale_file_not_valid(self, tmp_path) -> None:
        cache = ByteCache(tmp_path, min_bytes=1, freshness_seconds=3600)
        path = cache.write(TRACK_ID, PAYLOAD, ".m4a")
        old = time.time() - 7200
        os.utime(path, (old, old))

        assert not cache.has(TRACK_ID)
        assert TRACK_ID not in cache.cached_ids()
        assert len(cache.entries()) == 1  # Still on disk for the janitor

    def test_default_minimum_size(self, tmp_path) -> None:
        cache = ByteCache(tmp_path)
        with pytest.raises(PartialDownloadError):
            cache.write(TRACK_ID, b"\x00" * 99_999, ".m4a")
        cache.write(TRACK_ID, b"\x00" * 100_000, ".m4a")
        assert cache.has(TRACK_ID)

    def test_cached_ids(self, cache) -> None:
        cache.write(TRACK_ID, PAYLOAD, ".m4a")
        cache.write("xyz98765432", PAYLOAD, ".webm")
        assert cache.cached_ids() == {TRACK_ID, "xyz98765432"}


class TestTouch:
    """Access time tracking."""

    def test_touch_bumps_access_time_only(self, cache) -> None:
        path = cache.write(TRACK_ID, PAYLOAD, ".m4a")
        old = time.time() - 3600
        os.utime(path, (old, old))

        assert cache.touch(TRACK_ID) is True

        stat = path.stat()
        assert stat.st_atime > old + 1000
        assert stat.st_mtime == pytest.approx(old, abs=1)

    def test_touch_missing(self, cache) -> None:
        assert cache.touch(TRACK_ID) is False

    def test_path_touches(self, cache) -> None:
        path = cache.write(TRACK_ID, PAYLOAD, ".m4a")
        old = time.time() - 3600
        os.utime(path, (old, time.time()))

        assert cache.path(TRACK_ID) == path
        assert path.stat().st_atime > old + 1000


class TestRemoval:
    """Tests for explicit removal."""

    def test_remove_all_variants(self, cache) -> None:
        cache.write(TRACK_ID, PAYLOAD, ".m4a")
        cache.write(TRACK_ID, PAYLOAD, ".webm")

        assert cache.remove(TRACK_ID) == 2
        assert cache.entries() == []

    def test_discard_entry(self, cache) -> None:
        cache.write(TRACK_ID, PAYLOAD, ".m4a")
        entry = cache.entries()[0]
        assert cache.discard(entry) is True
        assert cache.discard(entry) is True  # Already gone
        assert cache.total_bytes() == 0

    def test_stale_temp_files_removed(self, cache) -> None:
        temp = cache.directory / f".{TRACK_ID}.abcd.part"
        temp.write_bytes(b"\x00")
        old = time.time() - 7200
        os.utime(temp, (old, old))

        assert cache.remove_stale_temp_files() == 1
        assert not temp.exists()
        assert cache.entries() == []


class TestLocking:
    """Per-id in-flight guard."""

    def test_second_writer_waits_and_sees_first_file(self, cache) -> None:
        downloads = []
        results = []
        start = threading.Barrier(2)

        def fetch() -> None:
            start.wait()
            with cache.locked(TRACK_ID):
                path = cache.lookup(TRACK_ID)
                if path is None:
                    downloads.append(1)
                    time.sleep(0.05)
                    path = cache.write(TRACK_ID, PAYLOAD, ".m4a")
                results.append(path)

        threads = [threading.Thread(target=fetch) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(downloads) == 1
        assert results[0] == results[1]

    def test_guards_released_after_use(self, cache) -> None:
        for n in range(500):
            with cache.locked(f"id{n:09d}"):
                pass

        assert cache._locks == {}

    def test_guard_kept_while_another_caller_waits(self, cache) -> None:
        entered = threading.Event()
        release = threading.Event()
        second_done = threading.Event()

        def holder() -> None:
            with cache.locked(TRACK_ID):
                entered.set()
                release.wait(timeout=5)

        def waiter() -> None:
            with cache.locked(TRACK_ID):
                second_done.set()

        first = threading.Thread(target=holder)
        first.start()
        assert entered.wait(timeout=5)
        second = threading.Thread(target=waiter)
        second.start()
        time.sleep(0.05)

        assert TRACK_ID in cache._locks
        release.set()
        first.join(timeout=5)
        second.join(timeout=5)

        assert second_done.is_set()
        assert cache._locks == {}

    def test_guard_released_on_error(self, cache) -> None:
        with pytest.raises(RuntimeError):
            with cache.locked(TRACK_ID):
                raise RuntimeError("transfer failed")

        assert cache._locks == {}
