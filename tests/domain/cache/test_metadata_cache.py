"""Tests for the persistent stream metadata cache."""

import threading

import pytest

from stream_minion.core.database import get_db_connection
from stream_minion.domain.cache.metadata import MetadataCache
from stream_minion.domain.streaming.models import ResolvedStream

TRACK_ID = "abc12345678"


@pytest.fixture
def cache(tmp_path, clock) -> MetadataCache:
    return MetadataCache(tmp_path / "stream_minion.db", clock=clock)


def _stream(make_format, expires_at: float, kbps: int = 128, title: str = "Song") -> ResolvedStream:
    return ResolvedStream(
        track_id=TRACK_ID,
        formats=(make_format("mp4a", kbps), make_format("opus", 160)),
        expires_at=expires_at,
        title=title,
        duration=200,
    )


class TestGetPut:
    """Tests for basic reads and writes."""

    def test_round_trip(self, cache, clock, make_format) -> None:
        stream = _stream(make_format, clock.now + 3600)
        cache.put(TRACK_ID, stream)

        cached = cache.get(TRACK_ID)

        assert cached is not None
        assert cached.formats == stream.formats
        assert cached.expires_at == clock.now + 3600
        assert cached.title == "Song"
        assert cached.duration == 200
        assert cached.cached is True

    def test_missing_returns_none(self, cache) -> None:
        assert cache.get(TRACK_ID) is None

    def test_ttl_overrides_stream_expiry(self, cache, clock, make_format) -> None:
        cache.put(TRACK_ID, _stream(make_format, 0), ttl=60)
        assert cache.get(TRACK_ID).expires_at == clock.now + 60

    def test_upsert_last_writer_wins(self, cache, clock, make_format) -> None:
        cache.put(TRACK_ID, _stream(make_format, clock.now + 100, kbps=128))
        cache.put(TRACK_ID, _stream(make_format, clock.now + 200, kbps=256, title="Remaster"))

        cached = cache.get(TRACK_ID)
        assert cached.title == "Remaster"
        assert cached.formats[0].bitrate_bps == 256_000
        assert cache.stats()["total"] == 1

    def test_concurrent_upserts_leave_one_row(self, cache, clock, make_format) -> None:
        def writer(kbps: int) -> None:
            cache.put(TRACK_ID, _stream(make_format, clock.now + 100, kbps=kbps))

        threads = [threading.Thread(target=writer, args=(kbps,)) for kbps in range(100, 110)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert cache.stats()["total"] == 1
        assert cache.get(TRACK_ID) is not None

    def test_delete(self, cache, clock, make_format) -> None:
        cache.put(TRACK_ID, _stream(make_format, clock.now + 100))
        assert cache.delete(TRACK_ID) is True
        assert cache.get(TRACK_ID) is None
        assert cache.delete(TRACK_ID) is False


class TestExpiry:
    """Expired entries are never returned."""

    def test_expired_entry_not_returned_and_deleted(self, cache, clock, make_format) -> None:
        cache.put(TRACK_ID, _stream(make_format, clock.now + 10))
        clock.now += 10  # now == expires_at counts as expired

        assert cache.get(TRACK_ID) is None
        assert cache.stats()["total"] == 0

    def test_entry_valid_until_expiry(self, cache, clock, make_format) -> None:
        cache.put(TRACK_ID, _stream(make_format, clock.now + 10))
        clock.now += 9.9
        cached = cache.get(TRACK_ID)
        assert cached is not None
        assert clock.now < cached.expires_at

    def test_purge_expired(self, cache, clock, make_format) -> None:
        cache.put("aaaaaaaaaaa", _stream(make_format, clock.now + 10))
        cache.put("bbbbbbbbbbb", _stream(make_format, clock.now + 1000))
        clock.now += 100

        assert cache.purge_expired() == 1
        assert cache.stats() == {"total": 1, "valid": 1, "expired": 0}

    def test_stats_counts_expired(self, cache, clock, make_format) -> None:
        cache.put("aaaaaaaaaaa", _stream(make_format, clock.now + 10))
        cache.put("bbbbbbbbbbb", _stream(make_format, clock.now + 1000))
        clock.now += 100

        assert cache.stats() == {"total": 2, "valid": 1, "expired": 1}

    def test_corrupt_row_discarded(self, cache, clock, make_format, tmp_path) -> None:
        cache.put(TRACK_ID, _stream(make_format, clock.now + 100))
        with get_db_connection(tmp_path / "stream_minion.db") as conn:
            conn.execute("UPDATE stream_url_cache SET audio_formats = 'not json'")
            conn.commit()

        assert cache.get(TRACK_ID) is None
        assert cache.stats()["total"] == 0


class TestRecent:
    """Tests for the recency listing."""

    def test_newest_first(self, cache, clock, make_format) -> None:
        for track_id in ("aaaaaaaaaaa", "bbbbbbbbbbb", "ccccccccccc"):
            cache.put(track_id, _stream(make_format, clock.now + 1000))
            clock.now += 1

        recent = cache.recent(limit=2)

        assert [row["video_id"] for row in recent] == ["ccccccccccc", "bbbbbbbbbbb"]
        assert recent[0]["title"] == "Song"
