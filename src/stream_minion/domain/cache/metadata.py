"""
Persistent stream metadata cache.

Maps a track id to the format list a provider returned, until the signed
URLs in it stop working. Expired rows are never returned; reading one deletes
it. Rows are upserted, so concurrent writers for the same id leave the last
write in place.
"""

import json
import sqlite3
import time
from pathlib import Path
from typing import Any, Callable, Optional

from loguru import logger

from ...core.database import get_db_connection, init_database
from ..streaming.models import AudioFormat, ResolvedStream


def _row_to_stream(row: sqlite3.Row) -> ResolvedStream:
    formats = tuple(AudioFormat.from_dict(item) for item in json.loads(row["audio_formats"]))
    return ResolvedStream(
        track_id=row["video_id"],
        formats=formats,
        expires_at=row["expires_at"],
        title=row["title"],
        duration=row["duration"],
        cached=True,
    )


class MetadataCache:
    """SQLite-backed, expiry-aware store of resolved streams.

    Args:
        db_path: Database file (default: the shared data-dir database)
        clock: Wall clock returning Unix timestamps
    """

    def __init__(self, db_path: Optional[Path] = None, clock: Callable[[], float] = time.time):
        self.db_path = db_path
        self.clock = clock
        init_database(db_path)

    def get(self, track_id: str) -> Optional[ResolvedStream]:
        """Return the cached stream, or None if missing or expired.

        An expired row is deleted as a side effect.
        """
        now = self.clock()
        with get_db_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM stream_url_cache WHERE video_id = ?", (track_id,)
            ).fetchone()
            if row is None:
                return None

            if now >= row["expires_at"]:
                # Only delete the row we read; a concurrent put may have refreshed it
                conn.execute(
                    "DELETE FROM stream_url_cache WHERE video_id = ? AND expires_at <= ?",
                    (track_id, now),
                )
                conn.commit()
                logger.debug(f"Dropped expired metadata for {track_id}")
                return None

        try:
            return _row_to_stream(row)
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Corrupt metadata row for {track_id}, discarding: {e}")
            self.delete(track_id)
            return None

    def put(self, track_id: str, stream: ResolvedStream, ttl: Optional[float] = None) -> None:
        """Insert or replace the entry for track_id.

        Args:
            track_id: Normalized id
            stream: Stream to store; its expires_at is used unless ttl is given
            ttl: Seconds from now until the entry expires
        """
        now = self.clock()
        expires_at = now + ttl if ttl is not None else stream.expires_at
        payload = json.dumps([f.to_dict() for f in stream.formats])

        with get_db_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO stream_url_cache
                    (video_id, audio_formats, cached_at, expires_at, title, duration)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(video_id) DO UPDATE SET
                    audio_formats = excluded.audio_formats,
                    cached_at = excluded.cached_at,
                    expires_at = excluded.expires_at,
                    title = excluded.title,
                    duration = excluded.duration
                """,
                (track_id, payload, now, expires_at, stream.title, stream.duration),
            )
            conn.commit()

        logger.info(
            f"Cached metadata for {track_id} "
            f"({len(stream.formats)} formats, expires in {int(expires_at - now)}s)"
        )

    def delete(self, track_id: str) -> bool:
        """Remove an entry. Returns True if a row was deleted."""
        with get_db_connection(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM stream_url_cache WHERE video_id = ?", (track_id,))
            conn.commit()
            return cursor.rowcount > 0

    def purge_expired(self) -> int:
        """Delete every expired row.

        Returns:
            Number of rows removed
        """
        with get_db_connection(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM stream_url_cache WHERE expires_at <= ?", (self.clock(),)
            )
            conn.commit()
            removed = cursor.rowcount

        if removed:
            logger.info(f"Purged {removed} expired stream metadata entries")
        return removed

    def stats(self) -> dict[str, Any]:
        """Get cache statistics for monitoring.

        Returns:
            Dict with total, valid and expired entry counts
        """
        with get_db_connection(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(CASE WHEN expires_at <= ? THEN 1 ELSE 0 END), 0) AS expired
                FROM stream_url_cache
                """,
                (self.clock(),),
            ).fetchone()

        total = row["total"]
        expired = row["expired"]
        return {"total": total, "valid": total - expired, "expired": expired}

    def recent(self, limit: int = 20) -> list[dict[str, Any]]:
        """List the most recently cached entries, newest first."""
        with get_db_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT video_id, cached_at, expires_at, title, duration
                FROM stream_url_cache
                ORDER BY cached_at DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [dict(row) for row in rows]
