"""
SQLite database operations for Stream Minion
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from loguru import logger

from .config import get_data_dir

# Database schema version for migrations
SCHEMA_VERSION = 1


def get_database_path() -> Path:
    """Get the path to the SQLite database file."""
    return get_data_dir() / "stream_minion.db"


@contextmanager
def get_db_connection(db_path: Optional[Path] = None) -> Iterator[sqlite3.Connection]:
    """Get a database connection with proper cleanup and concurrency support.

    Each caller gets its own connection, so connections are never shared
    between threads.
    """
    path = db_path or get_database_path()
    conn = sqlite3.connect(path, timeout=30.0)
    conn.row_factory = sqlite3.Row

    # WAL lets readers proceed while a writer holds the lock
    conn.execute("PRAGMA journal_mode=WAL")

    try:
        yield conn
    finally:
        conn.close()


def migrate_database(conn: sqlite3.Connection, current_version: int) -> None:
    """Migrate database from current_version to latest schema."""
    if current_version < 1:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS stream_url_cache (
                video_id TEXT PRIMARY KEY NOT NULL,
                audio_formats TEXT NOT NULL, -- JSON list of audio formats
                cached_at REAL NOT NULL, -- Unix timestamp
                expires_at REAL NOT NULL, -- Unix timestamp
                title TEXT,
                duration INTEGER
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_stream_cache_expires_at ON stream_url_cache (expires_at)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_stream_cache_cached_at ON stream_url_cache (cached_at DESC)"
        )
        conn.commit()


def init_database(db_path: Optional[Path] = None) -> None:
    """Initialize the database, creating or migrating tables as needed."""
    path = db_path or get_database_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    with get_db_connection(path) as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            )
        """)
        row = conn.execute("SELECT MAX(version) AS version FROM schema_version").fetchone()
        current_version = row["version"] or 0

        if current_version < SCHEMA_VERSION:
            migrate_database(conn, current_version)
            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info(
                f"Database migrated from v{current_version} to v{SCHEMA_VERSION}: {path}"
            )
