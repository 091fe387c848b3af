"""Tests for database setup."""

from stream_minion.core.database import SCHEMA_VERSION, get_db_connection, init_database


def test_init_creates_schema(tmp_path):
    db_path = tmp_path / "nested" / "stream.db"
    init_database(db_path)

    with get_db_connection(db_path) as conn:
        tables = {
            row["name"] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        version = conn.execute("SELECT MAX(version) AS v FROM schema_version").fetchone()["v"]

    assert "stream_url_cache" in tables
    assert version == SCHEMA_VERSION


def test_init_is_idempotent(tmp_path):
    db_path = tmp_path / "stream.db"
    init_database(db_path)
    init_database(db_path)

    with get_db_connection(db_path) as conn:
        rows = conn.execute("SELECT version FROM schema_version").fetchall()

    assert [row["version"] for row in rows] == [SCHEMA_VERSION]


def test_connection_uses_wal(tmp_path):
    with get_db_connection(tmp_path / "stream.db") as conn:
        mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    assert mode == "wal"
