"""Tests for prefetch, protection and cache maintenance endpoints."""

from stream_minion.domain.cache import SweepResult
from stream_minion.domain.streaming import InvalidIdentifierError

TRACK_ID = "abc12345678"


def test_prefetch_reports_queued(client, manager):
    manager.prefetch_videos.return_value = 1

    response = client.post("/api/prefetch", json={"ids": [TRACK_ID, TRACK_ID]})

    assert response.status_code == 200
    assert response.json() == {"queued": 1}
    manager.prefetch_videos.assert_called_once_with([TRACK_ID, TRACK_ID])


def test_clear_prefetch(client, manager):
    manager.clear_prefetch_queue.return_value = 3
    assert client.delete("/api/prefetch").json() == {"cleared": 3}


def test_prefetch_status(client, manager):
    manager.get_prefetch_status.return_value = {
        "queued": 2,
        "active": 1,
        "cached_ids": [TRACK_ID],
        "in_flight": ["xyz98765432"],
    }

    response = client.get("/api/prefetch/status")

    assert response.status_code == 200
    assert response.json()["cached_ids"] == [TRACK_ID]


def test_update_protected(client, manager):
    manager.protected = {TRACK_ID, "xyz98765432"}

    response = client.put("/api/protected", json={"ids": [TRACK_ID, "xyz98765432"]})

    assert response.status_code == 200
    assert response.json() == {"protected_count": 2}
    manager.update_protected_song_ids.assert_called_once_with([TRACK_ID, "xyz98765432"])


def test_invalidate(client, manager):
    manager.invalidate.return_value = {"track_id": TRACK_ID, "metadata": True, "files": 2}

    response = client.delete(f"/api/cache/{TRACK_ID}")

    assert response.status_code == 200
    assert response.json()["files"] == 2


def test_invalidate_invalid_id(client, manager):
    manager.invalidate.side_effect = InvalidIdentifierError("nope")
    assert client.delete("/api/cache/nope").status_code == 400


def test_sweep(client, manager):
    manager.sweep_cache.return_value = SweepResult(
        deleted_by_age=["y"], freed_bytes=100, remaining_bytes=50
    )

    response = client.post("/api/cache/sweep")

    assert response.status_code == 200
    data = response.json()
    assert data["deleted_by_age"] == ["y"]
    assert data["deleted_by_size"] == []
    assert data["freed_bytes"] == 100


def test_stats(client, manager):
    manager.stats.return_value = {"protected": 0, "files": {"count": 0}}
    assert client.get("/api/cache/stats").json()["protected"] == 0
