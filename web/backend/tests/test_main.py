"""Tests for FastAPI application."""

from fastapi.testclient import TestClient
from web.backend.main import app

client = TestClient(app)


def test_health_endpoint():
    """Test health check endpoint returns 200."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_cors_headers():
    """Test CORS headers are present."""
    response = client.options(
        "/health",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "GET",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:5173"


def test_routers_mounted_under_api():
    paths = client.get("/openapi.json").json()["paths"]
    assert "/api/stream/{track_id}/url" in paths
    assert "/api/prefetch" in paths
    assert "/api/downloads" in paths
