"""Pytest configuration for backend tests.

Routes are exercised against a mocked CacheManager; the app lifespan (which
builds the real manager) is never entered.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add repository root and src/ to path
repo_root = Path(__file__).parent.parent.parent.parent
for path in (repo_root, repo_root / "src"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from fastapi.testclient import TestClient  # noqa: E402

from stream_minion.manager import CacheManager  # noqa: E402
from web.backend.deps import get_manager  # noqa: E402
from web.backend.main import app  # noqa: E402


@pytest.fixture
def manager():
    return MagicMock(spec=CacheManager)


@pytest.fixture
def client(manager):
    app.dependency_overrides[get_manager] = lambda: manager
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
