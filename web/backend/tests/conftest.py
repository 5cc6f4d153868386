"""Pytest configuration for backend tests.

Every test gets its own hub database through JUKEBOX_HUB_DB.
"""

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Add repository root to path so `web.backend` resolves
repo_root = Path(__file__).parent.parent.parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def hub_db(tmp_path, monkeypatch) -> Path:
    db_path = tmp_path / "hub.db"
    monkeypatch.setenv("JUKEBOX_HUB_DB", str(db_path))
    return db_path


@pytest.fixture
def client():
    from web.backend.main import app

    with TestClient(app) as client:
        yield client
