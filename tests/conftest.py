"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from fastapi.testclient import TestClient

from fakes import FakeIndex, FakeSource
from mailsync.app import create_app
from mailsync.config import Settings
from mailsync.sync.engine import SyncEngine


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(
        mongodb_uri="mongodb://localhost:27017",
        elasticsearch_url="http://localhost:9200",
        host="127.0.0.1",
        port=8000,
        debug=True,
    )


@pytest.fixture
def source() -> FakeSource:
    """Create an empty in-memory source collection."""
    return FakeSource()


@pytest.fixture
def index() -> FakeIndex:
    """Create an empty in-memory search index."""
    return FakeIndex()


@pytest.fixture
def engine(source: FakeSource, index: FakeIndex) -> SyncEngine:
    """Create a sync engine wired to the in-memory gateways."""
    return SyncEngine(source, index, progress_interval=2)


@pytest.fixture
def client(
    settings: Settings, engine: SyncEngine, index: FakeIndex, source: FakeSource
) -> TestClient:
    """Create test client with configured app."""
    app = create_app(settings, engine=engine, index=index, source=source)
    return TestClient(app)
