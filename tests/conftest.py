"""Common test fixtures for refnotes."""

import tempfile
from pathlib import Path

import pytest

from refnotes.config import config
from refnotes.models.db_models import init_db
from refnotes.observability import metrics
from refnotes.services.note_service import NoteService
from refnotes.storage.note_repository import NoteRepository


@pytest.fixture
def temp_dirs():
    """Create temporary directories for the database and logs."""
    with tempfile.TemporaryDirectory() as db_dir:
        with tempfile.TemporaryDirectory() as log_dir:
            yield Path(db_dir), Path(log_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    db_dir, log_dir = temp_dirs
    monkeypatch.setattr(config, "database_path", db_dir / "test_refnotes.db")
    monkeypatch.setattr(config, "in_memory_db", False)
    monkeypatch.setattr(config, "log_dir", log_dir)
    yield config


@pytest.fixture
def db_engine(test_config):
    """File-backed engine with the schema created."""
    engine = init_db(in_memory=False)
    yield engine
    engine.dispose()


@pytest.fixture
def note_repository(db_engine):
    """Create a test note repository."""
    yield NoteRepository(engine=db_engine)


@pytest.fixture
def note_service(note_repository):
    """Create a test NoteService."""
    yield NoteService(repository=note_repository)


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Keep the global metrics collector independent between tests."""
    metrics.reset()
    yield
