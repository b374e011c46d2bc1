"""Common test fixtures for the notes store."""

import tempfile
from pathlib import Path

import pytest

from notes_store.config import config
from notes_store.models.db_models import init_db
from notes_store.observability import metrics
from notes_store.services.note_service import NoteService
from notes_store.services.search_service import SearchService
from notes_store.storage.attachment_repository import AttachmentRepository
from notes_store.storage.note_repository import NoteRepository


@pytest.fixture
def temp_dirs():
    """Create temporary directories for the database and backups."""
    with tempfile.TemporaryDirectory() as db_dir:
        with tempfile.TemporaryDirectory() as backup_dir:
            yield Path(db_dir), Path(backup_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    db_dir, backup_dir = temp_dirs
    monkeypatch.setattr(config, "database_path", db_dir / "test_notes.sqlite")
    monkeypatch.setattr(config, "backup_dir", backup_dir)
    yield config


@pytest.fixture
def engine(test_config):
    """Engine on a fresh file database with schema and search index."""
    engine = init_db()
    yield engine
    engine.dispose()


@pytest.fixture
def note_repository(engine):
    """Create a test note repository."""
    yield NoteRepository(engine=engine)


@pytest.fixture
def attachment_repository(engine):
    """Create a test attachment repository sharing the note engine."""
    yield AttachmentRepository(engine)


@pytest.fixture
def note_service(note_repository, attachment_repository):
    """Create a test NoteService."""
    yield NoteService(
        repository=note_repository, attachments=attachment_repository
    )


@pytest.fixture
def search_service(note_repository):
    """Create a test SearchService."""
    yield SearchService(repository=note_repository)


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Keep global metrics isolated between tests."""
    metrics.reset()
    yield
    metrics.reset()
