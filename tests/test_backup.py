"""Tests for database backups."""

import gzip
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from notes_store.backup import BackupManager, backup_name
from notes_store.storage.note_repository import NoteRepository


def count_notes(db_path: Path) -> int:
    conn = sqlite3.connect(str(db_path))
    try:
        return conn.execute("SELECT count(*) FROM notes").fetchone()[0]
    finally:
        conn.close()


class TestBackupName:
    """Backups are named by ISO year and week."""

    def test_iso_week(self):
        when = datetime(2024, 3, 14, tzinfo=timezone.utc)
        assert backup_name(Path("/data/notes.sqlite"), when) == "2024-11-notes.sqlite.gz"

    def test_iso_year_differs_from_calendar_year(self):
        when = datetime(2021, 1, 2, tzinfo=timezone.utc)
        assert backup_name(Path("notes.db"), when) == "2020-53-notes.db.gz"


class TestBackupManager:
    """Tests for creating and restoring backups."""

    def test_backup_contains_notes(self, note_repository, test_config):
        for i in range(3):
            note_repository.upsert(f"n{i}", "T", f"body {i}")
        when = datetime(2024, 3, 14, tzinfo=timezone.utc)

        path = BackupManager().backup_database(when=when)

        assert path == test_config.backup_dir / "2024-11-test_notes.sqlite.gz"
        restored = path.with_suffix("")
        with gzip.open(path, "rb") as f_in:
            restored.write_bytes(f_in.read())
        assert count_notes(restored) == 3

    def test_same_week_replaces(self, note_repository, test_config):
        note_repository.upsert("n", "T", "first")
        manager = BackupManager()
        first = manager.backup_database(when=datetime(2024, 3, 11, tzinfo=timezone.utc))
        note_repository.upsert("m", "T", "second")
        second = manager.backup_database(when=datetime(2024, 3, 15, tzinfo=timezone.utc))

        assert first == second
        assert list(test_config.backup_dir.iterdir()) == [second]

    def test_restore(self, note_repository, test_config, tmp_path):
        note_repository.upsert("n", "Title", "restorable words", ["kept"])
        backup = BackupManager().backup_database()

        dest = BackupManager.restore_database(backup, tmp_path / "restored" / "notes.sqlite")
        repo = NoteRepository(db_url=f"sqlite:///{dest}")
        try:
            assert repo.get("n").tags == ["kept"]
            assert [h.path for h in repo.search("restorable")] == ["n"]
            repo.verify_search_index()
        finally:
            repo.engine.dispose()

    def test_explicit_paths(self, tmp_path):
        db = tmp_path / "other.sqlite"
        conn = sqlite3.connect(str(db))
        conn.execute("CREATE TABLE notes (path TEXT)")
        conn.commit()
        conn.close()

        path = BackupManager(backup_dir=tmp_path / "out", db_path=db).backup_database()

        assert path.parent == tmp_path / "out"
        assert path.name.endswith("-other.sqlite.gz")

    def test_missing_database(self, tmp_path):
        manager = BackupManager(backup_dir=tmp_path, db_path=tmp_path / "absent.sqlite")
        assert manager.backup_database() is None

    def test_in_memory_database(self, monkeypatch, tmp_path):
        from notes_store.config import config

        monkeypatch.setattr(config, "database_path", Path(":memory:"))
        assert BackupManager(backup_dir=tmp_path).backup_database() is None
        assert list(tmp_path.iterdir()) == []
