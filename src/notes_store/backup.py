"""Database snapshots for the notes store.

Backups are named ``<ISO year>-<ISO week>-<database file name>.gz``, so a
store backed up daily keeps one file per week; a later backup in the same
week replaces the earlier one. Nothing is ever deleted automatically.
"""
import gzip
import logging
import shutil
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Optional, Union

from notes_store.config import config

logger = logging.getLogger(__name__)


def backup_name(db_path: Path, when: Optional[datetime] = None) -> str:
    """File name of the backup of ``db_path`` taken at ``when``."""
    when = when or datetime.now(timezone.utc)
    year, week, _ = when.isocalendar()
    return f"{year}-{week}-{db_path.name}.gz"


class BackupManager:
    """Creates compressed, consistent copies of the notes database.

    Uses SQLite's online backup API, which is safe while other
    connections are writing.
    """

    def __init__(
        self,
        backup_dir: Optional[Union[str, Path]] = None,
        db_path: Optional[Union[str, Path]] = None,
    ):
        """Initialize the backup manager.

        Args:
            backup_dir: Directory for backups. Defaults to config.backup_dir
            db_path: Database to back up. Defaults to the configured database
        """
        self.backup_dir = Path(backup_dir) if backup_dir else config.backup_dir
        self.db_path = Path(db_path) if db_path else None
        self._lock = Lock()

    def _source_path(self) -> Optional[Path]:
        if self.db_path is not None:
            return self.db_path
        if config.is_in_memory():
            return None
        return config.get_absolute_path(config.database_path)

    def backup_database(self, when: Optional[datetime] = None) -> Optional[Path]:
        """Create a gzip-compressed snapshot of the database.

        Args:
            when: Time used to name the backup (default: now)

        Returns:
            Path to the backup file, or None if backup failed.
        """
        with self._lock:
            db_path = self._source_path()
            if db_path is None:
                logger.error("Backup requires a file-backed database")
                return None
            if not db_path.is_file():
                logger.warning(f"Database not found: {db_path}")
                return None

            backup_path = self.backup_dir / backup_name(db_path, when)
            temp_path = backup_path.with_suffix("")
            try:
                self.backup_dir.mkdir(parents=True, exist_ok=True)
                self._sqlite_backup(db_path, temp_path)
                self._gzip_file(temp_path, backup_path)
            except (OSError, sqlite3.Error) as e:
                logger.error(f"Database backup failed: {e}", exc_info=True)
                return None
            finally:
                temp_path.unlink(missing_ok=True)

            size_mb = backup_path.stat().st_size / (1024 * 1024)
            logger.info(f"Database backup created: {backup_path} ({size_mb:.2f} MB)")
            return backup_path

    def _sqlite_backup(self, source: Path, dest: Path) -> None:
        """Perform SQLite online backup."""
        dest.unlink(missing_ok=True)
        source_conn = sqlite3.connect(str(source))
        dest_conn = sqlite3.connect(str(dest))

        try:
            source_conn.backup(dest_conn)
        finally:
            dest_conn.close()
            source_conn.close()

    def _gzip_file(self, source: Path, dest: Path) -> None:
        """Compress a file with gzip."""
        with open(source, "rb") as f_in:
            with gzip.open(dest, "wb", compresslevel=6) as f_out:
                shutil.copyfileobj(f_in, f_out)

    @staticmethod
    def restore_database(backup_path: Union[str, Path], dest: Union[str, Path]) -> Path:
        """Decompress a backup to ``dest``, replacing any existing file.

        The store must not be running against ``dest`` while restoring.
        """
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        with gzip.open(backup_path, "rb") as f_in:
            with open(dest, "wb") as f_out:
                shutil.copyfileobj(f_in, f_out)
        logger.info(f"Database restored from {backup_path} to {dest}")
        return dest
