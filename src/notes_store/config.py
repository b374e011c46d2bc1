"""Configuration module for the notes store."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from notes_store.exceptions import ConfigurationError

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside backups and logs
_USER_ENV = Path.home() / ".notes-store" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

IN_MEMORY_DATABASE = ":memory:"


class NotesConfig(BaseModel):
    """Configuration for the notes store."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTES_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTES_DATABASE_PATH", "data/notes.sqlite")
        )
    )
    # Seconds a writer waits for the database lock before failing
    busy_timeout: float = Field(
        default_factory=lambda: float(os.getenv("NOTES_BUSY_TIMEOUT", "5.0"))
    )
    # Attachment uploads
    max_upload_bytes: int = Field(
        default_factory=lambda: int(
            os.getenv("NOTES_MAX_UPLOAD_BYTES", str(10 << 20))
        )
    )
    upload_chunk_bytes: int = Field(
        default_factory=lambda: int(os.getenv("NOTES_UPLOAD_CHUNK_BYTES", "65536"))
    )
    attachments_prefix: str = Field(
        default_factory=lambda: os.getenv("NOTES_ATTACHMENTS_PREFIX", ".files")
    )
    # Search
    search_limit: int = Field(
        default_factory=lambda: int(os.getenv("NOTES_SEARCH_LIMIT", "50"))
    )
    # Table of contents thresholds
    toc_min_headings: int = Field(
        default_factory=lambda: int(os.getenv("NOTES_TOC_MIN_HEADINGS", "2"))
    )
    toc_min_words: int = Field(
        default_factory=lambda: int(os.getenv("NOTES_TOC_MIN_WORDS", "300"))
    )
    # Backups
    backup_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv(
                "NOTES_BACKUP_DIR", str(Path.home() / ".notes-store" / "backups")
            )
        )
    )

    @model_validator(mode="after")
    def _validate_limits(self) -> "NotesConfig":
        """Reject limits that would make the store unusable."""
        if self.max_upload_bytes < 1:
            raise ValueError("max_upload_bytes must be >= 1")
        if self.upload_chunk_bytes < 1:
            raise ValueError("upload_chunk_bytes must be >= 1")
        if self.search_limit < 1:
            raise ValueError("search_limit must be >= 1")
        if self.toc_min_headings < 0 or self.toc_min_words < 0:
            raise ValueError("TOC thresholds must be >= 0")
        if self.busy_timeout < 0:
            raise ValueError("busy_timeout must be >= 0")
        prefix = self.attachments_prefix.strip("/")
        if not prefix or "/" in prefix or prefix in (".", ".."):
            raise ValueError(
                "attachments_prefix must be a single non-empty path segment"
            )
        self.attachments_prefix = prefix
        if self.upload_chunk_bytes > self.max_upload_bytes:
            logger.debug(
                "upload_chunk_bytes (%d) exceeds max_upload_bytes (%d); "
                "uploads will be read in a single chunk",
                self.upload_chunk_bytes,
                self.max_upload_bytes,
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def is_in_memory(self) -> bool:
        """Whether the configured database lives only in memory."""
        return str(self.database_path) == IN_MEMORY_DATABASE

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        if self.is_in_memory():
            return "sqlite://"
        db_path = self.get_absolute_path(self.database_path)
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(
                f"Cannot create database directory {db_path.parent}: {e}",
                config_key="database_path",
            ) from e
        return f"sqlite:///{db_path}"


# Create a global config instance
config = NotesConfig()
