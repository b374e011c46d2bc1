"""SQLAlchemy database models for the notes store."""
import datetime
from datetime import timezone
from typing import Optional

from sqlalchemy import (JSON, CheckConstraint, Column, ForeignKey, Index,
                        Integer, LargeBinary, String, Text, create_engine,
                        event, text)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.types import TypeDecorator

from notes_store.config import config

# Create base class for SQLAlchemy models
Base = declarative_base()


class UnixMicroseconds(TypeDecorator):
    """Store datetimes as integer UNIX microseconds, read them back as UTC.

    Integer storage lets the upsert statement compare and bump mtimes in
    SQL without parsing date strings.
    """

    impl = Integer
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, int):
            return value
        return to_unix_micros(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return from_unix_micros(value)


def to_unix_micros(value: datetime.datetime) -> int:
    """Convert a datetime (naive values are UTC) to UNIX microseconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - datetime.datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def from_unix_micros(value: int) -> datetime.datetime:
    """Convert UNIX microseconds to a timezone-aware UTC datetime."""
    return datetime.datetime(1970, 1, 1, tzinfo=timezone.utc) + datetime.timedelta(
        microseconds=value
    )


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    path = Column(String, primary_key=True)
    title = Column(Text, nullable=False)
    text = Column(Text, nullable=False)
    ctime = Column(UnixMicroseconds, nullable=False)
    mtime = Column(UnixMicroseconds, nullable=False)
    # JSON array of tags, SQL NULL when untagged
    tags = Column(JSON(none_as_null=True), nullable=True)

    # Relationships
    files = relationship(
        "DBFile",
        back_populates="note",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(
            "tags IS NULL OR (json_valid(tags) AND json_type(tags) = 'array')",
            name="tags_is_json_array",
        ),
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(path='{self.path}', title='{self.title}')>"


Index("notes_mtime", DBNote.mtime.desc())
Index("notes_ctime", DBNote.ctime.desc())


class DBFile(Base):
    """Database model for an attachment owned by a note."""
    __tablename__ = "files"
    path = Column(String, primary_key=True)
    data = Column("bytes", LargeBinary, nullable=False)
    ctime = Column(UnixMicroseconds, nullable=False)
    note_path = Column(
        String,
        ForeignKey("notes.path", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Relationships
    note = relationship("DBNote", back_populates="files")

    def __repr__(self) -> str:
        """Return string representation of file."""
        return f"<File(path='{self.path}', note='{self.note_path}')>"


def init_db(db_url: Optional[str] = None) -> Engine:
    """Initialize the database with hardened configuration.

    Applies SQLite settings for crash resilience and concurrency:
    - WAL (Write-Ahead Logging) mode so readers never block the writer
    - NORMAL synchronous mode (good balance of safety vs speed)
    - foreign_keys=ON so attachment rows cascade with their note
    - busy timeout so a writer waits for another in-flight write
    - QueuePool for connection reuse with size limits

    Args:
        db_url: SQLAlchemy URL. Defaults to the configured database.

    Returns:
        The configured engine with schema and search index created.
    """
    url = db_url or config.get_db_url()
    connect_args = {"timeout": config.busy_timeout, "check_same_thread": False}

    if url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every checkout sees an empty database
        engine = create_engine(
            url, poolclass=StaticPool, connect_args=connect_args
        )
    else:
        # SQLite is single-writer, so a small pool is ideal
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=5,           # Base pool size (concurrent reads)
            max_overflow=10,       # Allow up to 15 total connections under load
            pool_timeout=30,       # Wait up to 30s for a connection
            pool_pre_ping=True,    # Validate connections before use
            connect_args=connect_args,
        )

    # Apply WAL mode and other PRAGMA settings on every connection
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    init_fts5(engine)
    return engine


def init_fts5(engine: Engine) -> None:
    """Create the FTS5 shadow index for notes.

    The table stores its own copy of the indexed columns so snippets can be
    extracted. Each entry reuses the rowid of its notes row. It has no
    triggers; NoteRepository writes it inside the same transaction as the
    notes table.
    """
    with engine.connect() as conn:
        conn.execute(text("""
            CREATE VIRTUAL TABLE IF NOT EXISTS notes_fts USING fts5(
                path UNINDEXED,
                title,
                text,
                tags,
                tokenize = 'unicode61'
            )
        """))
        conn.commit()


def get_session_factory(engine: Engine):
    """Get a session factory for the database."""
    return sessionmaker(bind=engine, expire_on_commit=False)
