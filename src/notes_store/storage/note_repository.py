"""Repository for note storage and retrieval."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, literal_column, select, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DatabaseError as SQLAlchemyDatabaseError
from sqlalchemy.exc import SQLAlchemyError

from notes_store.config import config
from notes_store.exceptions import (
    ErrorCode,
    IndexConsistencyError,
    NoteValidationError,
    StorageError,
)
from notes_store.models.db_models import (
    DBNote,
    get_session_factory,
    init_db,
    to_unix_micros,
)
from notes_store.models.schema import Note, SearchHit, utc_now, validate_note_path
from notes_store.storage.base import Repository
from notes_store.storage.fts_index import FtsIndex

logger = logging.getLogger(__name__)


def tagged_with(tag: str) -> Any:
    """SQL condition matching notes whose JSON tag array contains ``tag``."""
    return text(
        "EXISTS (SELECT 1 FROM json_each(notes.tags) "
        "WHERE json_each.value = :tag)"
    ).bindparams(tag=tag)


class NoteRepository(Repository[Note]):
    """Authoritative store for notes and their search index.

    Every write touches the ``notes`` row and its search index entry in a
    single transaction, and every transaction opens with a write statement so
    the SQLite write lock is taken before anything is read. Index entries
    share the rowid of their notes row.

    Args:
        engine: Existing engine to share (e.g. with AttachmentRepository).
            When omitted a new engine is created from ``db_url`` or config.
        db_url: SQLAlchemy URL used when no engine is given.
    """

    def __init__(
        self, engine: Optional[Engine] = None, db_url: Optional[str] = None
    ) -> None:
        self.engine = engine if engine is not None else init_db(db_url)
        self.session_factory = get_session_factory(self.engine)
        self._fts = FtsIndex(self.engine, self.session_factory)

    @property
    def fts(self) -> FtsIndex:
        """The search index maintained alongside the notes table."""
        return self._fts

    # =========================================================================
    # Validation
    # =========================================================================

    @staticmethod
    def validate_path(path: str) -> str:
        """Validate a note path, raising NoteValidationError when unsafe.

        Paths under the attachments prefix are reserved for attachments.
        """
        try:
            validate_note_path(path)
        except ValueError as e:
            raise NoteValidationError(
                str(e), field="path", value=path, code=ErrorCode.NOTE_PATH_INVALID
            ) from e
        if path.split("/", 1)[0] == config.attachments_prefix:
            raise NoteValidationError(
                f"Note path cannot start with reserved '{config.attachments_prefix}'",
                field="path",
                value=path,
                code=ErrorCode.NOTE_PATH_INVALID,
            )
        return path

    @staticmethod
    def _build_note(
        path: str, title: str, body: str, tags: Optional[Sequence[str]]
    ) -> Note:
        """Validate inputs through the Note model."""
        try:
            return Note(
                path=path,
                title=title,
                text=body,
                tags=list(tags) if tags is not None else None,
            )
        except PydanticValidationError as e:
            error = e.errors()[0]
            field = str(error["loc"][0]) if error.get("loc") else None
            code = (
                ErrorCode.NOTE_PATH_INVALID
                if field == "path"
                else ErrorCode.NOTE_VALIDATION_FAILED
            )
            raise NoteValidationError(
                error["msg"], field=field, value=error.get("input"), code=code
            ) from e

    @staticmethod
    def _db_note_to_model(db_note: DBNote) -> Note:
        """Convert a database row to a Note model."""
        return Note(
            path=db_note.path,
            title=db_note.title,
            text=db_note.text,
            tags=db_note.tags,
            created_at=db_note.ctime,
            updated_at=db_note.mtime,
        )

    # =========================================================================
    # CRUD
    # =========================================================================

    def get(self, path: str) -> Optional[Note]:
        """Get a note by path, or None when it does not exist."""
        self.validate_path(path)
        try:
            with self.session_factory() as session:
                db_note = session.get(DBNote, path)
                return self._db_note_to_model(db_note) if db_note else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to read note {path}: {e}")
            raise StorageError(
                f"Failed to read note {path}",
                operation="get",
                path=path,
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    def list_notes(
        self, limit: Optional[int] = None, offset: int = 0
    ) -> List[Note]:
        """List notes, most recently modified first.

        Args:
            limit: Maximum number of notes to return (None for all).
            offset: Number of notes to skip.
        """
        query = select(DBNote).order_by(DBNote.mtime.desc(), DBNote.path)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return self._fetch(query, "list")

    def list_by_tag(self, tag: str) -> List[Note]:
        """List notes carrying ``tag``, most recently created first."""
        query = (
            select(DBNote)
            .where(tagged_with(tag))
            .order_by(DBNote.ctime.desc(), DBNote.path)
        )
        return self._fetch(query, "list_by_tag")

    def _fetch(self, query: Any, operation: str) -> List[Note]:
        try:
            with self.session_factory() as session:
                rows = session.execute(query).scalars().all()
                return [self._db_note_to_model(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Failed to {operation} notes: {e}")
            raise StorageError(
                "Failed to list notes",
                operation=operation,
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    def count(self) -> int:
        """Count stored notes."""
        with self.session_factory() as session:
            return session.scalar(select(func.count(DBNote.path))) or 0

    def upsert(
        self,
        path: str,
        title: str,
        text: str,
        tags: Optional[Sequence[str]] = None,
    ) -> Note:
        """Create or replace a note and its search index entry atomically.

        A new note gets ``ctime == mtime == now``. An existing note keeps its
        ctime and gets ``mtime = max(now, previous mtime + 1µs)``, so mtime
        strictly increases across saves of the same path.

        Returns:
            The committed note as read back inside the write transaction.

        Raises:
            NoteValidationError: If the path, title, text or tags are invalid.
            StorageError: If the transaction fails; nothing is committed.
        """
        self.validate_path(path)
        note = self._build_note(path, title, text, tags)
        now = to_unix_micros(utc_now())

        stmt = sqlite_insert(DBNote).values(
            path=note.path,
            title=note.title,
            text=note.text,
            ctime=now,
            mtime=now,
            tags=note.tags,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[DBNote.path],
            set_={
                "title": stmt.excluded.title,
                "text": stmt.excluded.text,
                "tags": stmt.excluded.tags,
                "mtime": literal_column("max(excluded.mtime, notes.mtime + 1)"),
            },
        )

        try:
            with self.session_factory() as session:
                session.execute(stmt)
                db_note = session.execute(
                    select(DBNote)
                    .where(DBNote.path == note.path)
                    .execution_options(populate_existing=True)
                ).scalar_one()
                self._fts.replace(
                    session, db_note.path, db_note.title, db_note.text, db_note.tags
                )
                session.commit()
                saved = self._db_note_to_model(db_note)
        except SQLAlchemyError as e:
            logger.error(f"Failed to save note {path}: {e}")
            raise StorageError(
                f"Failed to save note {path}",
                operation="upsert",
                path=path,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

        logger.debug(f"Saved note {path} (mtime={saved.updated_at.isoformat()})")
        return saved

    def delete(self, path: str) -> None:
        """Delete a note, its attachments and its search index entry.

        Deleting a path that does not exist succeeds.
        """
        self.validate_path(path)
        try:
            with self.session_factory() as session:
                # index entry first: it is located through the notes rowid
                self._fts.remove(session, path)
                # files rows go with the note through ON DELETE CASCADE
                result = session.execute(
                    delete(DBNote).where(DBNote.path == path),
                    execution_options={"synchronize_session": False},
                )
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete note {path}: {e}")
            raise StorageError(
                f"Failed to delete note {path}",
                operation="delete",
                path=path,
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            ) from e

        if result.rowcount:
            logger.debug(f"Deleted note {path}")

    # =========================================================================
    # Search
    # =========================================================================

    def search(
        self, query: str, limit: Optional[int] = None, literal: bool = False
    ) -> List[SearchHit]:
        """Ranked full-text search over title, text and tags.

        Raises:
            SearchQueryError: If the match expression is malformed.
        """
        return self._fts.search(query, limit=limit, literal=literal)

    # =========================================================================
    # Health and maintenance
    # =========================================================================

    def check_database_health(self) -> Dict[str, Any]:
        """Check SQLite integrity, FTS5 integrity and index row counts.

        Returns:
            Dict with keys:
                - healthy: bool, no critical issues found
                - sqlite_ok: bool for PRAGMA integrity_check
                - fts_ok: bool for the FTS5 integrity-check command
                - note_count: rows in the notes table
                - index_count: rows in the search index
                - issues: warnings that a rebuild_search_index() would fix
                - critical_issues: problems with the database file itself
        """
        issues = []
        critical_issues = []
        sqlite_ok = False
        note_count = 0
        index_count = 0

        try:
            with self.session_factory() as session:
                result = session.execute(text("PRAGMA integrity_check")).fetchone()
                sqlite_ok = result[0] == "ok"
                if not sqlite_ok:
                    critical_issues.append(
                        f"SQLite integrity check failed: {result[0]}"
                    )
                note_count = session.scalar(select(func.count(DBNote.path)))
                index_count = session.scalar(
                    text("SELECT count(*) FROM notes_fts")
                )
        except SQLAlchemyDatabaseError as e:
            critical_issues.append(f"Database access error: {e}")
            if "malformed" in str(e).lower():
                critical_issues.append("Database file appears to be corrupted")

        fts_ok = self._fts.integrity_check()
        if not fts_ok:
            issues.append("FTS5 integrity check failed")
        if sqlite_ok and note_count != index_count:
            issues.append(
                f"Search index has {index_count} entries for {note_count} notes"
            )

        return {
            "healthy": sqlite_ok and not critical_issues,
            "sqlite_ok": sqlite_ok,
            "fts_ok": fts_ok,
            "note_count": note_count,
            "index_count": index_count,
            "issues": issues,
            "critical_issues": critical_issues,
        }

    def rebuild_search_index(self) -> int:
        """Repopulate the search index from the notes table.

        Returns:
            Number of notes indexed.
        """
        try:
            return self._fts.rebuild()
        except SQLAlchemyError as e:
            logger.error(f"Failed to rebuild search index: {e}")
            raise StorageError(
                "Failed to rebuild search index",
                operation="rebuild_search_index",
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

    def verify_search_index(self) -> None:
        """Check that the search index mirrors every note exactly.

        Raises:
            IndexConsistencyError: If any note is missing from the index,
                any entry has no note, or any entry differs from its note.
        """
        with self.session_factory() as session:
            missing, orphaned, stale = self._fts.compare_with_notes(session)
        if missing or orphaned or stale:
            logger.error(
                f"Search index diverged: {len(missing)} missing, "
                f"{len(orphaned)} orphaned, {len(stale)} stale"
            )
            raise IndexConsistencyError(
                missing=missing, orphaned=orphaned, stale=stale
            )
