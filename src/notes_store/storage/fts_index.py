"""FTS5 full-text search index for notes.

The index is a derived shadow of the ``notes`` table. It is never written on
its own: ``replace`` and ``remove`` take the caller's session, so the index
write commits or rolls back together with the primary row.
"""
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import text
from sqlalchemy.exc import OperationalError as SQLAlchemyOperationalError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notes_store.config import config
from notes_store.exceptions import ErrorCode, SearchQueryError, StorageError
from notes_store.models.schema import SNIPPET_CLOSE, SNIPPET_OPEN, SearchHit

logger = logging.getLogger(__name__)

# Snippet markers never leave the store unescaped: see
# services.search_service.highlight_snippet.
SNIPPET_ELLIPSIS = "…"
SNIPPET_TOKENS = 32

# bm25 column weights: path (unindexed), title, text, tags
_BM25_WEIGHTS = "0.0, 10.0, 1.0, 5.0"

# sqlite error fragments caused by the match expression itself
_QUERY_ERROR_PATTERNS = re.compile(
    r"fts5|syntax error|unterminated string|no such column|"
    r"unknown special query|malformed match",
    re.IGNORECASE,
)


def tags_document(tags: Optional[Sequence[str]]) -> str:
    """Flatten a tag list into the text stored in the index's tags column."""
    return " ".join(tags) if tags else ""


class FtsIndex:
    """FTS5 shadow index over notes.

    Args:
        engine: SQLAlchemy engine used for database access.
        session_factory: Callable returning a context-manager session.
    """

    def __init__(
        self,
        engine: Any,
        session_factory: Callable,
    ) -> None:
        self.engine = engine
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Write path (caller owns the transaction)
    # ------------------------------------------------------------------

    def replace(
        self,
        session: Session,
        path: str,
        title: str,
        body: str,
        tags: Optional[Sequence[str]],
    ) -> None:
        """Replace the index entry for ``path`` with the given content.

        Deletes the existing entry, then inserts a fresh one, so ranking and
        snippets never mix old and new tokens. Entries share the rowid of
        their notes row, which must already be written in ``session``.
        """
        self.remove(session, path)
        session.execute(
            text(
                "INSERT INTO notes_fts(rowid, path, title, text, tags) "
                "SELECT rowid, :path, :title, :text, :tags "
                "FROM notes WHERE path = :path"
            ),
            {
                "path": path,
                "title": title,
                "text": body,
                "tags": tags_document(tags),
            },
        )

    def remove(self, session: Session, path: str) -> None:
        """Remove the index entry for ``path`` if present.

        The entry is found by its notes rowid, so this must run before the
        notes row itself is deleted.
        """
        session.execute(
            text(
                "DELETE FROM notes_fts WHERE rowid = "
                "(SELECT rowid FROM notes WHERE path = :path)"
            ),
            {"path": path},
        )

    # ------------------------------------------------------------------
    # Public query API
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        limit: Optional[int] = None,
        literal: bool = False,
    ) -> List[SearchHit]:
        """Ranked full-text search.

        Args:
            query: FTS5 match expression (or plain text when ``literal``).
            limit: Maximum results, defaults to ``config.search_limit``.
            literal: Treat the whole query as one quoted phrase.

        Returns:
            Hits ordered best first. Snippets carry SNIPPET_OPEN/SNIPPET_CLOSE
            around match spans.

        Raises:
            SearchQueryError: If the query is empty or not valid FTS5 syntax.
            StorageError: If the database fails for any other reason.
        """
        if query is None or not query.strip():
            raise SearchQueryError("Search query cannot be empty", query=query)

        match = self._escape_query(query) if literal else query
        limit = limit or config.search_limit

        sql = text(f"""
            SELECT
                notes_fts.path,
                notes_fts.title,
                notes.tags,
                snippet(notes_fts, -1, :open, :close, :ellipsis, :tokens),
                bm25(notes_fts, {_BM25_WEIGHTS}) AS rank
            FROM notes_fts
            JOIN notes ON notes.path = notes_fts.path
            WHERE notes_fts MATCH :query
            ORDER BY rank, notes_fts.path
            LIMIT :limit
        """)
        params = {
            "open": SNIPPET_OPEN,
            "close": SNIPPET_CLOSE,
            "ellipsis": SNIPPET_ELLIPSIS,
            "tokens": SNIPPET_TOKENS,
            "query": match,
            "limit": limit,
        }

        with self._session_factory() as session:
            try:
                rows = session.execute(sql, params).fetchall()
            except SQLAlchemyOperationalError as e:
                if self._is_query_error(e):
                    logger.info(f"Rejected search query {query!r}: {e.orig}")
                    raise SearchQueryError(
                        f"Invalid search query: {e.orig}", query=query
                    ) from e
                logger.error(f"Search failed for {query!r}: {e}")
                raise StorageError(
                    "Search failed",
                    operation="search",
                    code=ErrorCode.SEARCH_FAILED,
                    original_error=e,
                ) from e
            except SQLAlchemyError as e:
                logger.error(f"Search failed for {query!r}: {e}")
                raise StorageError(
                    "Search failed",
                    operation="search",
                    code=ErrorCode.SEARCH_FAILED,
                    original_error=e,
                ) from e

        return [
            SearchHit(
                path=row[0],
                title=row[1],
                tags=json.loads(row[2]) if row[2] else None,
                snippet=row[3] or "",
                rank=row[4],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def rebuild(self) -> int:
        """Rebuild the index from the notes table in one transaction.

        Returns:
            Number of notes indexed.
        """
        with self._session_factory() as session:
            session.execute(text("DELETE FROM notes_fts"))
            rows = session.execute(
                text("SELECT rowid, path, title, text, tags FROM notes")
            ).fetchall()
            for rowid, path, title, body, tags_json in rows:
                tags = json.loads(tags_json) if tags_json else None
                session.execute(
                    text(
                        "INSERT INTO notes_fts(rowid, path, title, text, tags) "
                        "VALUES (:rowid, :path, :title, :text, :tags)"
                    ),
                    {
                        "rowid": rowid,
                        "path": path,
                        "title": title,
                        "text": body,
                        "tags": tags_document(tags),
                    },
                )
            session.commit()
        logger.info(f"Search index rebuilt with {len(rows)} notes")
        return len(rows)

    def integrity_check(self) -> bool:
        """Run the FTS5 integrity-check command."""
        try:
            with self._session_factory() as session:
                session.execute(
                    text("INSERT INTO notes_fts(notes_fts) VALUES('integrity-check')")
                )
            return True
        except SQLAlchemyError as e:
            logger.error(f"FTS5 integrity check failed: {e}")
            return False

    def compare_with_notes(
        self, session: Session
    ) -> Tuple[List[str], List[str], List[str]]:
        """Compare index entries against the notes table.

        Returns:
            ``(missing, orphaned, stale)`` lists of paths: notes without an
            entry, entries without a note, and notes whose entry differs
            from the note in content or rowid (or that have more than one
            entry).
        """
        notes: Dict[str, Tuple[int, str, str, str]] = {}
        for rowid, path, title, body, tags_json in session.execute(
            text("SELECT rowid, path, title, text, tags FROM notes")
        ):
            tags = json.loads(tags_json) if tags_json else None
            notes[path] = (rowid, title, body, tags_document(tags))

        entries: Dict[str, List[Tuple[int, str, str, str]]] = {}
        for rowid, path, title, body, tags in session.execute(
            text("SELECT rowid, path, title, text, tags FROM notes_fts")
        ):
            entries.setdefault(path, []).append((rowid, title, body, tags or ""))

        missing = [p for p in notes if p not in entries]
        orphaned = [p for p in entries if p not in notes]
        stale = [
            p
            for p, found in entries.items()
            if p in notes and (len(found) != 1 or found[0] != notes[p])
        ]
        return missing, orphaned, stale

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _escape_query(query: str) -> str:
        """Escape query for FTS5 literal matching (quoted phrase)."""
        result = query.replace('"', '""')
        result = re.sub(r"[*^]", "", result)
        return f'"{result}"'

    @staticmethod
    def _is_query_error(error: SQLAlchemyOperationalError) -> bool:
        """Whether an operational error was caused by the match expression."""
        return bool(_QUERY_ERROR_PATTERNS.search(str(error.orig)))
