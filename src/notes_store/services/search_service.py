"""Service for full-text search over notes."""

import html
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from notes_store.models.schema import SearchHit
from notes_store.observability import traced
from notes_store.storage.fts_index import SNIPPET_CLOSE, SNIPPET_OPEN
from notes_store.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)

MARK_OPEN = "<mark>"
MARK_CLOSE = "</mark>"


def highlight_snippet(snippet: str) -> str:
    """Convert a raw search snippet into safe HTML.

    Every character is HTML-escaped except the match sentinels, which become
    ``<mark>`` and ``</mark>``. A stray close marker is dropped, a repeated
    open marker is ignored and an unclosed mark is closed at the end, so the
    output is always balanced.
    """
    out = []
    text = []
    marked = False

    def flush() -> None:
        if text:
            out.append(html.escape("".join(text)))
            text.clear()

    for ch in snippet or "":
        if ch == SNIPPET_OPEN:
            if not marked:
                flush()
                out.append(MARK_OPEN)
                marked = True
        elif ch == SNIPPET_CLOSE:
            if marked:
                flush()
                out.append(MARK_CLOSE)
                marked = False
        else:
            text.append(ch)
    flush()
    if marked:
        out.append(MARK_CLOSE)
    return "".join(out)


@dataclass
class SearchResult:
    """A search match ready for display.

    Attributes:
        path: Path of the matching note.
        title: Title of the matching note.
        tags: The note's tags.
        snippet_html: Escaped snippet with matches wrapped in ``<mark>``.
        rank: bm25 rank, lower is better.
    """

    path: str
    title: str
    tags: List[str] = field(default_factory=list)
    snippet_html: str = ""
    rank: float = 0.0

    @classmethod
    def from_hit(cls, hit: SearchHit) -> "SearchResult":
        return cls(
            path=hit.path,
            title=hit.title,
            tags=list(hit.tags or []),
            snippet_html=highlight_snippet(hit.snippet),
            rank=hit.rank,
        )


class SearchService:
    """Service for searching notes."""

    def __init__(self, repository: Optional[NoteRepository] = None):
        self.repository = repository or NoteRepository()

    @traced("search")
    def search(
        self, query: str, limit: Optional[int] = None, literal: bool = False
    ) -> List[SearchResult]:
        """Search notes and return display-ready results, best first.

        Args:
            query: FTS5 match expression, or plain text when ``literal``.
            limit: Maximum number of results.
            literal: Match the whole query as one phrase.

        Raises:
            SearchQueryError: If the match expression is malformed.
        """
        hits = self.repository.search(query, limit=limit, literal=literal)
        return [SearchResult.from_hit(hit) for hit in hits]
