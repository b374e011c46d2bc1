"""Tests for the SearchService and snippet highlighting."""

import pytest

from notes_store.exceptions import SearchQueryError
from notes_store.observability import metrics
from notes_store.services.search_service import SearchResult, highlight_snippet
from notes_store.storage.fts_index import SNIPPET_CLOSE, SNIPPET_OPEN

O = SNIPPET_OPEN
C = SNIPPET_CLOSE


class TestHighlightSnippet:
    """Tests for converting raw snippets to safe HTML."""

    def test_plain_text(self):
        assert highlight_snippet("nothing marked") == "nothing marked"

    def test_marks_match(self):
        assert highlight_snippet(f"a {O}b{C} c") == "a <mark>b</mark> c"

    def test_escapes_html(self):
        snippet = f"<script>{O}x{C}</script> & \"q\""
        assert highlight_snippet(snippet) == (
            "&lt;script&gt;<mark>x</mark>&lt;/script&gt; &amp; &quot;q&quot;"
        )

    def test_escapes_inside_mark(self):
        assert highlight_snippet(f"{O}<b>{C}") == "<mark>&lt;b&gt;</mark>"

    def test_stray_close_dropped(self):
        assert highlight_snippet(f"a{C}b") == "ab"

    def test_repeated_open_ignored(self):
        assert highlight_snippet(f"{O}a{O}b{C}") == "<mark>ab</mark>"

    def test_unclosed_mark_closed(self):
        assert highlight_snippet(f"a {O}b") == "a <mark>b</mark>"

    def test_multiple_matches(self):
        assert highlight_snippet(f"{O}a{C} and {O}b{C}") == (
            "<mark>a</mark> and <mark>b</mark>"
        )

    @pytest.mark.parametrize("snippet", ["", None])
    def test_empty(self, snippet):
        assert highlight_snippet(snippet) == ""


class TestSearchService:
    """End-to-end search through the service."""

    def test_results_are_display_ready(self, note_service, search_service):
        note_service.save_text(
            "html", "# Markup\n\n<b>needle</b> & more <!-- Tags: web -->"
        )
        results = search_service.search("needle")

        assert len(results) == 1
        result = results[0]
        assert isinstance(result, SearchResult)
        assert result.path == "html"
        assert result.title == "Markup"
        assert result.tags == ["web"]
        assert "&lt;b&gt;<mark>needle</mark>&lt;/b&gt; &amp; more" in result.snippet_html
        assert "<b>" not in result.snippet_html

    def test_untagged_result_has_empty_tags(self, note_service, search_service):
        note_service.save_text("n", "plain words here")
        assert search_service.search("words")[0].tags == []

    def test_ranked_best_first(self, note_service, search_service):
        note_service.save_text("body", "# Other\n\nmentions quince once in a longer body")
        note_service.save_text("title", "# Quince\n\nshort")
        results = search_service.search("quince")

        assert [r.path for r in results] == ["title", "body"]
        assert results[0].rank <= results[1].rank

    def test_malformed_query(self, search_service):
        with pytest.raises(SearchQueryError):
            search_service.search("broken AND")
        assert metrics.get_metrics()["search"]["error_count"] == 1

    def test_literal_query(self, note_service, search_service):
        note_service.save_text("n", "is this (really) it")
        assert [r.path for r in search_service.search("(really", literal=True)] == ["n"]

    def test_search_records_metrics(self, note_service, search_service):
        note_service.save_text("n", "findable")
        search_service.search("findable")
        assert metrics.get_metrics()["search"]["success_count"] == 1

    def test_marker_characters_in_notes_are_not_highlighted(
        self, note_service, search_service
    ):
        note = note_service.save_text("n", f"alpha {O}<script>x{C} beta")
        assert note.text == "alpha <script>x beta"

        results = search_service.search("beta")
        assert [r.snippet_html for r in results] == [
            "alpha &lt;script&gt;x <mark>beta</mark>"
        ]
