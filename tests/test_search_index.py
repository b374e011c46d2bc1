"""Tests for the FTS5 search index and its consistency with the notes table."""

import pytest
from sqlalchemy import text

from notes_store.exceptions import (
    ErrorCode,
    IndexConsistencyError,
    SearchQueryError,
)
from notes_store.storage.fts_index import SNIPPET_CLOSE, SNIPPET_OPEN, FtsIndex


class TestSearch:
    """Tests for ranked search."""

    def test_matches_title_text_and_tags(self, note_repository):
        note_repository.upsert("a", "Sourdough starter", "Feed daily", ["baking"])
        note_repository.upsert("b", "Tomatoes", "Water the sourdough? no", ["gardening"])

        assert {h.path for h in note_repository.search("sourdough")} == {"a", "b"}
        assert [h.path for h in note_repository.search("gardening")] == ["b"]
        assert [h.path for h in note_repository.search("feed")] == ["a"]

    def test_hit_carries_title_and_tags(self, note_repository):
        note_repository.upsert("a", "Sourdough", "Feed the starter", ["baking", "bread"])
        hit = note_repository.search("starter")[0]
        assert hit.path == "a"
        assert hit.title == "Sourdough"
        assert hit.tags == ["baking", "bread"]

    def test_untagged_hit_has_no_tags(self, note_repository):
        note_repository.upsert("a", "Plain", "nothing special")
        assert note_repository.search("special")[0].tags is None

    def test_snippet_marks_matches(self, note_repository):
        note_repository.upsert("a", "Title", "before needle after")
        snippet = note_repository.search("needle")[0].snippet
        assert f"{SNIPPET_OPEN}needle{SNIPPET_CLOSE}" in snippet

    def test_title_match_ranks_first(self, note_repository):
        note_repository.upsert("body", "Other", "a long note that mentions kumquat once among many words")
        note_repository.upsert("title", "Kumquat", "short")
        assert [h.path for h in note_repository.search("kumquat")] == ["title", "body"]

    def test_limit(self, note_repository):
        for i in range(5):
            note_repository.upsert(f"n{i}", f"Note {i}", "shared token")
        assert len(note_repository.search("shared", limit=3)) == 3

    def test_prefix_query(self, note_repository):
        note_repository.upsert("a", "Title", "photosynthesis")
        assert [h.path for h in note_repository.search("photo*")] == ["a"]

    def test_no_results(self, note_repository):
        note_repository.upsert("a", "Title", "body")
        assert note_repository.search("absent") == []

    def test_every_note_matchable_by_own_token(self, note_repository):
        for i in range(10):
            note_repository.upsert(f"n{i}", f"Title{i}", f"uniqueword{i} body")
        for i in range(10):
            assert f"n{i}" in {h.path for h in note_repository.search(f"uniqueword{i}")}
            assert f"n{i}" in {h.path for h in note_repository.search(f"title{i}")}


class TestMalformedQueries:
    """Malformed match expressions are caller errors with no results."""

    @pytest.mark.parametrize(
        "query",
        ["foo AND", '"unterminated', "nosuchcolumn:foo", "what?", "(open", "AND"],
    )
    def test_malformed_query_rejected(self, note_repository, query):
        note_repository.upsert("a", "Title", "foo what open")
        with pytest.raises(SearchQueryError) as exc_info:
            note_repository.search(query)
        assert exc_info.value.code == ErrorCode.SEARCH_INVALID_QUERY
        assert exc_info.value.query == query

    @pytest.mark.parametrize("query", ["", "   ", None])
    def test_empty_query_rejected(self, note_repository, query):
        with pytest.raises(SearchQueryError):
            note_repository.search(query)

    def test_literal_mode_accepts_any_text(self, note_repository):
        note_repository.upsert("a", "Title", "so what? nothing")
        assert [h.path for h in note_repository.search("what?", literal=True)] == ["a"]

    def test_literal_mode_quotes(self, note_repository):
        note_repository.upsert("a", "Title", 'she said "hello there"')
        hits = note_repository.search('"hello there', literal=True)
        assert [h.path for h in hits] == ["a"]

    def test_escape_query(self):
        assert FtsIndex._escape_query('a "b" c*') == '"a ""b"" c"'


class TestIndexConsistency:
    """The index mirrors note content at every committed point."""

    def test_update_replaces_old_tokens(self, note_repository):
        note_repository.upsert("a", "Title", "original wording")
        note_repository.upsert("a", "Title", "replacement text")

        assert note_repository.search("original") == []
        assert [h.path for h in note_repository.search("replacement")] == ["a"]
        note_repository.verify_search_index()

    def test_update_replaces_tags(self, note_repository):
        note_repository.upsert("a", "Title", "body", ["oldtag"])
        note_repository.upsert("a", "Title", "body", ["newtag"])
        assert note_repository.search("oldtag") == []
        assert [h.path for h in note_repository.search("newtag")] == ["a"]

    def test_single_entry_per_note(self, note_repository):
        for i in range(5):
            note_repository.upsert("a", "Title", f"version {i}")
        with note_repository.session_factory() as session:
            count = session.execute(
                text("SELECT count(*) FROM notes_fts WHERE path = 'a'")
            ).scalar_one()
        assert count == 1

    def test_deleted_note_never_matches(self, note_repository):
        note_repository.upsert("a", "Ephemeral", "vanishing content")
        note_repository.delete("a")

        assert note_repository.search("vanishing") == []
        assert note_repository.search("ephemeral") == []
        note_repository.verify_search_index()

    def test_verify_detects_orphaned_entry(self, note_repository):
        note_repository.upsert("a", "Title", "body")
        with note_repository.session_factory() as session:
            session.execute(
                text(
                    "INSERT INTO notes_fts(path, title, text, tags) "
                    "VALUES ('ghost', 'Ghost', 'boo', '')"
                )
            )
            session.commit()

        with pytest.raises(IndexConsistencyError) as exc_info:
            note_repository.verify_search_index()
        assert exc_info.value.orphaned == ["ghost"]
        assert exc_info.value.code == ErrorCode.INDEX_DIVERGED

    def test_verify_detects_missing_and_stale(self, note_repository):
        note_repository.upsert("a", "Title", "body")
        note_repository.upsert("b", "Title", "body")
        with note_repository.session_factory() as session:
            session.execute(text("DELETE FROM notes_fts WHERE path = 'a'"))
            session.execute(text("UPDATE notes SET text = 'changed' WHERE path = 'b'"))
            session.commit()

        with pytest.raises(IndexConsistencyError) as exc_info:
            note_repository.verify_search_index()
        assert exc_info.value.missing == ["a"]
        assert exc_info.value.stale == ["b"]

    def test_entries_share_note_rowids(self, note_repository):
        for path in ("a", "b", "c"):
            note_repository.upsert(path, "Title", f"body {path}")
        note_repository.upsert("a", "Title", "rewritten")
        note_repository.delete("b")
        note_repository.upsert("d", "Title", "body d")

        with note_repository.session_factory() as session:
            aligned = session.execute(
                text(
                    "SELECT count(*) FROM notes JOIN notes_fts "
                    "ON notes_fts.rowid = notes.rowid AND notes_fts.path = notes.path"
                )
            ).scalar_one()
            entries = session.execute(
                text("SELECT count(*) FROM notes_fts")
            ).scalar_one()
        assert aligned == entries == note_repository.count() == 3

    def test_verify_detects_rowid_mismatch(self, note_repository):
        note_repository.upsert("a", "Title", "body")
        with note_repository.session_factory() as session:
            session.execute(text("DELETE FROM notes_fts WHERE path = 'a'"))
            session.execute(
                text(
                    "INSERT INTO notes_fts(rowid, path, title, text, tags) "
                    "VALUES (999, 'a', 'Title', 'body', '')"
                )
            )
            session.commit()

        with pytest.raises(IndexConsistencyError) as exc_info:
            note_repository.verify_search_index()
        assert exc_info.value.missing == []
        assert exc_info.value.stale == ["a"]

        note_repository.rebuild_search_index()
        note_repository.verify_search_index()

    def test_rebuild_restores_consistency(self, note_repository):
        note_repository.upsert("a", "Title", "alpha", ["t1"])
        note_repository.upsert("b", "Title", "beta")
        with note_repository.session_factory() as session:
            session.execute(text("DELETE FROM notes_fts"))
            session.execute(
                text(
                    "INSERT INTO notes_fts(path, title, text, tags) "
                    "VALUES ('ghost', 'Ghost', 'boo', '')"
                )
            )
            session.commit()

        assert note_repository.rebuild_search_index() == 2
        note_repository.verify_search_index()
        assert [h.path for h in note_repository.search("t1")] == ["a"]
        assert note_repository.search("boo") == []

    def test_integrity_check(self, note_repository):
        note_repository.upsert("a", "Title", "body")
        assert note_repository.fts.integrity_check() is True
