"""
Tests for FileIndex — SQLite FTS5 catalog with fuzzy and hybrid ranking

These tests validate:
- Scanning skips hidden entries and counts results
- Two-stage fuzzy search (prefix recall, Jaro-Winkler on the basename)
- Hybrid ranking with stored embeddings and the fuzzy fallback
- Substring recall for names FTS cannot tokenize
- Drive bookkeeping, embedding storage and the query cache
"""

import asyncio
import os
from datetime import datetime, timezone

import httpx
import pytest

from little_helper.core.index import (
    FileIndex, FileRecord, SearchFilter, SearchIntent, build_embedding_text, classify_intent,
    cosine_similarity, fts_query, size_category,
)
from little_helper.errors import Timeout, UpstreamFailure
from little_helper.services.embeddings import EmbeddingClient


@pytest.fixture
def index(tmp_path):
    idx = FileIndex(tmp_path / "db" / "file_index.db")
    yield idx
    idx.close()


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "T"
    root.mkdir()
    for name in ("budget_2024.xlsx", "report.pdf", "quarterly_budget.csv"):
        (root / name).write_text(name)
    return root


class StubEmbeddings:
    """Embeds by keyword so tests control cosine similarity."""

    model = "stub-embed"

    def __init__(self, vectors, available=True, failure=None):
        self.vectors = vectors
        self.available = available
        self.failure = failure
        self.calls = 0

    async def is_available(self):
        return self.available

    async def embed_single(self, text):
        self.calls += 1
        if self.failure is not None:
            raise self.failure
        for keyword, vector in self.vectors.items():
            if keyword in text:
                return vector
        return [0.0, 0.0, 1.0]


class TestScan:
    """scan()."""

    def test_scan_counts_files(self, index, tree):
        """Three regular files are all indexed."""
        stats = index.scan(tree, "d1")
        assert stats.to_dict() == {"total_files": 3, "indexed": 3, "errors": 0}
        assert index.file_count() == 3
        assert index.files_for_drive("d1") == 3

    def test_hidden_entries_are_skipped(self, index, tree):
        """Dotfiles and dot-directories below the root are not indexed."""
        (tree / ".secret").write_text("x")
        (tree / ".git").mkdir()
        (tree / ".git" / "config").write_text("x")
        (tree / "sub").mkdir()
        (tree / "sub" / "visible.txt").write_text("x")

        stats = index.scan(tree, "d1")
        assert stats.indexed == 4

    def test_symlinks_are_not_followed(self, index, tree, tmp_path):
        """A symlinked directory is not walked."""
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "far.txt").write_text("x")
        try:
            os.symlink(outside, tree / "link", target_is_directory=True)
        except (OSError, NotImplementedError):
            pytest.skip("symlinks unavailable")

        index.scan(tree, "d1")
        assert index.get_file(tree / "link" / "far.txt") is None

    def test_rescan_updates_metadata(self, index, tree):
        """Re-scanning keeps one row per path and refreshes the size."""
        index.scan(tree, "d1")
        (tree / "report.pdf").write_text("much longer content than before")
        index.scan(tree, "d1")

        assert index.file_count() == 3
        assert index.get_file(tree / "report.pdf").size_bytes == len("much longer content than before")

    def test_small_batches_commit_everything(self, tmp_path, tree):
        """A batch size smaller than the tree still indexes all files."""
        idx = FileIndex(tmp_path / "small.db", batch_size=1)
        try:
            assert idx.scan(tree, "d1").indexed == 3
        finally:
            idx.close()

    def test_scan_async(self, index, tree):
        """scan_async runs the scan off the event loop."""
        stats = asyncio.run(index.scan_async(tree, "d1"))
        assert stats.indexed == 3

    def test_clear_drive(self, index, tree, tmp_path):
        """clear_drive removes only that drive's rows."""
        other = tmp_path / "other"
        other.mkdir()
        (other / "x.txt").write_text("x")
        index.scan(tree, "d1")
        index.scan(other, "d2")

        assert index.clear_drive("d1") == 3
        assert index.file_count() == 1
        index.clear_all()
        assert index.file_count() == 0


class TestFuzzySearch:
    """Two-stage fuzzy ranking."""

    def test_index_and_find(self, index, tree):
        """Only names containing 'budget' match; the shorter prefix match wins."""
        index.scan(tree, "d1")

        results = index.fuzzy_search("budget", 10)

        assert [r.name for r in results] == ["budget_2024.xlsx", "quarterly_budget.csv"]
        assert results[0].score > results[1].score

    def test_every_file_is_its_own_top_hit(self, index, tree):
        """Searching a basename returns that file first."""
        index.scan(tree, "d1")
        for name in ("budget_2024.xlsx", "report.pdf", "quarterly_budget.csv"):
            assert index.fuzzy_search(name, 1)[0].name == name

    def test_tokens_are_anded(self, index, tree):
        """Every token must prefix-match."""
        index.scan(tree, "d1")
        assert [r.name for r in index.fuzzy_search("quart budg", 10)] == ["quarterly_budget.csv"]

    def test_empty_query_returns_nothing(self, index, tree):
        """Blank queries and zero limits short-circuit."""
        index.scan(tree, "d1")
        assert index.fuzzy_search("   ", 10) == []
        assert index.fuzzy_search("budget", 0) == []

    def test_quotes_in_query_are_safe(self, index, tree):
        """FTS syntax characters are quoted, not interpreted."""
        index.scan(tree, "d1")
        assert index.fuzzy_search('bud"get', 10) == []
        assert fts_query('a "b"') == '"a"* """b"""*'

    def test_symbol_only_name_is_found(self, index, tree):
        """A basename with no FTS tokens is still found by its own name."""
        (tree / "___").write_text("x")
        index.scan(tree, "d1")
        assert fts_query("___") == ""
        assert [r.name for r in index.fuzzy_search("___", 1)] == ["___"]

    def test_substring_fills_missing_recall(self, index, tree):
        """A fragment from inside a token is matched as a substring."""
        index.scan(tree, "d1")
        assert [r.name for r in index.fuzzy_search("dget_20", 10)] == ["budget_2024.xlsx"]


class TestHybridSearch:
    """semantic_search with and without embeddings."""

    def test_falls_back_to_fuzzy_without_client(self, index, tree):
        """No client means pure fuzzy ranking."""
        index.scan(tree, "d1")
        results = asyncio.run(index.semantic_search("budget", limit=10))
        assert [r.name for r in results] == ["budget_2024.xlsx", "quarterly_budget.csv"]
        assert all(r.embedding_score is None for r in results)

    def test_unavailable_service_falls_back(self, index, tree):
        """An unreachable embedding service is not an error."""
        index.scan(tree, "d1")
        client = StubEmbeddings({}, available=False)
        results = asyncio.run(index.semantic_search("budget", client=client, limit=10))
        assert len(results) == 2
        assert client.calls == 0

    @pytest.mark.parametrize("failure", [
        UpstreamFailure("embedding error 500: model not loaded", status=500),
        Timeout("embedding request timed out"),
    ])
    def test_failed_query_embedding_falls_back(self, index, tree, failure):
        """A failing embed call ranks by name and caches nothing."""
        index.scan(tree, "d1")
        client = StubEmbeddings({}, failure=failure)

        results = asyncio.run(index.semantic_search("budget", client=client, limit=10))

        assert [r.name for r in results] == ["budget_2024.xlsx", "quarterly_budget.csv"]
        assert all(r.embedding_score is None for r in results)
        assert index.cached_query_embedding("budget") is None

    def test_embedding_service_error_falls_back(self, index, tree):
        """Tags answer but /api/embeddings fails: results still come back."""
        def handler(request):
            if request.url.path == "/api/tags":
                return httpx.Response(200, json={"models": []})
            return httpx.Response(500, text="model not loaded")

        async def go():
            client = EmbeddingClient("http://embed.test", transport=httpx.MockTransport(handler))
            try:
                return await index.semantic_search("budget", client=client, limit=10)
            finally:
                await client.aclose()

        index.scan(tree, "d1")
        results = asyncio.run(go())
        assert [r.name for r in results] == ["budget_2024.xlsx", "quarterly_budget.csv"]

    def test_embeddings_reorder_results(self, index, tree):
        """Cosine similarity can lift a weaker fuzzy match."""
        index.scan(tree, "d1")
        quarterly = index.get_file(tree / "quarterly_budget.csv")
        yearly = index.get_file(tree / "budget_2024.xlsx")
        index.store_embedding(quarterly.id, [1.0, 0.0, 0.0], "stub-embed")
        index.store_embedding(yearly.id, [0.0, 1.0, 0.0], "stub-embed")
        client = StubEmbeddings({"budget": [1.0, 0.0, 0.0]})

        results = asyncio.run(index.semantic_search("budget", client=client, limit=10))

        assert results[0].name == "quarterly_budget.csv"
        assert results[0].embedding_score == pytest.approx(1.0)
        expected = 0.5 * results[0].fuzzy_score + 0.5 * 1.0
        assert results[0].score == pytest.approx(expected)

    def test_query_embedding_is_cached(self, index, tree):
        """The same query is embedded once."""
        index.scan(tree, "d1")
        client = StubEmbeddings({"budget": [1.0, 0.0, 0.0]})
        asyncio.run(index.semantic_search("budget", client=client))
        asyncio.run(index.semantic_search("budget", client=client))
        assert client.calls == 1

    def test_filter_by_extension(self, index, tree):
        """SearchFilter narrows the results."""
        index.scan(tree, "d1")
        results = asyncio.run(index.semantic_search(
            "budget", filter=SearchFilter(extensions={".csv"}), limit=10))
        assert [r.name for r in results] == ["quarterly_budget.csv"]

    def test_embed_pending(self, index, tree):
        """embed_pending stores a vector for each file without one."""
        index.scan(tree, "d1")
        client = StubEmbeddings({})

        stored = asyncio.run(index.embed_pending(client, limit=10))

        assert stored == 3
        assert index.embedding_coverage() == (3, 3)
        assert index.files_without_embeddings(10, "stub-embed") == []
        assert index.get_embedding(index.get_file(tree / "report.pdf").id) == [0.0, 0.0, 1.0]


class TestHelpers:
    """Pure helper functions."""

    def test_cosine_similarity_edge_cases(self):
        """Mismatched, empty and zero vectors score 0."""
        assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
        assert cosine_similarity([1, 0], [1, 0, 0]) == 0.0
        assert cosine_similarity([], []) == 0.0
        assert cosine_similarity([0, 0], [1, 1]) == 0.0

    def test_size_categories(self):
        """tiny < 1 KB <= small < 100 KB <= medium < 10 MB <= large."""
        assert size_category(10) == "tiny"
        assert size_category(2048) == "small"
        assert size_category(200 * 1024) == "medium"
        assert size_category(20 * 1024 * 1024) == "large"

    def test_build_embedding_text(self):
        """Name, extension, last three path parts, size category, month."""
        record = FileRecord(
            id=1, path="/home/u/docs/tax/return.pdf", name="return.pdf", extension="pdf",
            size_bytes=2048, modified_at=datetime(2024, 3, 5, tzinfo=timezone.utc),
            drive_id="d1", indexed_at=datetime(2024, 3, 6, tzinfo=timezone.utc),
        )
        assert build_embedding_text(record) == "return.pdf | pdf | docs/tax/return.pdf | small | March 2024"

    def test_classify_intent(self):
        """Filenames, descriptions and the in-between."""
        assert classify_intent("report.pdf") == SearchIntent.FILENAME
        assert classify_intent("myReport") == SearchIntent.FILENAME
        assert classify_intent("tax_return") == SearchIntent.FILENAME
        assert classify_intent("photos from last summer") == SearchIntent.SEMANTIC
        assert classify_intent("tax return") == SearchIntent.HYBRID
