"""Unit tests for chunking, similarity ranking and the incremental index."""

import json
import os
import threading
from unittest.mock import MagicMock

import httpx
import pytest

from repo_context.core.embedding_index import (
    EmbeddingIndexBuilder,
    assemble_context,
    chunk_text,
    cosine_similarity,
    pack_chunks,
    top_k_by_similarity,
)
from repo_context.core.exceptions import LLMTimeoutError, VectorStoreError
from repo_context.core.llm_client import OllamaClient
from repo_context.core.models import Chunk, RetrievedContext
from repo_context.core.vector_store import VectorStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _builder(client, repo, store, paths, **kwargs) -> EmbeddingIndexBuilder:
    defaults = {
        "chunk_size": 50,
        "chunk_overlap": 10,
        "max_chunks": 100,
        "top_k": 3,
        "min_question_length": 5,
    }
    defaults.update(kwargs)
    return EmbeddingIndexBuilder(
        client=client, store=store, repo_root=repo, paths_source=paths, **defaults
    )


@pytest.fixture
def store(sample_repo):
    with VectorStore(sample_repo) as s:
        yield s


# ---------------------------------------------------------------------------
# Tests: pure functions
# ---------------------------------------------------------------------------


class TestChunkText:
    def test_sliding_window_with_overlap(self):
        chunks = chunk_text("abcdefghij", "f.rb", chunk_size=4, overlap=1, max_chunks=10)

        assert [c.text for c in chunks] == ["abcd", "defg", "ghij", "j"]
        assert [c.chunk_index for c in chunks] == [0, 1, 2, 3]
        assert all(c.path == "f.rb" for c in chunks)

    def test_stops_at_max_chunks(self):
        chunks = chunk_text("x" * 100, "f.rb", chunk_size=10, overlap=0, max_chunks=3)
        assert len(chunks) == 3

    def test_empty_text_gives_no_chunks(self):
        assert chunk_text("", "f.rb", chunk_size=10, overlap=2) == []

    @pytest.mark.parametrize("size,overlap", [(10, 10), (10, 12), (0, 0), (10, -1)])
    def test_invalid_window_raises(self, size, overlap):
        with pytest.raises(ValueError):
            chunk_text("text", "f.rb", chunk_size=size, overlap=overlap)


class TestCosineSimilarity:
    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    @pytest.mark.parametrize(
        "a,b",
        [([1.0, 2.0], [1.0]), ([], []), ([0.0, 0.0], [1.0, 1.0])],
        ids=["size-mismatch", "empty", "zero-norm"],
    )
    def test_degenerate_inputs_score_zero(self, a, b):
        assert cosine_similarity(a, b) == 0.0


class TestTopK:
    def _chunks(self):
        return [
            Chunk("a.rb", 0, "a", (1.0, 0.0)),
            Chunk("b.rb", 0, "b", (0.0, 1.0)),
            Chunk("c.rb", 0, "c", (1.0, 1.0)),
            Chunk("d.rb", 0, "d", (1.0, 0.0)),
        ]

    def test_scores_are_non_increasing(self):
        scored = top_k_by_similarity(self._chunks(), [1.0, 0.2], k=4)
        scores = [s.score for s in scored]
        assert scores == sorted(scores, reverse=True)

    def test_ties_keep_index_order(self):
        scored = top_k_by_similarity(self._chunks(), [1.0, 0.0], k=2)
        assert [s.chunk.path for s in scored] == ["a.rb", "d.rb"]

    def test_k_larger_than_index_returns_everything(self):
        assert len(top_k_by_similarity(self._chunks(), [0.0, 1.0], k=10)) == 4

    def test_non_positive_k(self):
        assert top_k_by_similarity(self._chunks(), [1.0, 0.0], k=0) == []


class TestAssembleContext:
    def test_blocks_joined_in_order(self):
        chunks = [Chunk("a.rb", 0, "alpha"), Chunk("b.rb", 0, "beta")]
        assert assemble_context(chunks, 1000) == "--- a.rb ---\nalpha\n\n--- b.rb ---\nbeta"

    def test_overflowing_block_is_dropped_and_stops(self):
        chunks = [
            Chunk("a.rb", 0, "alpha"),
            Chunk("big.rb", 0, "x" * 500),
            Chunk("c.rb", 0, "c"),
        ]
        result = assemble_context(chunks, 60)
        assert result == "--- a.rb ---\nalpha"

    def test_pack_reports_overflow(self):
        chunks = [Chunk("a.rb", 0, "alpha"), Chunk("big.rb", 0, "x" * 500)]

        assert pack_chunks(chunks, 60) == RetrievedContext("--- a.rb ---\nalpha", True)
        assert pack_chunks(chunks, 10_000).overflowed is False
        assert pack_chunks(chunks, 5) == RetrievedContext("", True)

    @pytest.mark.parametrize("budget", [0, 1, 17, 18, 19, 20, 37, 38, 39, 40, 200])
    def test_never_exceeds_budget(self, budget):
        chunks = [Chunk(f"{n}.rb", 0, "text") for n in "abcdef"]
        assert len(assemble_context(chunks, budget)) <= budget


# ---------------------------------------------------------------------------
# Tests: EmbeddingIndexBuilder
# ---------------------------------------------------------------------------


class TestBuildIndex:
    def test_first_build_embeds_and_persists(self, make_llm, sample_repo, store):
        client = make_llm()
        builder = _builder(client, sample_repo, store, ["app/models/invoice.rb"])

        chunks = builder.build_index(["app/models/invoice.rb"])

        assert chunks
        assert len(client.embed_calls) == len(chunks)
        assert store.find_chunks("app/models/invoice.rb") == chunks
        mtime = int(os.stat(sample_repo / "app/models/invoice.rb").st_mtime)
        assert store.stored_mtime("app/models/invoice.rb") == mtime

    def test_unchanged_files_issue_zero_embed_calls(self, make_llm, sample_repo, store):
        """Re-indexing unchanged files reuses the identical stored chunk set."""
        paths = ["app/models/invoice.rb", "app/models/user.rb"]
        first = _builder(make_llm(), sample_repo, store, paths).build_index(paths)

        client = make_llm()
        second = _builder(client, sample_repo, store, paths).build_index(paths)

        assert client.embed_calls == []
        assert second == first

    def test_modified_file_is_reembedded(self, make_llm, sample_repo, store):
        path = sample_repo / "app/models/invoice.rb"
        _builder(make_llm(), sample_repo, store, []).build_index(["app/models/invoice.rb"])

        path.write_text("class Invoice\n  # payment terms\nend\n")
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))

        client = make_llm()
        chunks = _builder(client, sample_repo, store, []).build_index(["app/models/invoice.rb"])

        assert client.embed_calls
        assert "payment terms" in chunks[0].text
        assert store.stored_mtime("app/models/invoice.rb") == int(stat.st_mtime + 10)

    def test_equal_mtime_with_empty_stored_set_is_reembedded(
        self, make_llm, sample_repo, store
    ):
        """A previous failed embed must not leave the file permanently unindexed."""
        rel = "app/models/user.rb"
        _builder(make_llm(), sample_repo, store, []).build_index([rel])
        store.find_chunks = MagicMock(return_value=[])

        client = make_llm()
        chunks = _builder(client, sample_repo, store, []).build_index([rel])

        assert client.embed_calls
        assert chunks

    def test_empty_embeddings_are_dropped(self, make_llm, sample_repo, store):
        client = make_llm(embed_fn=lambda text: [])

        chunks = _builder(client, sample_repo, store, []).build_index(["README.md"])

        assert chunks == []
        assert store.stored_mtime("README.md") is None

    def test_missing_and_directory_paths_are_skipped(self, make_llm, sample_repo, store):
        chunks = _builder(make_llm(), sample_repo, store, []).build_index(
            ["nope.rb", "app", "README.md"]
        )
        assert {c.path for c in chunks} == {"README.md"}

    def test_total_chunk_cap(self, make_llm, sample_repo, store):
        (sample_repo / "big.md").write_text("word " * 200)
        builder = _builder(
            make_llm(), sample_repo, store, [], chunk_size=20, chunk_overlap=0, max_chunks=4
        )

        chunks = builder.build_index(["big.md", "README.md"])

        assert len(chunks) == 4
        assert {c.path for c in chunks} == {"big.md"}

    def test_file_near_cap_embeds_only_remaining_chunks(self, make_llm, sample_repo, store):
        (sample_repo / "big.md").write_text("word " * 200)
        client = make_llm()
        builder = _builder(
            client, sample_repo, store, [], chunk_size=20, chunk_overlap=0, max_chunks=4
        )

        chunks = builder.build_index(["README.md", "big.md"])

        assert len(chunks) == 4
        assert len(client.embed_calls) == 4
        assert len(store.find_chunks("big.md")) == 1


class TestIndexSnapshot:
    def test_snapshot_is_built_once(self, make_llm, sample_repo, store):
        calls = []

        def paths():
            calls.append(1)
            return ["README.md"]

        builder = _builder(make_llm(), sample_repo, store, paths)

        first = builder.index_for()
        second = builder.index_for()

        assert first is second
        assert isinstance(first, tuple)
        assert len(calls) == 1

    def test_invalidate_forces_rebuild(self, make_llm, sample_repo, store):
        builder = _builder(make_llm(), sample_repo, store, ["README.md"])
        first = builder.index_for()

        builder.invalidate()

        assert builder.index_for() is not first

    def test_concurrent_first_callers_build_once(self, make_llm, sample_repo, store):
        client = make_llm()
        builder = _builder(client, sample_repo, store, ["README.md", "Gemfile"])
        results = []

        threads = [
            threading.Thread(target=lambda: results.append(builder.index_for()))
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len({id(r) for r in results}) == 1
        assert len(client.embed_calls) == len(results[0])


class TestContextForQuestion:
    def test_returns_most_similar_chunks(self, make_llm, sample_repo, store):
        paths = ["app/models/invoice.rb", "app/models/user.rb", "config/routes.rb"]
        builder = _builder(make_llm(), sample_repo, store, paths, top_k=1)

        context = builder.context_for_question("Which file defines the user?", 10_000)

        assert context.startswith("--- app/models/user.rb ---\n")

    def test_respects_budget(self, make_llm, sample_repo, store):
        paths = ["app/models/invoice.rb", "app/models/user.rb"]
        builder = _builder(make_llm(), sample_repo, store, paths, top_k=5)

        assert len(builder.context_for_question("invoice user details", 40)) <= 40

    @pytest.mark.parametrize(
        "question,budget,kwargs",
        [
            ("short", 1000, {"min_question_length": 10}),
            ("   padded    ", 1000, {"min_question_length": 10}),
            (None, 1000, {}),
            ("a long enough question", 0, {}),
            ("a long enough question", 1000, {"top_k": 0}),
            ("a long enough question", 1000, {"enabled": False}),
        ],
    )
    def test_short_circuits_without_embedding(
        self, make_llm, sample_repo, store, question, budget, kwargs
    ):
        client = make_llm()
        builder = _builder(client, sample_repo, store, ["README.md"], **kwargs)

        assert builder.context_for_question(question, budget) == ""
        assert client.embed_calls == []

    def test_embed_failure_degrades_to_empty(self, make_llm, sample_repo, store):
        client = make_llm(embed_error=LLMTimeoutError("timed out"))
        builder = _builder(client, sample_repo, store, ["README.md"])

        assert builder.context_for_question("what does billing do?", 1000) == ""

    def test_store_failure_degrades_to_empty(self, make_llm, sample_repo):
        broken = VectorStore(sample_repo)
        broken.stored_mtime = MagicMock(side_effect=VectorStoreError("boom"))
        builder = _builder(make_llm(), sample_repo, broken, ["README.md"])

        assert builder.context_for_question("what does billing do?", 1000) == ""
        broken.close()

    def test_empty_index_gives_empty_context(self, make_llm, sample_repo, store):
        client = make_llm()
        builder = _builder(client, sample_repo, store, [])

        assert builder.context_for_question("what does billing do?", 1000) == ""
        assert client.embed_calls == []

    def test_retrieve_reports_dropped_block(self, make_llm, sample_repo, store):
        paths = ["app/models/invoice.rb", "app/models/user.rb"]
        builder = _builder(make_llm(), sample_repo, store, paths, top_k=2)

        retrieved = builder.retrieve("invoice user details", 40)

        assert retrieved.overflowed is True
        assert retrieved.text == builder.context_for_question("invoice user details", 40)

    def test_non_numeric_query_embedding_degrades_to_empty(self, sample_repo, store):
        question = "what is the invoice total?"

        def handler(request):
            body = json.loads(request.content)
            if body["input"] == question:
                return httpx.Response(200, json={"embeddings": [[0.1, None, 0.3]]})
            return httpx.Response(200, json={"embeddings": [[0.1, 0.2, 0.3]]})

        with OllamaClient(
            base_url="http://ollama.test/", transport=httpx.MockTransport(handler)
        ) as client:
            builder = _builder(client, sample_repo, store, ["app/models/invoice.rb"])

            assert builder.context_for_question(question, 10_000) == ""
            assert builder.index_for()
