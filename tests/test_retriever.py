"""
Tests for hybrid scoring, MMR diversification and neighbor expansion.
"""

import math

import httpx
import numpy as np
import pytest
from conftest import FAKE_MODEL, FakeEmbeddingClient, unit

from docrag.config.settings import RetrievalConfig
from docrag.core.errors import ErrorKind, RetrievalError
from docrag.core.retry import RetryPolicy
from docrag.rag.chunking import Chunk
from docrag.rag.embedder import Embedder
from docrag.rag.index import VectorIndex
from docrag.rag.retriever import (
    Retriever,
    SearchMode,
    compute_idf,
    keyword_scores,
    mmr_select,
    tokenize,
)

DIM = 8
QUESTION = "zzqx"


def basis(i: int, dim: int = DIM) -> list[float]:
    vec = [0.0] * dim
    vec[i] = 1.0
    return vec


def chunk(path: str, order: int, text: str | None = None) -> Chunk:
    return Chunk(
        id=f"{path}#{order}",
        source_path=path,
        source_name=path.rsplit("/", 1)[-1],
        text=text or f"Passage {order} of {path}",
        order=order,
    )


def build_index(chunks: list[Chunk], vectors: list[list[float]], model: str = FAKE_MODEL) -> VectorIndex:
    return VectorIndex(
        model=model,
        dim=len(vectors[0]) if vectors else DIM,
        chunks=tuple(chunks),
        vectors=np.asarray(vectors, dtype=np.float64).reshape(len(chunks), -1 if vectors else DIM),
        created_at="2026-01-01T00:00:00+00:00",
        docs_dir="/docs",
    )


def retriever_for(query_vector: list[float], question: str = QUESTION, **config) -> tuple[Retriever, FakeEmbeddingClient]:
    client = FakeEmbeddingClient({question: query_vector}, dim=len(query_vector))
    embedder = Embedder(client, FAKE_MODEL, retry_policy=RetryPolicy(max_attempts=2, base_delay=0, max_delay=0))
    return Retriever(embedder, RetrievalConfig(**config)), client


def one_document(count: int, path: str = "/docs/manual.md") -> VectorIndex:
    return build_index([chunk(path, i) for i in range(count)], [basis(i) for i in range(count)])


class TestKeywordScoring:
    """Test tokenization, IDF and keyword scores."""

    def test_tokenize_keeps_accents_and_duplicates(self):
        assert tokenize("Café au lait, café!") == ["café", "au", "lait", "café"]

    def test_idf_formula(self):
        idf = compute_idf(["intern leave", "salary leave", "parking"])
        assert idf["intern"] == pytest.approx(math.log(4 / 2) + 1)
        assert idf["leave"] == pytest.approx(math.log(4 / 3) + 1)

    def test_substring_match_and_unknown_token_weight(self):
        texts = ["Internship rules", "Salary rules"]
        idf = compute_idf(texts)
        scores = keyword_scores(["intern"], texts, idf)

        assert scores[0] == pytest.approx(math.tanh(0.5 * 0.5))
        assert scores[1] == 0.0

    def test_duplicate_query_tokens_count_twice(self):
        texts = ["salary rules", "other"]
        idf = compute_idf(texts)
        once = keyword_scores(["salary"], texts, idf)[0]
        twice = keyword_scores(["salary", "salary"], texts, idf)[0]

        assert twice == pytest.approx(math.tanh(0.5 * 2 * idf["salary"]))
        assert twice > once

    def test_no_query_tokens(self):
        assert keyword_scores([], ["anything"], {}).tolist() == [0.0]


class TestMMR:
    """Test Maximal Marginal Relevance selection."""

    def test_first_candidate_wins_ties(self):
        vectors = np.array([basis(0), basis(1)])
        fused = np.array([0.5, 0.5])
        assert mmr_select([0, 1], fused, vectors, 1, 0.6) == [0]

    def test_stops_when_candidates_run_out(self):
        vectors = np.array([basis(0), basis(1)])
        assert mmr_select([1, 0], np.array([0.2, 0.9]), vectors, 5, 0.6) == [1, 0]


class TestRetriever:
    """Test Retriever.retrieve end to end against in-memory indexes."""

    @pytest.mark.asyncio
    async def test_neighbor_expansion(self):
        retriever, _ = retriever_for(basis(2))
        results = await retriever.retrieve(one_document(5), QUESTION, top_k=1, neighbor_window=1)

        assert [r.chunk.order for r in results] == [2, 1, 3]
        assert [r.rank for r in results] == [1, 2, 3]
        assert results[0].score == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_neighbors_stay_in_range(self):
        retriever, _ = retriever_for(basis(0))
        results = await retriever.retrieve(one_document(5), QUESTION, top_k=1, neighbor_window=1)

        assert [r.chunk.order for r in results] == [0, 1]

    @pytest.mark.asyncio
    async def test_neighbors_never_cross_documents(self):
        chunks = [chunk("/docs/a.md", i) for i in range(3)] + [chunk("/docs/b.md", i) for i in range(3)]
        index = build_index(chunks, [basis(i) for i in range(6)])
        retriever, _ = retriever_for(basis(2))

        results = await retriever.retrieve(index, QUESTION, top_k=1, neighbor_window=2)

        assert {r.chunk.source_path for r in results} == {"/docs/a.md"}
        assert sorted(r.chunk.order for r in results) == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_mmr_skips_duplicate(self):
        chunks = [chunk("/docs/a.md", 0), chunk("/docs/copy.md", 0), chunk("/docs/b.md", 0)]
        vectors = [basis(0), basis(0), basis(1)]
        index = build_index(chunks, vectors)
        retriever, _ = retriever_for(unit([1.0, 0.9, 0, 0, 0, 0, 0, 0]))

        results = await retriever.retrieve(index, QUESTION, top_k=2, neighbor_window=0)

        assert [r.chunk.source_path for r in results] == ["/docs/a.md", "/docs/b.md"]
        assert results[0].score > results[1].score

    @pytest.mark.asyncio
    async def test_keyword_only_mode(self):
        chunks = [
            chunk("/docs/a.md", 0, "Holiday calendar for the office"),
            chunk("/docs/b.md", 0, "Interns receive ten vacation days"),
        ]
        index = build_index(chunks, [basis(0), basis(1)])
        question = "vacation days"
        retriever, _ = retriever_for(basis(0), question=question)

        hybrid = await retriever.retrieve(index, question, top_k=1, neighbor_window=0)
        keyword = await retriever.retrieve(index, question, top_k=1, neighbor_window=0, mode=SearchMode.KEYWORD_ONLY)
        vector = await retriever.retrieve(index, question, top_k=1, neighbor_window=0, mode=SearchMode.VECTOR_ONLY)

        assert keyword[0].chunk.source_name == "b.md"
        assert vector[0].chunk.source_name == "a.md"
        assert vector[0].score == pytest.approx(1.0)
        assert hybrid[0].chunk.source_name == "a.md"

    @pytest.mark.asyncio
    async def test_results_trimmed_to_top_k_plus_slack(self):
        index = build_index(
            [chunk("/docs/long.md", i) for i in range(12)],
            [unit([1.0, 0.1 * i, 0, 0, 0, 0, 0, 0]) for i in range(12)],
        )
        retriever, _ = retriever_for(basis(0))

        results = await retriever.retrieve(index, QUESTION, top_k=3, neighbor_window=2)

        assert len(results) == 5
        assert [r.rank for r in results] == [1, 2, 3, 4, 5]
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_deterministic(self):
        index = build_index(
            [chunk("/docs/a.md", i) for i in range(6)],
            [unit([1.0, 0.2 * i, 0.1, 0, 0, 0, 0, 0]) for i in range(6)],
        )
        retriever, _ = retriever_for(unit([1.0, 0.5, 0, 0, 0, 0, 0, 0]))

        first = await retriever.retrieve(index, QUESTION, top_k=3)
        second = await retriever.retrieve(index, QUESTION, top_k=3)

        assert [(r.chunk.id, r.score) for r in first] == [(r.chunk.id, r.score) for r in second]

    @pytest.mark.asyncio
    async def test_empty_index_and_zero_top_k(self):
        retriever, client = retriever_for(basis(0))
        empty = VectorIndex(FAKE_MODEL, DIM, (), np.zeros((0, DIM)), "", "")

        assert await retriever.retrieve(empty, QUESTION) == []
        assert await retriever.retrieve(one_document(3), QUESTION, top_k=0) == []
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_blank_question(self):
        retriever, _ = retriever_for(basis(0))
        with pytest.raises(RetrievalError) as exc_info:
            await retriever.retrieve(one_document(3), "   ")
        assert exc_info.value.kind == ErrorKind.INVALID_QUERY

    @pytest.mark.asyncio
    async def test_model_mismatch(self):
        retriever, client = retriever_for(basis(0))
        index = build_index([chunk("/docs/a.md", 0)], [basis(0)], model="other-model")

        with pytest.raises(RetrievalError) as exc_info:
            await retriever.retrieve(index, QUESTION)
        assert exc_info.value.kind == ErrorKind.MODEL_MISMATCH
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_dimension_mismatch(self):
        retriever, _ = retriever_for([1.0, 0.0, 0.0])
        with pytest.raises(RetrievalError) as exc_info:
            await retriever.retrieve(one_document(3), QUESTION)
        assert exc_info.value.kind == ErrorKind.MODEL_MISMATCH

    @pytest.mark.asyncio
    async def test_embedding_failure(self):
        retriever, client = retriever_for(basis(0))
        client.failures = [httpx.ConnectError("down"), httpx.ConnectError("still down")]

        with pytest.raises(RetrievalError) as exc_info:
            await retriever.retrieve(one_document(3), QUESTION)
        assert exc_info.value.kind == ErrorKind.EMBEDDING
        assert exc_info.value.to_dict()["kind"] == "embedding"

    @pytest.mark.asyncio
    async def test_invalid_alpha(self):
        retriever, _ = retriever_for(basis(0))
        with pytest.raises(RetrievalError):
            await retriever.retrieve(one_document(3), QUESTION, alpha=1.5)

    @pytest.mark.asyncio
    async def test_hit_rendering(self):
        long_text = "word " * 100
        index = build_index([chunk("/docs/a.md", 0, long_text)], [basis(0)])
        retriever, _ = retriever_for(basis(0))

        hit = (await retriever.retrieve(index, QUESTION, top_k=1))[0].to_hit()

        assert set(hit) == {"rank", "score", "id", "source_name", "source_path", "section", "order", "preview"}
        assert hit["rank"] == 1
        assert hit["section"] is None
        assert hit["preview"].endswith("...")
        assert len(hit["preview"]) <= 243
