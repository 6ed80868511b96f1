"""
Hybrid retriever over a loaded ``VectorIndex``.

Scoring fuses cosine similarity with an IDF-weighted keyword match,
diversifies the top candidates with Maximal Marginal Relevance, and pulls in
neighboring chunks of the same document so a passage is not read without
its surroundings.
"""

import math
import re
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np

from ..config.settings import RetrievalConfig
from ..core.errors import DocRAGError, ErrorKind, RetrievalError
from ..observability.logging import get_logger
from ..observability.probe import probe
from .chunking import Chunk
from .embedder import Embedder
from .index import VectorIndex

logger = get_logger(__name__)

TOKEN_RX = re.compile(r"[a-z0-9\u00C0-\u024F]+")

# Weight of a query token that appears in no chunk
UNKNOWN_TOKEN_IDF = 0.5
KEYWORD_SQUASH = 0.5
PREVIEW_CHARS = 240


class SearchMode(Enum):
    """Search modes for retrieval."""

    VECTOR_ONLY = "vector_only"
    KEYWORD_ONLY = "keyword_only"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class ScoredChunk:
    """A retrieved chunk with its fused score and 1-based rank."""

    chunk: Chunk
    score: float
    rank: int

    def to_hit(self) -> dict[str, Any]:
        text = self.chunk.text
        preview = text if len(text) <= PREVIEW_CHARS else text[:PREVIEW_CHARS].rstrip() + "..."
        return {
            "rank": self.rank,
            "score": round(self.score, 6),
            "id": self.chunk.id,
            "source_name": self.chunk.source_name,
            "source_path": self.chunk.source_path,
            "section": self.chunk.section,
            "order": self.chunk.order,
            "preview": preview,
        }


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens; duplicates kept."""
    return TOKEN_RX.findall(text.lower())


def compute_idf(texts: list[str]) -> dict[str, float]:
    """Smoothed inverse document frequency, ``ln((N + 1) / (df + 1)) + 1``."""
    df: Counter[str] = Counter()
    for text in texts:
        df.update(set(tokenize(text)))
    n = len(texts)
    return {tok: math.log((n + 1) / (count + 1)) + 1.0 for tok, count in df.items()}


def keyword_scores(query_tokens: list[str], texts: list[str], idf: dict[str, float]) -> np.ndarray:
    """
    IDF mass of query tokens found in each text, squashed into [0, 1).

    A token counts when it occurs anywhere in the lower-cased text, so
    "intern" matches "internship".
    """
    scores = np.zeros(len(texts), dtype=np.float64)
    if not query_tokens:
        return scores
    for i, text in enumerate(texts):
        haystack = text.lower()
        scores[i] = sum(idf.get(tok, UNKNOWN_TOKEN_IDF) for tok in query_tokens if tok in haystack)
    return np.tanh(KEYWORD_SQUASH * scores)


def mmr_select(
    candidates: list[int], fused: np.ndarray, vectors: np.ndarray, k: int, lam: float
) -> list[int]:
    """
    Maximal Marginal Relevance over ``candidates`` (index positions).

    Each step picks ``argmax(lam * fused - (1 - lam) * max_sim_to_selected)``;
    the earliest candidate wins ties.
    """
    remaining = list(candidates)
    selected: list[int] = []
    while remaining and len(selected) < k:
        if selected:
            sims = vectors[remaining] @ vectors[selected].T
            redundancy = sims.max(axis=1)
        else:
            redundancy = np.zeros(len(remaining))
        mmr = lam * fused[remaining] - (1.0 - lam) * redundancy
        best = int(np.argmax(mmr))
        selected.append(remaining.pop(best))
    return selected


class Retriever:
    """
    Hybrid semantic/keyword retriever with MMR diversification.

    Stateless apart from its embedder and configuration; one instance can
    serve concurrent queries against the same shared index.
    """

    def __init__(self, embedder: Embedder, config: RetrievalConfig | None = None):
        self.embedder = embedder
        self.config = config or RetrievalConfig()

    async def retrieve(
        self,
        index: VectorIndex,
        question: str,
        top_k: int | None = None,
        neighbor_window: int | None = None,
        alpha: float | None = None,
        mode: SearchMode = SearchMode.HYBRID,
    ) -> list[ScoredChunk]:
        """Rank, diversify and expand chunks of ``index`` for ``question``."""
        top_k = self.config.top_k if top_k is None else top_k
        window = self.config.neighbor_window if neighbor_window is None else neighbor_window
        alpha = self._alpha_for(mode, alpha)

        if index.is_empty or top_k <= 0:
            return []
        if not question or not question.strip():
            raise RetrievalError(ErrorKind.INVALID_QUERY, "Question must not be empty")
        if self.embedder.model != index.model:
            raise RetrievalError(
                ErrorKind.MODEL_MISMATCH,
                f"Index was built with '{index.model}' but the embedder uses "
                f"'{self.embedder.model}'; rebuild the index or change the model",
            )

        with probe("retriever.retrieve", top_k=top_k, mode=mode.value):
            query_vec = await self._embed_question(question, index.dim)

            texts = [c.text for c in index.chunks]
            semantic = index.vectors @ query_vec
            keyword = keyword_scores(tokenize(question), texts, compute_idf(texts))
            fused = alpha * semantic + (1.0 - alpha) * keyword

            ordered = np.argsort(-fused, kind="stable")
            candidates = [int(i) for i in ordered[: self.config.mmr_candidates]]
            picked = mmr_select(candidates, fused, index.vectors, top_k, self.config.mmr_lambda)

            pool = self._expand_neighbors(index, picked, window)
            ranked = sorted(pool, key=lambda i: (-fused[i], i))[: top_k + self.config.result_slack]

        results = [
            ScoredChunk(chunk=index.chunks[i], score=float(fused[i]), rank=rank)
            for rank, i in enumerate(ranked, start=1)
        ]
        logger.info(
            "Retrieved chunks",
            hits=len(results),
            picked=len(picked),
            candidates=len(candidates),
            mode=mode.value,
        )
        return results

    def _alpha_for(self, mode: SearchMode, alpha: float | None) -> float:
        if mode == SearchMode.VECTOR_ONLY:
            return 1.0
        if mode == SearchMode.KEYWORD_ONLY:
            return 0.0
        alpha = self.config.alpha if alpha is None else alpha
        if not 0.0 <= alpha <= 1.0:
            raise RetrievalError(ErrorKind.INVALID_QUERY, f"alpha must be in [0, 1], got {alpha}")
        return alpha

    async def _embed_question(self, question: str, dim: int) -> np.ndarray:
        try:
            query_vec = await self.embedder.embed_one(question)
        except DocRAGError as e:
            raise RetrievalError(ErrorKind.EMBEDDING, f"Could not embed question: {e.message}") from e

        if query_vec.shape != (dim,):
            raise RetrievalError(
                ErrorKind.MODEL_MISMATCH,
                f"Question embedding has {query_vec.shape[-1]} dimensions, index has {dim}",
            )
        return query_vec

    @staticmethod
    def _expand_neighbors(index: VectorIndex, picked: list[int], window: int) -> list[int]:
        """Add chunks within ``window`` positions of each pick in the same document."""
        if window <= 0:
            return list(picked)

        position = {(c.source_path, c.order): i for i, c in enumerate(index.chunks)}
        pool = list(picked)
        seen = set(picked)
        for i in picked:
            chunk = index.chunks[i]
            for offset in range(1, window + 1):
                for order in (chunk.order - offset, chunk.order + offset):
                    j = position.get((chunk.source_path, order))
                    if j is not None and j not in seen:
                        seen.add(j)
                        pool.append(j)
        return pool
