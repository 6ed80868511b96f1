"""
Shared fixtures: a deterministic in-memory embedding client, settings rooted
in a temporary folder and a retry policy that never sleeps.
"""

import hashlib
import os
import re

import numpy as np
import pytest

from docrag.config.settings import IndexConfig, ObservabilityConfig, Settings
from docrag.core.retry import RetryPolicy
from docrag.observability.logging import trace_id_ctx
from docrag.rag.embedder import Embedder

FAKE_MODEL = "fake-embed"
FAKE_DIM = 32


def bow_vector(text: str, dim: int = FAKE_DIM) -> list[float]:
    """Hashed bag-of-words vector; texts sharing words point the same way."""
    vec = [0.0] * dim
    for token in re.findall(r"[a-z0-9]+", text.lower()):
        bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % dim
        vec[bucket] += 1.0
    if not any(vec):
        vec[0] = 1.0
    return vec


class FakeEmbeddingClient:
    """EmbeddingClient double: fixed vectors for known texts, bag-of-words otherwise."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, dim: int = FAKE_DIM):
        self.vectors = vectors or {}
        self.dim = dim
        self.calls: list[list[str]] = []
        self.failures: list[BaseException] = []
        self.closed = False

    async def embed(self, model: str, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.failures:
            raise self.failures.pop(0)
        return [list(self.vectors.get(t) or bow_vector(t, self.dim)) for t in texts]

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep DOCRAG_* variables from the outer shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("DOCRAG_"):
            monkeypatch.delenv(key, raising=False)
    token = trace_id_ctx.set(None)
    yield
    trace_id_ctx.reset(token)


@pytest.fixture
def fast_retry():
    return RetryPolicy(max_attempts=4, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def fake_client():
    return FakeEmbeddingClient()


@pytest.fixture
def embedder(fake_client, fast_retry):
    return Embedder(fake_client, model=FAKE_MODEL, batch_size=64, retry_policy=fast_retry, timeout=5.0)


@pytest.fixture
def docs_dir(tmp_path):
    path = tmp_path / "docs"
    path.mkdir()
    return path


@pytest.fixture
def index_file(tmp_path):
    return tmp_path / "data" / "index.json"


@pytest.fixture
def settings(docs_dir, index_file):
    return Settings(
        index=IndexConfig(docs_dir=docs_dir, index_file=index_file),
        observability=ObservabilityConfig(enable_metrics=False, enable_tracing=False),
    )


def unit(values: list[float]) -> list[float]:
    arr = np.asarray(values, dtype=np.float64)
    return (arr / np.linalg.norm(arr)).tolist()
