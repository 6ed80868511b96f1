"""
Tests for the embedding adapter and its HTTP client.
"""

import asyncio
import json
from unittest.mock import patch

import httpx
import numpy as np
import pytest
from conftest import FAKE_MODEL, FakeEmbeddingClient, bow_vector

from docrag.config.settings import ModelEndpoint
from docrag.core.errors import ConfigurationError, EmbeddingError, IndexIntegrityError
from docrag.core.retry import RetryPolicy
from docrag.rag.embedder import (
    Embedder,
    HttpEmbeddingClient,
    create_embedding_client,
    l2_normalize,
    to_matrix,
)


def embeddings_payload(texts: list[str], reverse: bool = False) -> dict:
    items = [{"index": i, "embedding": bow_vector(t, 8)} for i, t in enumerate(texts)]
    if reverse:
        items.reverse()
    return {"object": "list", "data": items}


def http_embedder(handler, retry: RetryPolicy, batch_size: int = 64) -> tuple[Embedder, ModelEndpoint]:
    endpoint = ModelEndpoint(name="text-embedding-3-small", base_url="https://api.test/v1", api_key="sk-test")
    client = HttpEmbeddingClient(endpoint, transport=httpx.MockTransport(handler))
    return Embedder(client, endpoint.name, batch_size=batch_size, retry_policy=retry, timeout=5.0), endpoint


class TestNormalization:
    """Test vector helpers."""

    def test_rows_become_unit_length(self):
        out = l2_normalize(np.array([[3.0, 4.0], [1.0, 1.0]]))
        assert np.allclose(np.linalg.norm(out, axis=1), 1.0)
        assert np.allclose(out[0], [0.6, 0.8])

    def test_zero_row_left_alone(self):
        out = l2_normalize(np.array([[0.0, 0.0], [0.0, 2.0]]))
        assert np.array_equal(out[0], [0.0, 0.0])
        assert np.allclose(out[1], [0.0, 1.0])

    def test_ragged_rows_rejected(self):
        with pytest.raises(IndexIntegrityError, match="dimension mismatch"):
            to_matrix([[1.0, 2.0], [1.0]])

    def test_empty_vector_rejected(self):
        with pytest.raises(IndexIntegrityError):
            to_matrix([[]])


class TestHttpEmbeddingClient:
    """Test the OpenAI-compatible embeddings client."""

    @pytest.mark.asyncio
    async def test_request_shape_and_order(self, fast_retry):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=embeddings_payload(seen["body"]["input"], reverse=True))

        embedder, _ = http_embedder(handler, fast_retry)
        async with embedder:
            matrix = await embedder.embed_batch(["leave days", "salary date"])

        assert seen["url"] == "https://api.test/v1/embeddings"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"] == {"model": "text-embedding-3-small", "input": ["leave days", "salary date"]}
        expected = l2_normalize(np.array([bow_vector("leave days", 8), bow_vector("salary date", 8)]))
        assert np.allclose(matrix, expected)

    @pytest.mark.asyncio
    async def test_rate_limit_retried(self, fast_retry):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            if len(attempts) < 3:
                return httpx.Response(429, json={"error": "slow down"})
            return httpx.Response(200, json=embeddings_payload(json.loads(request.content)["input"]))

        embedder, _ = http_embedder(handler, fast_retry)
        matrix = await embedder.embed_batch(["a question"])

        assert len(attempts) == 3
        assert matrix.shape == (1, 8)

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_retries(self, fast_retry):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(503)

        embedder, _ = http_embedder(handler, fast_retry)
        with pytest.raises(EmbeddingError) as exc_info:
            await embedder.embed_batch(["text"])

        assert len(attempts) == 4
        assert exc_info.value.transient is True
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, fast_retry):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(400, json={"error": "bad input"})

        embedder, _ = http_embedder(handler, fast_retry)
        with pytest.raises(EmbeddingError) as exc_info:
            await embedder.embed_batch(["text"])

        assert len(attempts) == 1
        assert exc_info.value.transient is False
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_malformed_payload(self, fast_retry):
        embedder, _ = http_embedder(lambda request: httpx.Response(200, json={"nope": []}), fast_retry)
        with pytest.raises(EmbeddingError, match="Malformed"):
            await embedder.embed_batch(["text"])


class TestEmbedder:
    """Test batching, timeouts and result checks."""

    @pytest.mark.asyncio
    async def test_batches_preserve_order(self, fast_retry):
        client = FakeEmbeddingClient()
        embedder = Embedder(client, FAKE_MODEL, batch_size=64, retry_policy=fast_retry)
        texts = [f"document number {i}" for i in range(130)]

        matrix = await embedder.embed_batch(texts)

        assert [len(c) for c in client.calls] == [64, 64, 2]
        assert matrix.shape == (130, client.dim)
        assert np.allclose(np.linalg.norm(matrix, axis=1), 1.0, atol=1e-6)
        assert np.allclose(matrix[100], l2_normalize(np.array([bow_vector(texts[100])]))[0])

    @pytest.mark.asyncio
    async def test_embed_one(self, embedder):
        vector = await embedder.embed_one("how many vacation days")
        assert vector.shape == (32,)
        assert abs(np.linalg.norm(vector) - 1.0) < 1e-6

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_call(self, embedder, fake_client):
        matrix = await embedder.embed_batch([])
        assert matrix.shape == (0, 0)
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_transport_error_retried(self, embedder, fake_client):
        fake_client.failures = [httpx.ConnectError("refused"), httpx.ReadTimeout("slow")]
        matrix = await embedder.embed_batch(["text"])

        assert len(fake_client.calls) == 3
        assert matrix.shape == (1, 32)

    @pytest.mark.asyncio
    async def test_timeout_bounds_each_call(self):
        class SlowClient(FakeEmbeddingClient):
            async def embed(self, model, texts):
                self.calls.append(list(texts))
                await asyncio.sleep(5)
                return []

        client = SlowClient()
        embedder = Embedder(
            client, FAKE_MODEL, retry_policy=RetryPolicy(max_attempts=2, base_delay=0, max_delay=0), timeout=0.05
        )
        with pytest.raises(EmbeddingError) as exc_info:
            await embedder.embed_batch(["text"])

        assert len(client.calls) == 2
        assert exc_info.value.transient is True

    @pytest.mark.asyncio
    async def test_wrong_vector_count(self, fast_retry):
        class ShortClient(FakeEmbeddingClient):
            async def embed(self, model, texts):
                return [bow_vector(texts[0])]

        embedder = Embedder(ShortClient(), FAKE_MODEL, retry_policy=fast_retry)
        with pytest.raises(EmbeddingError, match="2 inputs"):
            await embedder.embed_batch(["one", "two"])

    def test_invalid_batch_size(self, fake_client):
        with pytest.raises(ValueError):
            Embedder(fake_client, FAKE_MODEL, batch_size=0)


class TestClientFactory:
    """Test embedding client selection."""

    def test_http_client_for_remote_endpoint(self):
        client = create_embedding_client(ModelEndpoint(name="text-embedding-3-large"))
        assert isinstance(client, HttpEmbeddingClient)

    def test_local_requires_sentence_transformers(self):
        endpoint = ModelEndpoint(name="all-MiniLM-L6-v2", base_url="local")
        with patch("docrag.rag.embedder.SENTENCE_TRANSFORMERS_AVAILABLE", False):
            with pytest.raises(ConfigurationError, match="sentence-transformers"):
                create_embedding_client(endpoint)
