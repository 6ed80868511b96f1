"""
Embedding adapter: batching, retries, timeouts and L2 normalization around an
external embedding model.

Improvements over calling the model directly:
- Fixed-size batches bound request size; output order matches input order
- Rate limits and server errors retried through the shared RetryPolicy
- Every vector is unit length, so similarity at query time is a dot product
"""

import asyncio
from collections.abc import Sequence
from typing import Any, Protocol

import httpx
import numpy as np

try:
    from sentence_transformers import SentenceTransformer

    SENTENCE_TRANSFORMERS_AVAILABLE = True
except ImportError:
    SENTENCE_TRANSFORMERS_AVAILABLE = False

from ..config.settings import ModelEndpoint, Settings
from ..core.errors import ConfigurationError, EmbeddingError, IndexIntegrityError
from ..core.retry import RetryPolicy, is_transient_error
from ..observability.logging import get_logger
from ..observability.probe import probe

logger = get_logger(__name__)

NORM_EPSILON = 1e-12


class EmbeddingClient(Protocol):
    """External embedding service: one vector per input text, same order."""

    async def embed(self, model: str, texts: list[str]) -> list[list[float]]: ...

    async def aclose(self) -> None: ...


class HttpEmbeddingClient:
    """Client for an OpenAI-compatible ``POST /embeddings`` endpoint."""

    def __init__(self, endpoint: ModelEndpoint, transport: httpx.AsyncBaseTransport | None = None):
        headers = {"Authorization": f"Bearer {endpoint.api_key}"} if endpoint.api_key else None
        self._client = httpx.AsyncClient(
            base_url=endpoint.base_url,
            timeout=endpoint.timeout,
            headers=headers,
            transport=transport,
        )

    async def embed(self, model: str, texts: list[str]) -> list[list[float]]:
        resp = await self._client.post("/embeddings", json={"model": model, "input": texts})
        resp.raise_for_status()
        try:
            items = resp.json()["data"]
            items = sorted(items, key=lambda it: it.get("index", 0))
            return [list(it["embedding"]) for it in items]
        except (KeyError, TypeError, ValueError) as e:
            raise EmbeddingError(f"Malformed embedding response: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()


class LocalEmbeddingClient:
    """In-process sentence-transformers model, selected with ``base_url = "local"``."""

    def __init__(self, model_name: str):
        if not SENTENCE_TRANSFORMERS_AVAILABLE:
            raise ConfigurationError(
                "Local embeddings need sentence-transformers: pip install 'docrag[local]'"
            )
        self.model_name = model_name
        self._model = SentenceTransformer(model_name)
        logger.info("Loaded local embedding model", model=model_name)

    async def embed(self, model: str, texts: list[str]) -> list[list[float]]:
        if model != self.model_name:
            raise EmbeddingError(f"Local client serves '{self.model_name}', not '{model}'")
        vectors = await asyncio.to_thread(self._model.encode, texts)
        return np.asarray(vectors, dtype=np.float64).tolist()

    async def aclose(self) -> None:
        return None


def create_embedding_client(endpoint: ModelEndpoint) -> EmbeddingClient:
    """Pick the client matching the endpoint configuration."""
    if endpoint.is_local:
        return LocalEmbeddingClient(endpoint.name)
    return HttpEmbeddingClient(endpoint)


def l2_normalize(matrix: np.ndarray) -> np.ndarray:
    """Scale each row to unit length; near-zero rows are left unscaled."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms < NORM_EPSILON] = 1.0
    return matrix / norms


def to_matrix(rows: Sequence[Sequence[float]]) -> np.ndarray:
    """Stack vectors into a 2-D float64 array, rejecting ragged dimensions."""
    if not rows:
        return np.zeros((0, 0), dtype=np.float64)
    dim = len(rows[0])
    if dim == 0:
        raise IndexIntegrityError("Embedding service returned an empty vector")
    for i, row in enumerate(rows):
        if len(row) != dim:
            raise IndexIntegrityError(
                f"Embedding dimension mismatch: vector {i} has {len(row)} values, expected {dim}"
            )
    return np.asarray(rows, dtype=np.float64)


class Embedder:
    """
    Batching, retrying, normalizing front for an ``EmbeddingClient``.

    Batches are sent sequentially; a failed batch aborts the whole call, so
    callers never see a partial result.
    """

    def __init__(
        self,
        client: EmbeddingClient,
        model: str,
        batch_size: int = 64,
        retry_policy: RetryPolicy | None = None,
        timeout: float = 60.0,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.client = client
        self.model = model
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, client: EmbeddingClient | None = None) -> "Embedder":
        endpoint = settings.models.embeddings
        return cls(
            client=client or create_embedding_client(endpoint),
            model=endpoint.name,
            batch_size=settings.index.embed_batch_size,
            retry_policy=RetryPolicy.from_endpoint(endpoint),
            timeout=endpoint.timeout,
        )

    async def __aenter__(self) -> "Embedder":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        """Embed texts in order; returns an ``(len(texts), dim)`` array of unit rows."""
        if not texts:
            return np.zeros((0, 0), dtype=np.float64)

        rows: list[list[float]] = []
        total_batches = (len(texts) + self.batch_size - 1) // self.batch_size
        for batch_no, start in enumerate(range(0, len(texts), self.batch_size), start=1):
            batch = list(texts[start : start + self.batch_size])
            with probe("embedder.batch", batch=f"{batch_no}/{total_batches}", size=len(batch)):
                rows.extend(await self._embed_with_retry(batch))

        return l2_normalize(to_matrix(rows))

    async def embed_one(self, text: str) -> np.ndarray:
        """Embed a single text (e.g. a question) into a unit vector."""
        return (await self.embed_batch([text]))[0]

    async def _embed_with_retry(self, batch: list[str]) -> list[list[float]]:
        try:
            vectors = await self.retry_policy.call(self._call_once, batch, op_name="embedding")
        except EmbeddingError:
            raise
        except Exception as e:
            transient = is_transient_error(e)
            status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            reason = (
                f"giving up after {self.retry_policy.max_attempts} attempts"
                if transient
                else "non-retryable error"
            )
            logger.error("Embedding request failed", reason=reason, error=type(e).__name__)
            raise EmbeddingError(
                f"Embedding request failed ({reason}): {str(e) or type(e).__name__}",
                transient=transient,
                status_code=status,
            ) from e

        if len(vectors) != len(batch):
            raise EmbeddingError(
                f"Embedding service returned {len(vectors)} vectors for {len(batch)} inputs"
            )
        return vectors

    async def _call_once(self, batch: list[str]) -> list[list[float]]:
        return await asyncio.wait_for(self.client.embed(self.model, batch), timeout=self.timeout)
