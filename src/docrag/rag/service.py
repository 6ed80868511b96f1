"""
Query-time seam: index cache + retriever + context assembler (+ generator).
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from ..config.settings import Settings
from ..core.errors import ConfigurationError
from ..observability.logging import get_logger, new_trace_id
from .context import AssembledContext, ContextAssembler
from .embedder import Embedder
from .generator import NO_ANSWER, ChatClient
from .index import IndexCache
from .retriever import Retriever, ScoredChunk, SearchMode

logger = get_logger(__name__)


@dataclass
class QueryResult:
    """Ranked hits and the prompt context built from them."""

    question: str
    context: AssembledContext
    hits: list[ScoredChunk] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "question": self.question,
            "context": self.context.content,
            "truncated": self.context.truncated,
            "hits": [hit.to_hit() for hit in self.hits],
        }


@dataclass
class AnswerResult:
    """Generated answer with the context and hits it was grounded on."""

    question: str
    answer: str
    context: AssembledContext
    hits: list[ScoredChunk] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "question": self.question,
            "answer": self.answer,
            "context": self.context.content,
            "hits": [hit.to_hit() for hit in self.hits],
        }


class RAGService:
    """
    Answers questions against one index file.

    Owns the ``IndexCache`` for that file; call ``index_cache.invalidate()``
    after a rebuild so the next query sees the new index.
    """

    def __init__(
        self,
        settings: Settings,
        embedder: Embedder | None = None,
        index_cache: IndexCache | None = None,
        chat_client: ChatClient | None = None,
    ):
        if index_cache is None:
            if settings.index.index_file is None:
                raise ConfigurationError("No index file configured (set DOCRAG_INDEX__INDEX_FILE)")
            index_cache = IndexCache(settings.index.index_file)

        self.settings = settings
        self.embedder = embedder or Embedder.from_settings(settings)
        self.index_cache = index_cache
        self.retriever = Retriever(self.embedder, settings.retrieval)
        self.assembler = ContextAssembler(settings.context)
        self._chat_client = chat_client

    @property
    def chat_client(self) -> ChatClient:
        if self._chat_client is None:
            self._chat_client = ChatClient(self.settings.models.chat)
        return self._chat_client

    async def __aenter__(self) -> "RAGService":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.embedder.aclose()
        if self._chat_client is not None:
            await self._chat_client.aclose()

    async def query(
        self,
        question: str,
        top_k: int | None = None,
        mode: SearchMode = SearchMode.HYBRID,
    ) -> QueryResult:
        """Retrieve and assemble context for ``question``."""
        new_trace_id()
        # First load and mtime reloads parse JSON; keep that off the event loop
        index = await asyncio.to_thread(self.index_cache.get)
        hits = await self.retriever.retrieve(index, question, top_k=top_k, mode=mode)
        context = self.assembler.assemble(hits)
        logger.info(
            "Query served",
            hits=len(hits),
            included=len(context.included),
            tokens=context.estimated_tokens,
        )
        return QueryResult(question=question, context=context, hits=hits)

    async def answer(
        self,
        question: str,
        top_k: int | None = None,
        mode: SearchMode = SearchMode.HYBRID,
    ) -> AnswerResult:
        """Retrieve, assemble and generate; no hits means a fixed "don't know" answer."""
        result = await self.query(question, top_k=top_k, mode=mode)
        if not result.hits or result.context.is_empty:
            return AnswerResult(
                question=question, answer=NO_ANSWER, context=result.context, hits=result.hits
            )

        answer = await self.chat_client.complete(question, result.context.content)
        return AnswerResult(
            question=question,
            answer=answer or NO_ANSWER,
            context=result.context,
            hits=result.hits,
        )
