"""
Retrieval core: section-aware chunking, embedding, a persisted vector index,
hybrid retrieval with MMR, and budgeted context assembly.

Build side:  documents -> extraction -> SectionChunker -> Embedder -> index file
Query side:  IndexCache -> Retriever -> ContextAssembler -> ChatClient
"""

from .chunking import Chunk, ChunkingStrategy, SectionChunker
from .context import AssembledContext, ContextAssembler
from .embedder import Embedder, EmbeddingClient, HttpEmbeddingClient, create_embedding_client
from .extraction import DefaultTextExtractor, TextExtractor
from .generator import ChatClient
from .index import IndexCache, VectorIndex, load_index, save_index
from .indexer import BuildResult, IndexBuilder, IndexingProgress, IndexingStatus
from .retriever import Retriever, ScoredChunk, SearchMode
from .service import AnswerResult, QueryResult, RAGService

__all__ = [
    "Chunk",
    "ChunkingStrategy",
    "SectionChunker",
    "Embedder",
    "EmbeddingClient",
    "HttpEmbeddingClient",
    "create_embedding_client",
    "DefaultTextExtractor",
    "TextExtractor",
    "VectorIndex",
    "IndexCache",
    "load_index",
    "save_index",
    "IndexBuilder",
    "BuildResult",
    "IndexingProgress",
    "IndexingStatus",
    "Retriever",
    "ScoredChunk",
    "SearchMode",
    "ContextAssembler",
    "AssembledContext",
    "ChatClient",
    "RAGService",
    "QueryResult",
    "AnswerResult",
]
