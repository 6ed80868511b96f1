"""
docrag - question answering over a private document folder.

Turns a folder of PDF, Word, PowerPoint, text, Markdown and CSV files into a
searchable passage index, and turns a question into a ranked, diversified,
budget-limited context for a language model.

Quick Start:
    $ export DOCRAG_MODELS__EMBEDDINGS__API_KEY=sk-...
    $ docrag build --docs-dir ./docs --index ./data/index.json
    $ docrag ask "How many vacation days do interns get?" --index ./data/index.json --json

    >>> from docrag import RAGService, Settings
    >>> settings = Settings()
    >>> async with RAGService(settings) as service:
    ...     result = await service.query("How many vacation days do interns get?")
    >>> print(result.context.content)

Configuration:
    Environment variables with the DOCRAG_ prefix, nested with "__":
    - DOCRAG_INDEX__DOCS_DIR / DOCRAG_INDEX__INDEX_FILE
    - DOCRAG_MODELS__EMBEDDINGS__NAME=text-embedding-3-large
    - DOCRAG_MODELS__EMBEDDINGS__BASE_URL=local (sentence-transformers)
    - DOCRAG_RETRIEVAL__TOP_K=8, DOCRAG_CONTEXT__BUDGET=3500
    - DOCRAG_OBSERVABILITY__LOG_LEVEL=INFO
"""

__version__ = "0.3.0"

from .config.settings import Settings
from .rag.indexer import BuildResult, IndexBuilder
from .rag.service import AnswerResult, QueryResult, RAGService

__all__ = [
    "Settings",
    "IndexBuilder",
    "BuildResult",
    "RAGService",
    "QueryResult",
    "AnswerResult",
]
