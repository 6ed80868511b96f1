"""Core building blocks shared by the pipelines: error taxonomy and retry policy."""

from .errors import (
    ConfigurationError,
    DocRAGError,
    EmbeddingError,
    EmptyCorpusError,
    ErrorKind,
    ExtractionError,
    GenerationError,
    IndexIntegrityError,
    RetrievalError,
)
from .retry import RetryPolicy, is_transient_error

__all__ = [
    "DocRAGError",
    "ErrorKind",
    "ConfigurationError",
    "ExtractionError",
    "EmbeddingError",
    "IndexIntegrityError",
    "EmptyCorpusError",
    "GenerationError",
    "RetrievalError",
    "RetryPolicy",
    "is_transient_error",
]
