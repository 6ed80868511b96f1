"""
Error taxonomy for the build and query pipelines.

Every error carries a ``kind`` and a human-readable ``message`` so callers
(CLI, API routes) can render a structured failure instead of a traceback.
"""

from enum import Enum
from typing import Any


class ErrorKind(Enum):
    """Categories of pipeline failures."""

    CONFIGURATION = "configuration"
    EXTRACTION = "extraction"
    EMBEDDING = "embedding"
    INDEX_INTEGRITY = "index_integrity"
    EMPTY_CORPUS = "empty_corpus"
    INVALID_QUERY = "invalid_query"
    MODEL_MISMATCH = "model_mismatch"
    GENERATION = "generation"


class DocRAGError(Exception):
    """Base class for docrag failures."""

    kind: ErrorKind = ErrorKind.CONFIGURATION

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message}


class ConfigurationError(DocRAGError):
    """Missing docs directory, missing index file, unusable settings."""

    kind = ErrorKind.CONFIGURATION


class ExtractionError(DocRAGError):
    """A single document could not be read."""

    kind = ErrorKind.EXTRACTION


class EmbeddingError(DocRAGError):
    """The embedding service failed or retries were exhausted."""

    kind = ErrorKind.EMBEDDING

    def __init__(self, message: str, transient: bool = False, status_code: int | None = None):
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


class IndexIntegrityError(DocRAGError):
    """The index violates its length or dimension invariants."""

    kind = ErrorKind.INDEX_INTEGRITY


class EmptyCorpusError(DocRAGError):
    """No files or no usable chunks were found during a build."""

    kind = ErrorKind.EMPTY_CORPUS


class GenerationError(DocRAGError):
    """The generation service failed."""

    kind = ErrorKind.GENERATION

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class RetrievalError(DocRAGError):
    """A query could not be answered; ``kind`` says why."""

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
