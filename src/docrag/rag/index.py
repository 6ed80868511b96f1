"""
The persisted passage index: chunks plus their unit vectors.

Once built or loaded, a ``VectorIndex`` is never mutated; a rebuild produces
a new file, swapped in atomically, and a new object.
"""

import json
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from ..core.errors import ConfigurationError, IndexIntegrityError
from ..observability.logging import get_logger
from .chunking import Chunk

logger = get_logger(__name__)

REQUIRED_KEYS = ("model", "dim", "chunks", "vectors")


def _as_matrix(vectors: Any, dim: int) -> np.ndarray:
    if isinstance(vectors, np.ndarray):
        matrix = np.array(vectors, dtype=np.float64)
    elif not isinstance(vectors, (list, tuple)):
        raise IndexIntegrityError(f"Vectors must be a list of rows, got {type(vectors).__name__}")
    else:
        try:
            for i, row in enumerate(vectors):
                if len(row) != dim:
                    raise IndexIntegrityError(f"Vector {i} has length {len(row)}, expected dim={dim}")
            matrix = np.array(vectors, dtype=np.float64).reshape(len(vectors), dim)
        except (TypeError, ValueError) as e:
            raise IndexIntegrityError(f"Malformed vector data: {e}") from e

    if matrix.ndim != 2 or matrix.shape[1] != dim:
        raise IndexIntegrityError(f"Vectors have shape {matrix.shape}, expected (n, {dim})")
    return matrix


@dataclass(frozen=True)
class VectorIndex:
    """Immutable chunk/vector table; row ``i`` of ``vectors`` embeds ``chunks[i]``."""

    model: str
    dim: int
    chunks: tuple[Chunk, ...]
    vectors: np.ndarray
    created_at: str
    docs_dir: str

    def __post_init__(self) -> None:
        if self.dim <= 0:
            raise IndexIntegrityError(f"Index dimension must be positive, got {self.dim}")
        chunks = tuple(self.chunks)
        matrix = _as_matrix(self.vectors, self.dim)
        if len(matrix) != len(chunks):
            raise IndexIntegrityError(
                f"Index has {len(chunks)} chunks but {len(matrix)} vectors"
            )
        matrix.setflags(write=False)
        object.__setattr__(self, "chunks", chunks)
        object.__setattr__(self, "vectors", matrix)

    def __len__(self) -> int:
        return len(self.chunks)

    @property
    def is_empty(self) -> bool:
        return not self.chunks

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "dim": self.dim,
            "chunks": [c.to_dict() for c in self.chunks],
            "vectors": self.vectors.tolist(),
            "created_at": self.created_at,
            "docs_dir": self.docs_dir,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VectorIndex":
        missing = [key for key in REQUIRED_KEYS if key not in data]
        if missing:
            raise IndexIntegrityError(f"Index is missing keys: {', '.join(missing)}")
        try:
            chunks = tuple(Chunk.from_dict(item) for item in data["chunks"])
            dim = int(data["dim"])
        except (KeyError, TypeError, ValueError) as e:
            raise IndexIntegrityError(f"Malformed chunk record: {e}") from e
        return cls(
            model=str(data["model"]),
            dim=dim,
            chunks=chunks,
            vectors=data["vectors"],
            created_at=str(data.get("created_at", "")),
            docs_dir=str(data.get("docs_dir", "")),
        )


def save_index(index: VectorIndex, path: Path) -> None:
    """Write the index as JSON, replacing any existing file atomically."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(index.to_dict(), fh, ensure_ascii=False)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info("Index written", path=str(path), chunks=len(index), dim=index.dim)


def load_index(path: Path) -> VectorIndex:
    """Read and validate an index file; an empty index is rejected."""
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Index file not found: {path}. Run 'docrag build' first.")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise IndexIntegrityError(f"Index file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise IndexIntegrityError(f"Index file {path} does not hold a JSON object")

    index = VectorIndex.from_dict(data)
    if index.is_empty:
        raise IndexIntegrityError(f"Index file {path} contains no chunks")

    logger.debug("Index loaded", path=str(path), chunks=len(index), model=index.model)
    return index


class IndexCache:
    """
    Single-owner handle on the index file for a serving process.

    The index is loaded on first use and shared by every retrieval after that;
    call ``invalidate()`` after a rebuild, or pass ``reload_on_change=True`` to
    reload whenever the file's mtime moves.
    """

    def __init__(self, path: Path, reload_on_change: bool = False):
        self.path = Path(path)
        self.reload_on_change = reload_on_change
        self._lock = threading.Lock()
        self._index: VectorIndex | None = None
        self._mtime: float | None = None

    def get(self) -> VectorIndex:
        with self._lock:
            if self._index is not None and self.reload_on_change:
                if self._current_mtime() != self._mtime:
                    logger.info("Index file changed, reloading", path=str(self.path))
                    self._index = None

            if self._index is None:
                self._mtime = self._current_mtime()
                self._index = load_index(self.path)
            return self._index

    def invalidate(self) -> None:
        with self._lock:
            self._index = None
            self._mtime = None

    @property
    def loaded(self) -> bool:
        return self._index is not None

    def _current_mtime(self) -> float | None:
        try:
            return self.path.stat().st_mtime
        except FileNotFoundError:
            return None
