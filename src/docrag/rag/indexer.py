"""
Offline index builder with progress tracking.

Walks a document folder, extracts and chunks every supported file, embeds
all chunks and writes the index file atomically. A single unreadable
document is logged and skipped; an empty corpus or a failed embedding call
aborts the build without touching the existing index.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from ..config.settings import Settings
from ..core.errors import ConfigurationError, EmptyCorpusError, IndexIntegrityError
from ..observability.logging import get_logger
from ..observability.probe import probe
from .chunking import Chunk, ChunkingStrategy, SectionChunker
from .embedder import Embedder
from .extraction import DefaultTextExtractor, TextExtractor
from .index import VectorIndex, save_index

logger = get_logger(__name__)


class IndexingStatus(Enum):
    """Status of indexing operations."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class IndexingProgress:
    """Progress tracking for indexing operations."""

    total_documents: int = 0
    processed_documents: int = 0
    skipped_documents: int = 0
    total_chunks: int = 0
    embedded_chunks: int = 0
    status: IndexingStatus = IndexingStatus.PENDING
    start_time: float | None = None
    end_time: float | None = None
    current_document: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def progress_percentage(self) -> float:
        """Get progress as percentage."""
        if self.total_documents == 0:
            return 0.0
        return (self.processed_documents / self.total_documents) * 100

    @property
    def duration(self) -> float | None:
        """Get indexing duration in seconds."""
        if self.start_time is None:
            return None
        end = self.end_time or time.time()
        return end - self.start_time

    @property
    def documents_per_second(self) -> float | None:
        duration = self.duration
        if duration is None or duration == 0:
            return None
        return self.processed_documents / duration


@dataclass
class SkippedFile:
    """A document left out of the index and the reason why."""

    path: str
    reason: str


@dataclass
class BuildResult:
    """Summary of a finished build."""

    file_count: int
    chunk_count: int
    out_file: Path
    skipped: list[SkippedFile] = field(default_factory=list)
    progress: IndexingProgress = field(default_factory=IndexingProgress)


ProgressCallback = Callable[[IndexingProgress], None]


def is_pdf_sidecar(path: Path) -> bool:
    """True for "doc.pdf.txt" or "doc.txt" next to "doc.pdf"; the PDF extractor reads those."""
    if path.suffix.lower() != ".txt":
        return False
    stem = Path(path.stem)
    if stem.suffix.lower() == ".pdf" and path.with_name(stem.name).is_file():
        return True
    return any(path.with_suffix(ext).is_file() for ext in (".pdf", ".PDF"))


def discover_files(docs_dir: Path, supported_extensions: list[str] | tuple[str, ...]) -> list[Path]:
    """
    Supported files under ``docs_dir``, sorted.

    Hidden files and folders are excluded, and so are PDF sidecar text files
    when PDFs are indexed, since their text already comes in through the PDF.
    """
    pdfs_indexed = ".pdf" in supported_extensions
    files = []
    for path in docs_dir.rglob("*"):
        if not path.is_file():
            continue
        if path.suffix.lower() not in supported_extensions:
            continue
        if any(part.startswith(".") for part in path.relative_to(docs_dir).parts):
            continue
        if pdfs_indexed and is_pdf_sidecar(path):
            continue
        files.append(path)
    return sorted(files)


class IndexBuilder:
    """
    Builds the index file for a document folder.

    Files are processed sequentially in sorted order so two builds over the
    same folder produce the same chunk order.
    """

    def __init__(
        self,
        settings: Settings,
        embedder: Embedder,
        extractor: TextExtractor | None = None,
        chunker: ChunkingStrategy | None = None,
    ):
        self.settings = settings
        self.embedder = embedder
        self.extractor = extractor or DefaultTextExtractor(settings.index.supported_extensions)
        self.chunker = chunker or SectionChunker(
            target_chars=settings.chunking.target_chars,
            overlap_chars=settings.chunking.overlap_chars,
            min_chunk_chars=settings.chunking.min_chunk_chars,
        )

    async def build(
        self,
        docs_dir: Path | None = None,
        out_file: Path | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> BuildResult:
        """Build the index for ``docs_dir`` and write it to ``out_file``."""
        docs_dir = docs_dir or self.settings.index.docs_dir
        out_file = out_file or self.settings.index.index_file
        if docs_dir is None:
            raise ConfigurationError("No docs directory configured (set DOCRAG_INDEX__DOCS_DIR)")
        if out_file is None:
            raise ConfigurationError("No index file configured (set DOCRAG_INDEX__INDEX_FILE)")
        docs_dir = Path(docs_dir).resolve()
        out_file = Path(out_file)
        if not docs_dir.is_dir():
            raise ConfigurationError(f"Docs directory does not exist: {docs_dir}")

        files = discover_files(docs_dir, self.settings.index.supported_extensions)
        if not files:
            raise EmptyCorpusError(f"No indexable files found in {docs_dir}")

        logger.info("Starting index build", docs_dir=str(docs_dir), files=len(files))
        progress = IndexingProgress(
            total_documents=len(files), status=IndexingStatus.RUNNING, start_time=time.time()
        )
        self._notify(progress_callback, progress)

        skipped: list[SkippedFile] = []
        try:
            with probe("index.build", files=len(files)):
                chunks = await self._collect_chunks(files, progress, skipped, progress_callback)
                if not chunks:
                    raise EmptyCorpusError(
                        f"No usable text found in {len(files)} file(s) under {docs_dir}"
                    )
                self._check_unique_ids(chunks)

                vectors = await self.embedder.embed_batch([c.text for c in chunks])
                progress.embedded_chunks = len(vectors)

                index = VectorIndex(
                    model=self.embedder.model,
                    dim=int(vectors.shape[1]),
                    chunks=tuple(chunks),
                    vectors=vectors,
                    created_at=datetime.now(UTC).isoformat(),
                    docs_dir=str(docs_dir),
                )
                save_index(index, out_file)
        except Exception as e:
            progress.status = IndexingStatus.FAILED
            progress.end_time = time.time()
            progress.errors.append(str(e))
            logger.error("Index build failed", error=str(e))
            self._notify(progress_callback, progress)
            raise

        progress.status = IndexingStatus.COMPLETED
        progress.current_document = None
        progress.end_time = time.time()
        self._notify(progress_callback, progress)

        logger.info(
            "Index build completed",
            files=len(files),
            skipped=len(skipped),
            chunks=len(chunks),
            duration_s=round(progress.duration or 0.0, 2),
        )
        return BuildResult(
            file_count=len(files),
            chunk_count=len(chunks),
            out_file=out_file,
            skipped=skipped,
            progress=progress,
        )

    async def _collect_chunks(
        self,
        files: list[Path],
        progress: IndexingProgress,
        skipped: list[SkippedFile],
        progress_callback: ProgressCallback | None,
    ) -> list[Chunk]:
        chunks: list[Chunk] = []
        for path in files:
            progress.current_document = str(path)
            text, reason = await self._extract(path)

            if text is not None:
                doc_chunks = self.chunker.chunk(text, str(path.resolve()))
                chunks.extend(doc_chunks)
                progress.total_chunks += len(doc_chunks)
                if not doc_chunks:
                    reason = "no chunk reached the minimum length"

            if reason:
                logger.warning("Skipping document", file=path.name, reason=reason)
                skipped.append(SkippedFile(str(path), reason))
                progress.skipped_documents += 1
                progress.errors.append(f"{path}: {reason}")
            progress.processed_documents += 1
            self._notify(progress_callback, progress)
        return chunks

    async def _extract(self, path: Path) -> tuple[str | None, str | None]:
        """Return ``(text, None)``, or ``(None, reason)`` when the file is unusable."""
        timeout = self.settings.index.extraction_timeout
        try:
            text = await asyncio.wait_for(
                asyncio.to_thread(self.extractor.extract, path), timeout=timeout
            )
        except TimeoutError:
            return None, f"extraction timed out after {timeout:g}s"
        except Exception as e:
            return None, f"extraction failed: {e}"

        if not text or not text.strip():
            return None, "no extractable text"
        return text, None

    @staticmethod
    def _check_unique_ids(chunks: list[Chunk]) -> None:
        seen: set[str] = set()
        for chunk in chunks:
            if chunk.id in seen:
                raise IndexIntegrityError(
                    f"Duplicate chunk id {chunk.id} ({chunk.source_name}, order {chunk.order})"
                )
            seen.add(chunk.id)

    @staticmethod
    def _notify(callback: ProgressCallback | None, progress: IndexingProgress) -> None:
        if callback:
            callback(progress)
