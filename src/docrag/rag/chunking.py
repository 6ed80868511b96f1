"""
Section-aware chunking of extracted document text.

Text is split into blocks at heading lines, each block remembers the last
three headings seen before it, and blocks are bundled into overlapping
chunks of roughly ``target_chars`` characters.
"""

import hashlib
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from ..observability.logging import get_logger

logger = get_logger(__name__)

# Markdown "# Title", ALL CAPS lines, lines ending in ":", numbered "1.2.3 Title"
HEADING_RX = re.compile(r"^(#+\s+.+|(?:[A-Z][A-Z0-9 ]{3,}|.+:)$|\d+(?:\.\d+)*\s+.+)$")

_MARKDOWN_MARKER = re.compile(r"^#+\s*")
_HEADING_NOISE = re.compile(r"[#\d.\s]")

MAX_TRAIL_DEPTH = 3
SECTION_JOINER = " > "
BLOCK_JOINER = "\n\n"
LINE_JOINER = "\n"
OVERSIZE_FACTOR = 1.5


@dataclass(frozen=True)
class Chunk:
    """A contiguous span of one document, the unit of retrieval."""

    id: str
    source_path: str
    source_name: str
    text: str
    order: int
    section: str | None = None

    @property
    def size(self) -> int:
        """Chunk size in characters."""
        return len(self.text)

    @property
    def label(self) -> str:
        """Citation label, e.g. ``handbook.pdf > 3. Internship > Part-time``."""
        if self.section:
            return f"{self.source_name}{SECTION_JOINER}{self.section}"
        return self.source_name

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "source_name": self.source_name,
            "source_path": self.source_path,
        }
        if self.section:
            data["section"] = self.section
        data["text"] = self.text
        data["order"] = self.order
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Chunk":
        return cls(
            id=str(data["id"]),
            source_path=str(data["source_path"]),
            source_name=str(data.get("source_name") or source_name_of(data["source_path"])),
            text=str(data["text"]),
            order=int(data["order"]),
            section=data.get("section") or None,
        )


@dataclass(frozen=True)
class Block:
    """Text between two headings, tagged with the heading trail in effect."""

    trail: tuple[str, ...]
    text: str

    @property
    def section(self) -> str | None:
        return SECTION_JOINER.join(self.trail) or None


def is_heading(line: str) -> bool:
    return bool(HEADING_RX.match(line.rstrip()))


def source_name_of(source_path: str) -> str:
    """Basename for both POSIX and Windows style paths."""
    return re.split(r"[\\/]", source_path)[-1] or source_path


def chunk_id(source_path: str, order: int, section: str | None, text: str) -> str:
    """Stable ID: same path, position and opening text give the same ID on rebuild."""
    key = f"{source_path}::{order}::{section or ''}::{text[:64]}"
    return hashlib.sha1(key.encode("utf-8")).hexdigest()


def split_long_line(line: str, limit: int) -> list[str]:
    """Break a line longer than ``limit`` at word boundaries."""
    if len(line) <= limit:
        return [line]

    pieces = []
    start = 0
    while start < len(line):
        end = min(start + limit, len(line))
        if end < len(line):
            last_space = line.rfind(" ", start, end)
            if last_space > start:
                end = last_space
        piece = line[start:end].strip()
        if piece:
            pieces.append(piece)
        start = end
    return pieces


class _Accumulator:
    """Greedy text buffer that seeds every new run with the previous run's tail."""

    def __init__(self, joiner: str, overlap_chars: int):
        self.joiner = joiner
        self.overlap_chars = overlap_chars
        self.parts: list[str] = []
        self.length = 0
        # Parts added since the last seed; a buffer holding only the seed is never emitted
        self.fresh = 0

    def would_overflow(self, piece: str, limit: int) -> bool:
        return self.fresh > 0 and self.length + len(self.joiner) + len(piece) > limit

    def add(self, piece: str) -> None:
        if self.parts:
            self.length += len(self.joiner)
        self.parts.append(piece)
        self.length += len(piece)
        self.fresh += 1

    def drain(self) -> str | None:
        """Return the buffered text and keep its tail as the next seed."""
        if not self.fresh:
            return None
        joined = self.joiner.join(self.parts).rstrip()
        tail = joined[-self.overlap_chars :] if self.overlap_chars > 0 else ""
        self.parts = [tail] if tail else []
        self.length = len(tail)
        self.fresh = 0
        return joined

    def reset(self) -> None:
        self.parts = []
        self.length = 0
        self.fresh = 0


class ChunkingStrategy(ABC):
    """Abstract base class for chunking strategies."""

    def __init__(self, target_chars: int = 1200, overlap_chars: int = 200, min_chunk_chars: int = 120):
        if target_chars <= 0:
            raise ValueError("target_chars must be positive")
        if not 0 <= overlap_chars < target_chars:
            raise ValueError("overlap_chars must be in [0, target_chars)")
        self.target_chars = target_chars
        self.overlap_chars = overlap_chars
        self.min_chunk_chars = min_chunk_chars

    @abstractmethod
    def chunk(self, raw_text: str, source_path: str) -> list[Chunk]:
        """Split one document's text into ordered chunks."""
        ...

    def _finalize(self, pieces: list[tuple[str, str | None]], source_path: str) -> list[Chunk]:
        """Drop near-empty pieces, then number the survivors in emission order."""
        name = source_name_of(source_path)
        chunks = []
        for raw, section in pieces:
            text = raw.strip()
            if len(text) < self.min_chunk_chars:
                continue
            order = len(chunks)
            chunks.append(
                Chunk(
                    id=chunk_id(source_path, order, section, text),
                    source_path=source_path,
                    source_name=name,
                    text=text,
                    order=order,
                    section=section,
                )
            )
        return chunks


class SectionChunker(ChunkingStrategy):
    """
    Heading-aware chunker with character overlap.

    The heading trail is a sliding window over the last three headings seen,
    not a reconstruction of the document outline.
    """

    def chunk(self, raw_text: str, source_path: str) -> list[Chunk]:
        if not raw_text or not raw_text.strip():
            return []

        blocks = self.split_blocks(raw_text)
        pieces = self._bundle(blocks)
        chunks = self._finalize(pieces, source_path)

        logger.debug(
            "Chunked document",
            source=source_name_of(source_path),
            blocks=len(blocks),
            chunks=len(chunks),
            dropped=len(pieces) - len(chunks),
        )
        return chunks

    def split_blocks(self, raw_text: str) -> list[Block]:
        """Split text into blocks at heading lines."""
        lines = raw_text.replace("\r\n", "\n").replace("\r", "\n").split("\n")

        blocks: list[Block] = []
        trail: list[str] = []
        buf: list[str] = []

        def flush() -> None:
            text = LINE_JOINER.join(buf).strip()
            if text:
                blocks.append(Block(trail=tuple(trail), text=text))
            buf.clear()

        for line in lines:
            stripped = line.rstrip()
            if HEADING_RX.match(stripped):
                flush()
                heading = _MARKDOWN_MARKER.sub("", stripped).strip()
                # "## 2.1" and bare "###" carry no title
                if _HEADING_NOISE.sub("", heading):
                    trail.append(heading)
                    while len(trail) > MAX_TRAIL_DEPTH:
                        trail.pop(0)
            else:
                buf.append(line)
        flush()

        return blocks

    def _bundle(self, blocks: list[Block]) -> list[tuple[str, str | None]]:
        pieces: list[tuple[str, str | None]] = []
        acc = _Accumulator(BLOCK_JOINER, self.overlap_chars)
        section: str | None = blocks[0].section if blocks else None

        for block in blocks:
            if len(block.text) > self.target_chars * OVERSIZE_FACTOR:
                # Emit what is pending so order keeps following the document
                pending = acc.drain()
                if pending is not None:
                    pieces.append((pending, section))
                acc.reset()
                pieces.extend((text, block.section) for text in self._split_oversized(block.text))
                continue

            if acc.would_overflow(block.text, self.target_chars):
                pieces.append((acc.drain(), section))
                section = block.section
            elif not acc.fresh:
                section = block.section

            acc.add(block.text)

        remaining = acc.drain()
        if remaining is not None:
            pieces.append((remaining, section))
        return pieces

    def _split_oversized(self, text: str) -> list[str]:
        """Greedy line accumulation for a block far larger than the target."""
        out: list[str] = []
        acc = _Accumulator(LINE_JOINER, self.overlap_chars)

        for raw_line in text.split("\n"):
            for line in split_long_line(raw_line, self.target_chars):
                if acc.would_overflow(line, self.target_chars):
                    out.append(acc.drain())
                acc.add(line)

        remaining = acc.drain()
        if remaining is not None:
            out.append(remaining)
        return out
