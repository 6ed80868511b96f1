"""
Text extraction for the supported document formats.

An empty string means "no extractable text" (e.g. a scanned PDF); an
``ExtractionError`` means the file could not be read at all.
"""

import re
import zipfile
from pathlib import Path
from typing import Protocol
from xml.etree import ElementTree

from docx import Document
from pypdf import PdfReader

from ..config.settings import SUPPORTED_EXTENSIONS
from ..core.errors import ExtractionError
from ..observability.logging import get_logger

logger = get_logger(__name__)

_DRAWINGML_TEXT = "{http://schemas.openxmlformats.org/drawingml/2006/main}t"
_SLIDE_NAME = re.compile(r"^ppt/slides/slide(\d+)\.xml$")


class TextExtractor(Protocol):
    """Anything that turns a file into plain text."""

    def extract(self, path: Path) -> str: ...


def read_text_file(path: Path) -> str:
    """Read a text file as UTF-8 (BOM tolerated), falling back to latin-1."""
    try:
        return path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError:
        return path.read_text(encoding="latin-1")


class DefaultTextExtractor:
    """Extractor for .txt/.md/.csv, .pdf (pypdf), .docx (python-docx) and .pptx."""

    def __init__(self, supported_extensions: list[str] | tuple[str, ...] = SUPPORTED_EXTENSIONS):
        self.supported_extensions = tuple(supported_extensions)

    def extract(self, path: Path) -> str:
        ext = path.suffix.lower()
        if ext not in self.supported_extensions:
            raise ExtractionError(f"Unsupported file type '{ext}': {path.name}")

        try:
            if ext in (".txt", ".md", ".csv"):
                return read_text_file(path)
            if ext == ".pdf":
                return self._extract_pdf(path)
            if ext == ".docx":
                return self._extract_docx(path)
            if ext == ".pptx":
                return self._extract_pptx(path)
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Failed to read {path.name}: {e}") from e

        raise ExtractionError(f"No reader registered for '{ext}': {path.name}")

    def _extract_pdf(self, path: Path) -> str:
        # A sidecar text file ("doc.pdf.txt" or "doc.txt") wins over PDF parsing
        for sidecar in (path.with_name(path.name + ".txt"), path.with_suffix(".txt")):
            if sidecar.is_file():
                text = read_text_file(sidecar).strip()
                if text:
                    logger.debug("Using PDF sidecar text", pdf=path.name, sidecar=sidecar.name)
                    return text

        reader = PdfReader(path)
        pages = []
        for page in reader.pages:
            page_text = page.extract_text() or ""
            if page_text.strip():
                pages.append(page_text.strip())
        return "\n\n".join(pages)

    def _extract_docx(self, path: Path) -> str:
        doc = Document(str(path))
        parts = [p.text.strip() for p in doc.paragraphs if p.text.strip()]

        for table in doc.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    parts.append(" | ".join(cells))

        return "\n\n".join(parts)

    def _extract_pptx(self, path: Path) -> str:
        slides: list[tuple[int, str]] = []
        with zipfile.ZipFile(path) as archive:
            for name in archive.namelist():
                match = _SLIDE_NAME.match(name)
                if not match:
                    continue
                root = ElementTree.fromstring(archive.read(name))
                runs = [node.text or "" for node in root.iter(_DRAWINGML_TEXT)]
                joined = " ".join(r for r in runs if r).strip()
                if joined:
                    slides.append((int(match.group(1)), joined))

        slides.sort()
        return "\n\n".join(text for _, text in slides)
