"""
Text extraction for supported document types.

PDFs are read with pypdf; everything else is treated as UTF-8 text. Only the
first ``max_chars`` characters are returned since the categorizer needs a
representative sample, not the whole document.
"""

from __future__ import annotations

import os
from pathlib import Path

from pypdf import PdfReader

# Page cap so very large PDFs cannot exhaust memory.
MAX_PDF_PAGES = 50


class ExtractionError(Exception):
    """A file could not be read or decoded."""


def extract_text(path: str | os.PathLike, max_chars: int) -> str:
    """Extract up to ``max_chars`` characters of text from ``path``."""
    path = Path(path)
    try:
        if path.suffix.lower() == ".pdf":
            return _extract_pdf_text(path, max_chars)
        return _extract_plain_text(path, max_chars)
    except ExtractionError:
        raise
    except Exception as e:
        # pypdf raises a wide range of errors on malformed files.
        raise ExtractionError(f"Failed to extract text from {path.name}: {e}") from e


def _extract_pdf_text(path: Path, max_chars: int) -> str:
    reader = PdfReader(path)
    parts = []
    length = 0
    for page in reader.pages[:MAX_PDF_PAGES]:
        text = page.extract_text() or ""
        parts.append(text)
        length += len(text)
        if length >= max_chars:
            break
    return "".join(parts)[:max_chars]


def _extract_plain_text(path: Path, max_chars: int) -> str:
    with open(path, "r", encoding="utf-8", errors="replace") as handle:
        return handle.read(max_chars)
