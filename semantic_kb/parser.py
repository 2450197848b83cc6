"""
Plain-text extraction for ingested files.

Dispatches on the lower-cased file extension:

* ``.txt`` / ``.md``: read verbatim as UTF-8.
* ``.docx``: read ``word/document.xml`` from the zip container and keep
  only the ``<w:t>`` text runs, in document order.
* ``.pdf``: text extraction with pypdf.

Anything else, including legacy ``.doc``, raises :class:`ParseError`.
"""

from __future__ import annotations

import logging
import os
import re
import zipfile

from .errors import ParseError

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = {".txt", ".md"}
SUPPORTED_EXTENSIONS = TEXT_EXTENSIONS | {".docx", ".pdf"}

_DOCX_MAIN_PART = "word/document.xml"
_TEXT_RUN_RE = re.compile(r"<w:t[^>]*>([^<]*)</w:t>")


def file_extension(path: str) -> str:
    """Lower-cased extension of *path* without the dot (``""`` if none)."""
    return os.path.splitext(path)[1].lower().lstrip(".")


def parse_document(path: str) -> str:
    """Extract the text of *path*.

    Raises
    ------
    ParseError
        For unsupported formats, unreadable files, or empty extracted text.
    """
    ext = "." + file_extension(path)
    if ext in TEXT_EXTENSIONS:
        return _parse_text(path)
    if ext == ".docx":
        return _parse_docx(path)
    if ext == ".pdf":
        return _parse_pdf(path)
    if ext == ".doc":
        raise ParseError("Legacy .doc files are not supported, convert to .docx first")
    raise ParseError(f"Unsupported document format: {ext.lstrip('.') or '(none)'}")


def _parse_text(path: str) -> str:
    try:
        with open(path, "r", encoding="utf-8", newline="") as fh:
            return fh.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise ParseError(f"Failed to read text file {path}: {exc}") from exc


def extract_text_runs(xml: str) -> str:
    """Concatenate the contents of every ``<w:t>`` element in *xml*."""
    return "".join(_TEXT_RUN_RE.findall(xml))


def _parse_docx(path: str) -> str:
    try:
        with zipfile.ZipFile(path) as archive:
            xml = archive.read(_DOCX_MAIN_PART).decode("utf-8")
    except KeyError as exc:
        raise ParseError(f"{_DOCX_MAIN_PART} not found in {path}") from exc
    except (OSError, zipfile.BadZipFile, UnicodeDecodeError) as exc:
        raise ParseError(f"Failed to open DOCX file {path}: {exc}") from exc

    text = extract_text_runs(xml)
    if not text.strip():
        raise ParseError(f"DOCX document is empty: {path}")
    return text


def _parse_pdf(path: str) -> str:
    from pypdf import PdfReader
    from pypdf.errors import PyPdfError

    try:
        reader = PdfReader(path)
        parts = [page.extract_text() or "" for page in reader.pages]
    except (OSError, ValueError, PyPdfError) as exc:
        raise ParseError(f"Failed to parse PDF {path}: {exc}") from exc

    text = "\n".join(parts)
    if not text.strip():
        raise ParseError(f"PDF document is empty: {path}")
    logger.debug("Extracted %d characters from %d PDF pages", len(text), len(parts))
    return text
