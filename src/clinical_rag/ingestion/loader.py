"""Text extraction — thin wrappers around LangChain document loaders."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from langchain_community.document_loaders import PyPDFLoader

from clinical_rag.errors import ExtractionError

if TYPE_CHECKING:
    from langchain_core.documents import Document

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
PAGE_SEPARATOR = "\n\n"


def load_pdf(path: str | Path) -> list[Document]:
    """Load a single PDF file, one ``Document`` per page."""
    return PyPDFLoader(str(path)).load()


def extract_pdf_text(file_bytes: bytes) -> str:
    """Extract the text of every page of an in-memory PDF.

    The loader needs a path, so the bytes are spooled to a temporary file
    that is removed afterwards.

    Raises
    ------
    ExtractionError
        When the parser fails for any reason.
    """
    fd, tmp_path = tempfile.mkstemp(suffix=".pdf")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(file_bytes)
        pages = load_pdf(tmp_path)
    except Exception as exc:
        logger.warning("PDF extraction failed: %s", exc)
        raise ExtractionError("Failed to extract text from PDF") from exc
    finally:
        Path(tmp_path).unlink(missing_ok=True)
    return PAGE_SEPARATOR.join(page.page_content for page in pages)


def extract_text(file_bytes: bytes, mime_type: str) -> str:
    """Return the plain text of an uploaded file.

    Parameters
    ----------
    file_bytes:
        Raw upload.
    mime_type:
        Declared MIME type. ``application/pdf`` goes through the PDF
        parser, any ``text/*`` type is decoded as UTF-8.

    Raises
    ------
    ExtractionError
        Unsupported MIME type or parser failure.  There is no OCR fallback.
    """
    mime = (mime_type or "").split(";", 1)[0].strip().lower()
    if mime == PDF_MIME_TYPE:
        return extract_pdf_text(file_bytes)
    if mime.startswith("text/"):
        return file_bytes.decode("utf-8", errors="replace")
    raise ExtractionError(f"Unsupported file type for extraction: {mime_type}")
