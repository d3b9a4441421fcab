"""Text chunking strategies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from langchain_text_splitters import RecursiveCharacterTextSplitter

if TYPE_CHECKING:
    from langchain_core.documents import Document

# Paragraph, line, sentence, word, character.
DEFAULT_SEPARATORS = ["\n\n", "\n", ". ", " ", ""]


@dataclass(frozen=True)
class TextSpan:
    """A chunk of text and its ``[start, end)`` offsets in the source."""

    content: str
    start: int
    end: int


def _splitter(
    chunk_size: int,
    chunk_overlap: int,
    separators: list[str] | None,
) -> RecursiveCharacterTextSplitter:
    if chunk_overlap >= chunk_size:
        raise ValueError(
            f"chunk_overlap ({chunk_overlap}) must be < chunk_size ({chunk_size})"
        )
    return RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        length_function=len,
        separators=separators or DEFAULT_SEPARATORS,
        add_start_index=True,
    )


def split_text(
    text: str,
    chunk_size: int = 1000,
    chunk_overlap: int = 200,
    separators: list[str] | None = None,
) -> list[TextSpan]:
    """Split *text* into overlapping spans.

    Separators are tried in order; a span only exceeds *chunk_size* when a
    piece contains none of them.  Adjacent spans share at most
    *chunk_overlap* characters.

    Parameters
    ----------
    text:
        Extracted document text.
    chunk_size:
        Maximum number of characters per chunk.
    chunk_overlap:
        Number of overlapping characters between consecutive chunks.
    separators:
        Split boundaries in priority order (defaults to
        :data:`DEFAULT_SEPARATORS`).

    Returns
    -------
    list[TextSpan]
        Spans in document order; empty for blank text.
    """
    if not text or not text.strip():
        return []
    splitter = _splitter(chunk_size, chunk_overlap, separators)
    spans: list[TextSpan] = []
    for doc in splitter.create_documents([text]):
        start = int(doc.metadata.get("start_index", -1))
        if start < 0:
            start = text.find(doc.page_content)
        spans.append(TextSpan(doc.page_content, start, start + len(doc.page_content)))
    return spans


def chunk_documents(
    documents: list[Document],
    chunk_size: int = 1000,
    chunk_overlap: int = 200,
) -> list[Document]:
    """Split LangChain *documents* into smaller chunks, keeping their metadata."""
    return _splitter(chunk_size, chunk_overlap, None).split_documents(documents)
