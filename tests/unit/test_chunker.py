"""Unit tests for the chunker module."""

from langchain_core.documents import Document
import pytest

from clinical_rag.ingestion.chunker import chunk_documents, split_text


def test_split_text_splits_long_text() -> None:
    """A text longer than chunk_size should be split."""
    long_text = "word " * 500  # ~2500 chars
    spans = split_text(long_text, chunk_size=256, chunk_overlap=32)
    assert len(spans) > 1
    assert all(len(s.content) <= 256 for s in spans)


def test_split_text_offsets_point_into_source() -> None:
    text = "\n\n".join(f"Paragraph {i}. " + "lorem ipsum dolor sit amet " * 6 for i in range(8))
    spans = split_text(text, chunk_size=200, chunk_overlap=40)
    for span in spans:
        assert text[span.start : span.end] == span.content
    assert [s.start for s in spans] == sorted(s.start for s in spans)


def test_split_text_covers_every_character() -> None:
    """Consecutive spans leave no gap larger than the whitespace they strip."""
    text = " ".join(f"token{i}" for i in range(400))
    spans = split_text(text, chunk_size=120, chunk_overlap=30)
    assert spans[0].start == 0
    assert spans[-1].end == len(text)
    for prev, nxt in zip(spans, spans[1:]):
        assert nxt.start <= prev.end + 1
        assert prev.end - nxt.start <= 30


def test_split_text_prefers_paragraph_boundaries() -> None:
    first = "alpha " * 20
    second = "beta " * 20
    spans = split_text(f"{first.strip()}\n\n{second.strip()}", chunk_size=150, chunk_overlap=10)
    assert [s.content for s in spans] == [first.strip(), second.strip()]


def test_split_text_blank_input() -> None:
    assert split_text("") == []
    assert split_text("   \n\n  ") == []


def test_split_text_rejects_overlap_not_below_size() -> None:
    with pytest.raises(ValueError):
        split_text("some text", chunk_size=100, chunk_overlap=100)


def test_chunk_documents_preserves_metadata() -> None:
    """Metadata from the source document should be preserved in chunks."""
    docs = [Document(page_content="Short text.", metadata={"source": "test.md"})]
    chunks = chunk_documents(docs, chunk_size=256, chunk_overlap=0)
    assert all(c.metadata.get("source") == "test.md" for c in chunks)


def test_chunk_documents_empty_input() -> None:
    """An empty list should return an empty list."""
    assert chunk_documents([]) == []
