"""
Test Text Chunking
==================

Tests for preprocessing, overlapping windows and chunk metadata.
"""

import pytest

from hybridrag.config.settings import ChunkingSettings
from hybridrag.exceptions import InvalidParameter
from hybridrag.models import Document
from hybridrag.pipeline.chunking import TextChunker, chunk_text, create_document_chunks, preprocess_text

LONG_TEXT = " ".join(
    f"Sentence number {i} talks about retrieval, ranking and indexing." for i in range(40)
)


class TestPreprocess:
    """Test text cleanup"""

    def test_collapses_whitespace(self):
        assert preprocess_text("  a \n\n b\t c  ") == "a b c"

    def test_drops_special_characters(self):
        assert preprocess_text("cats & dogs (pets) #1!") == "cats  dogs pets 1!"

    def test_none_safe(self):
        assert preprocess_text("") == ""


class TestChunkText:
    """Test window splitting"""

    def test_short_text_single_window(self):
        spans = chunk_text("short note", chunk_size=100, overlap=10)
        assert len(spans) == 1
        assert spans[0].text == "short note"

    def test_blank_text(self):
        assert chunk_text("   ", chunk_size=100, overlap=10) == []

    def test_windows_respect_size(self):
        spans = chunk_text(LONG_TEXT, chunk_size=200, overlap=40)
        assert len(spans) > 1
        assert all(len(span.text) <= 200 for span in spans)

    def test_windows_overlap_and_cover(self):
        spans = chunk_text(LONG_TEXT, chunk_size=200, overlap=40)
        for previous, current in zip(spans, spans[1:]):
            assert current.start < previous.end
            assert current.start > previous.start
        assert spans[0].start == 0
        assert spans[-1].end == len(LONG_TEXT)

    def test_windows_end_on_boundaries(self):
        """Windows are cut after a period or a space, never inside a word"""
        spans = chunk_text(LONG_TEXT, chunk_size=200, overlap=0)
        for span in spans[:-1]:
            assert LONG_TEXT[span.end - 1] in ". "

    def test_no_overlap(self):
        spans = chunk_text(LONG_TEXT, chunk_size=150, overlap=0)
        for previous, current in zip(spans, spans[1:]):
            assert current.start == previous.end

    def test_invalid_parameters(self):
        with pytest.raises(InvalidParameter):
            chunk_text("text", chunk_size=0)
        with pytest.raises(InvalidParameter):
            chunk_text("text", chunk_size=100, overlap=100)


class TestTextChunker:
    """Test Document -> Chunk conversion"""

    def test_chunk_ids_and_metadata(self):
        document = Document(id="doc-7", title="Retrieval notes", text=LONG_TEXT)
        chunks = TextChunker(chunk_size=200, overlap=40).chunk_document(document)

        assert [c.id for c in chunks] == [f"doc-7_chunk_{i}" for i in range(len(chunks))]
        for index, chunk in enumerate(chunks):
            assert chunk.source_doc_id == "doc-7"
            assert chunk.metadata.chunk_index == index
            assert chunk.metadata.total_chunks == len(chunks)
            assert chunk.metadata.title == "Retrieval notes"
            assert chunk.embedding is None

    def test_title_is_chunked_with_text(self):
        chunks = create_document_chunks(Document(id="d", title="Heading", text="body"), chunk_size=100, overlap=0)
        assert chunks[0].text == "Heading body"

    def test_empty_document(self):
        assert TextChunker().chunk_document(Document(id="empty")) == []

    def test_from_settings(self):
        chunker = TextChunker.from_settings(ChunkingSettings(chunk_size=300, overlap=30))
        assert (chunker.chunk_size, chunker.overlap) == (300, 30)

    def test_invalid_overlap(self):
        with pytest.raises(InvalidParameter):
            TextChunker(chunk_size=100, overlap=150)
