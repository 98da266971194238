"""
Overlapping Text Chunker
========================

Splits documents into character windows for embedding.

Design principles:
- Fixed-size windows (default 500 characters) with overlap (default 50)
- A window prefers to end at a sentence, line or word boundary when one
  lies in its last 30%
- Title and body are chunked together so the title contributes context
- Chunk ids are ``{doc_id}_chunk_{index}``

Usage:
    chunker = TextChunker(chunk_size=500, overlap=50)
    chunks = chunker.chunk_document(Document(id="n1", title="Cats", text=body))
"""

import logging
import re
from dataclasses import dataclass
from typing import List

from hybridrag.config.settings import ChunkingSettings
from hybridrag.exceptions import InvalidParameter
from hybridrag.models import Chunk, ChunkMetadata, Document, chunk_id_for

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_SPECIAL = re.compile(r"[^\w\s.,!?;:-]", re.UNICODE)

# a boundary is used only if it falls after this share of the window
BOUNDARY_MIN_RATIO = 0.7


def preprocess_text(text: str) -> str:
    """Collapse whitespace and drop characters other than words and basic punctuation."""
    text = _WHITESPACE.sub(" ", text or "")
    return _SPECIAL.sub("", text).strip()


@dataclass(frozen=True)
class TextSpan:
    """A window of the preprocessed text: [start, end)."""
    text: str
    start: int
    end: int


def chunk_text(text: str, chunk_size: int = 500, overlap: int = 50) -> List[TextSpan]:
    """
    Split ``text`` into overlapping windows.

    Args:
        text: Text to split (used as is, see ``preprocess_text``)
        chunk_size: Maximum window length in characters
        overlap: Characters shared by consecutive windows

    Returns:
        Windows in order; [] for blank text, one window for short text
    """
    if chunk_size < 1:
        raise InvalidParameter("chunk_size", chunk_size, "must be >= 1")
    if not 0 <= overlap < chunk_size:
        raise InvalidParameter("overlap", overlap, "must be >= 0 and smaller than chunk_size")

    clean = text.strip()
    if not clean:
        return []
    if len(clean) <= chunk_size:
        return [TextSpan(clean, 0, len(clean))]

    spans: List[TextSpan] = []
    start = 0
    while start < len(clean):
        end = min(start + chunk_size, len(clean))
        if end < len(clean):
            boundary = max(clean.rfind(mark, start, end) for mark in (".", "\n", " "))
            if boundary > start + chunk_size * BOUNDARY_MIN_RATIO:
                end = boundary + 1

        piece = clean[start:end].strip()
        if piece:
            spans.append(TextSpan(piece, start, end))
        if end >= len(clean):
            break
        start = max(end - overlap, start + 1)
    return spans


def spans_to_chunks(document: Document, spans: List[TextSpan]) -> List[Chunk]:
    """Wrap text spans of ``document`` into Chunk objects with ids and metadata."""
    return [
        Chunk(
            id=chunk_id_for(document.id, index),
            text=span.text,
            metadata=ChunkMetadata(
                source_doc_id=document.id,
                chunk_index=index,
                title=document.title,
                start=span.start,
                end=span.end,
                total_chunks=len(spans),
            ),
        )
        for index, span in enumerate(spans)
    ]


class TextChunker:
    """
    Document -> Chunk list.

    Usage:
        chunker = TextChunker.from_settings(settings.chunking)
        chunks = chunker.chunk_document(document)
    """

    def __init__(self, chunk_size: int = 500, overlap: int = 50):
        if chunk_size < 1:
            raise InvalidParameter("chunk_size", chunk_size, "must be >= 1")
        if not 0 <= overlap < chunk_size:
            raise InvalidParameter("overlap", overlap, "must be >= 0 and smaller than chunk_size")
        self.chunk_size = chunk_size
        self.overlap = overlap

    @classmethod
    def from_settings(cls, settings: ChunkingSettings) -> "TextChunker":
        return cls(chunk_size=settings.chunk_size, overlap=settings.overlap)

    def chunk_document(self, document: Document) -> List[Chunk]:
        """
        Create chunks (without embeddings) for a document.

        Returns:
            Chunks ordered by chunk_index; [] for an empty document
        """
        spans = chunk_text(preprocess_text(document.full_text), self.chunk_size, self.overlap)
        chunks = spans_to_chunks(document, spans)
        logger.debug(f"Chunked document {document.id} into {len(chunks)} chunks")
        return chunks

    async def chunk(self, document: Document) -> List[Chunk]:
        """Async entry point shared with SemanticChunker."""
        return self.chunk_document(document)


def create_document_chunks(document: Document, chunk_size: int = 500, overlap: int = 50) -> List[Chunk]:
    """Convenience wrapper around TextChunker.chunk_document."""
    return TextChunker(chunk_size, overlap).chunk_document(document)
