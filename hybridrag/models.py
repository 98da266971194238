"""
Core Data Model
===============

Documents and chunks shared by every index.

A Document is the ingestion unit handed over by the note store. It is split
into Chunks; each chunk carries its (immutable) embedding and enough metadata
to find its way back to the source document and its neighbours.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple


@dataclass(frozen=True)
class Document:
    """
    A source document.

    Attributes:
        id: Stable document id (note id in the storage layer)
        title: Document title, indexed together with the body
        text: Plain-text body
    """
    id: str
    title: str = ""
    text: str = ""

    @property
    def full_text(self) -> str:
        """Title and body combined, as indexed by the lexical index."""
        if self.title:
            return f"{self.title}\n\n{self.text}"
        return self.text

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "text": self.text}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Document":
        return cls(id=str(data["id"]), title=data.get("title", "") or "", text=data.get("text", "") or "")


@dataclass(frozen=True)
class ChunkMetadata:
    """
    Metadata linking a chunk to its source document.

    Attributes:
        source_doc_id: Id of the document the chunk was cut from
        chunk_index: Position of the chunk inside the document (0-based)
        title: Title of the source document
        start: Character offset of the chunk start in the preprocessed text
        end: Character offset of the chunk end
        total_chunks: Number of chunks produced for the document
    """
    source_doc_id: str
    chunk_index: int
    title: str = ""
    start: int = 0
    end: int = 0
    total_chunks: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_doc_id": self.source_doc_id,
            "chunk_index": self.chunk_index,
            "title": self.title,
            "start": self.start,
            "end": self.end,
            "total_chunks": self.total_chunks,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChunkMetadata":
        return cls(
            source_doc_id=str(data["source_doc_id"]),
            chunk_index=int(data["chunk_index"]),
            title=data.get("title", "") or "",
            start=int(data.get("start", 0)),
            end=int(data.get("end", 0)),
            total_chunks=int(data.get("total_chunks", 1)),
        )


def chunk_id_for(doc_id: str, chunk_index: int) -> str:
    """Build the chunk id used across all indexes."""
    return f"{doc_id}_chunk_{chunk_index}"


@dataclass(frozen=True)
class Chunk:
    """
    A piece of a document, the unit stored in the vector index and the graph.

    The embedding is a tuple so it cannot be mutated after the chunk is built.
    It is None when no embedding provider is configured.
    """
    id: str
    text: str
    metadata: ChunkMetadata
    embedding: Optional[Tuple[float, ...]] = field(default=None, repr=False)

    @property
    def source_doc_id(self) -> str:
        return self.metadata.source_doc_id

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def with_embedding(self, embedding: Sequence[float]) -> "Chunk":
        """Return a copy of this chunk carrying ``embedding``."""
        return Chunk(
            id=self.id,
            text=self.text,
            metadata=self.metadata,
            embedding=tuple(float(v) for v in embedding),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "embedding": list(self.embedding) if self.embedding is not None else None,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        embedding = data.get("embedding")
        return cls(
            id=str(data["id"]),
            text=data.get("text", ""),
            metadata=ChunkMetadata.from_dict(data["metadata"]),
            embedding=tuple(float(v) for v in embedding) if embedding is not None else None,
        )
