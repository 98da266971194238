"""
Ingestion Pipeline
==================

Documents -> embedded chunks, one document at a time.

A document is either fully prepared (all of its chunks embedded) or reported
as a failure; it is never half-embedded. A failing document does not stop
the batch, except for ProviderUnavailable: a missing backend would fail
every document, so it is raised to the caller.

Usage:
    pipeline = IngestionPipeline(provider, TextChunker())
    failures = []
    async for prepared in pipeline.stream(documents, failures):
        engine_bundle.commit(prepared)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple, Union

import structlog

from hybridrag.exceptions import DimensionMismatch, ProviderError, ProviderUnavailable
from hybridrag.models import Chunk, Document
from hybridrag.pipeline.chunking import TextChunker
from hybridrag.pipeline.semantic_chunking import SemanticChunker
from hybridrag.storage.vectors.embeddings import EmbeddingProvider, batched

log = structlog.get_logger()


@dataclass
class IngestionFailure:
    """
    A document that could not be indexed.

    Attributes:
        doc_id: Id of the skipped document
        error: Error message
        error_type: Exception class name
        retryable: True for transient provider failures
    """
    doc_id: str
    error: str
    error_type: str
    retryable: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "doc_id": self.doc_id,
            "error": self.error,
            "error_type": self.error_type,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class PreparedDocument:
    """A document with its chunks, embedded when a provider is configured."""
    document: Document
    chunks: List[Chunk]

    @property
    def doc_id(self) -> str:
        return self.document.id


class IngestionPipeline:
    """
    Chunk and embed documents.

    Attributes:
        provider: Embedding provider (None = chunks without embeddings)
        chunker: Document chunker (character windows or semantic)
    """

    def __init__(
        self,
        provider: Optional[EmbeddingProvider],
        chunker: Optional[Union[TextChunker, SemanticChunker]] = None,
    ):
        self.provider = provider
        self.chunker = chunker or TextChunker()

    async def prepare_document(self, document: Document) -> PreparedDocument:
        """
        Chunk and embed a single document.

        Raises:
            ProviderUnavailable: no usable backend
            ProviderError: transient backend failure
            DimensionMismatch: the provider returned vectors of the wrong size
        """
        chunks = await self.chunker.chunk(document)
        if self.provider is None or not chunks:
            return PreparedDocument(document=document, chunks=chunks)

        texts = [chunk.text for chunk in chunks]
        vectors: List[List[float]] = []
        for batch in batched(texts, self.provider.max_batch_size):
            vectors.extend(await self.provider.generate_embeddings(batch, is_query=False))

        if len(vectors) != len(chunks):
            raise ProviderError(
                self.provider.name,
                "Provider returned the wrong number of vectors",
                {"doc_id": document.id, "expected": len(chunks), "actual": len(vectors)},
            )
        dimension = self.provider.dimension
        for vector in vectors:
            if len(vector) != dimension:
                raise DimensionMismatch(dimension, len(vector), {"doc_id": document.id})

        embedded = [chunk.with_embedding(vector) for chunk, vector in zip(chunks, vectors)]
        return PreparedDocument(document=document, chunks=embedded)

    async def stream(
        self,
        documents: Iterable[Document],
        failures: List[IngestionFailure],
    ) -> AsyncIterator[PreparedDocument]:
        """
        Prepare documents one by one, yielding each as soon as it is ready.

        Failures are appended to ``failures`` and the document is skipped.

        Raises:
            ProviderUnavailable: propagated, it would fail every document
        """
        for document in documents:
            try:
                prepared = await self.prepare_document(document)
            except ProviderUnavailable:
                raise
            except Exception as e:
                failure = IngestionFailure(
                    doc_id=document.id,
                    error=str(e),
                    error_type=type(e).__name__,
                    retryable=bool(getattr(e, "retryable", False)),
                )
                failures.append(failure)
                log.warning("Document skipped during ingestion", doc_id=document.id,
                            error=str(e), error_type=failure.error_type)
                continue
            yield prepared

    async def prepare_all(self, documents: Iterable[Document]) -> Tuple[List[PreparedDocument], List[IngestionFailure]]:
        """Prepare every document; returns (prepared, failures)."""
        failures: List[IngestionFailure] = []
        prepared = [item async for item in self.stream(documents, failures)]
        return prepared, failures
