"""
hybridrag Pipeline
==================

Chunking and embedding of documents before indexing.

Componenti:
- TextChunker: finestre di caratteri con overlap
- SemanticChunker: frasi raggruppate per similarity degli embedding
- build_chunker: sceglie il chunker da ``ChunkingSettings.strategy``
- IngestionPipeline: chunking + embedding, un documento alla volta

Esempio:
    from hybridrag.pipeline import IngestionPipeline, build_chunker

    pipeline = IngestionPipeline(provider, build_chunker(settings.chunking, provider))
    prepared, failures = await pipeline.prepare_all(documents)
"""

from hybridrag.pipeline.chunking import TextChunker, chunk_text, create_document_chunks, preprocess_text
from hybridrag.pipeline.ingestion import IngestionFailure, IngestionPipeline, PreparedDocument
from hybridrag.pipeline.semantic_chunking import SemanticChunker, build_chunker, split_sentences

__all__ = [
    "TextChunker",
    "SemanticChunker",
    "build_chunker",
    "chunk_text",
    "create_document_chunks",
    "preprocess_text",
    "split_sentences",
    "IngestionPipeline",
    "IngestionFailure",
    "PreparedDocument",
]
