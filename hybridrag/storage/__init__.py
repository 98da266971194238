"""
Storage Layer
=============

In-memory indexes of the retrieval core.

Components:
- vectors/: HNSW index and embedding providers
- lexical/: tokenizer and BM25 inverted index
- retriever/: FusionEngine (lexical + vector score fusion)
- graph/: GraphRetriever (random walk with restart over chunk edges)
- snapshot: checksummed JSON persistence

Architecture:
    Query text ----------------> [BM25Index] ----+
                                                 |
    Query vector --+-----------> [HNSWIndex] ----+--> FusionEngine
                   |                  |
                   |            semantic edges
                   |                  v
                   +----------> [GraphRetriever] -----> RankedNode
"""

from hybridrag.storage.graph import EdgeType, GraphEdge, GraphRetriever, RankedNode
from hybridrag.storage.lexical import BM25Index, LexicalHit, Tokenizer
from hybridrag.storage.retriever import FusedHit, FusionConfig, FusionEngine
from hybridrag.storage.snapshot import compute_checksum, read_snapshot, write_snapshot
from hybridrag.storage.vectors import EmbeddingProvider, HNSWIndex, IndexState, VectorHit

__all__ = [
    # Vectors
    "HNSWIndex",
    "IndexState",
    "VectorHit",
    "EmbeddingProvider",
    # Lexical
    "BM25Index",
    "LexicalHit",
    "Tokenizer",
    # Fusion
    "FusionEngine",
    "FusionConfig",
    "FusedHit",
    # Graph
    "GraphRetriever",
    "GraphEdge",
    "EdgeType",
    "RankedNode",
    # Snapshot
    "compute_checksum",
    "read_snapshot",
    "write_snapshot",
]
