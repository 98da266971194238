"""
hybridrag Vector Storage
========================

HNSW approximate nearest-neighbour index and embedding providers.

Components:
- HNSWIndex: hierarchical proximity graph, insert / update / delete / kNN
- EmbeddingProvider: async text -> vector interface and its implementations

Example:
    from hybridrag.storage.vectors import HNSWIndex, HashingEmbeddingProvider

    provider = HashingEmbeddingProvider(dimension=64)
    index = HNSWIndex(dimension=64, seed=7)
    vector = (await provider.generate_embeddings(["cats are pets"]))[0]
    index.insert("doc1_chunk_0", vector)
"""

from hybridrag.storage.vectors.distance import similarity, to_similarity
from hybridrag.storage.vectors.embeddings import (
    CachedEmbeddingProvider,
    EmbeddingProvider,
    HashingEmbeddingProvider,
    HTTPEmbeddingProvider,
    ProviderRegistry,
    SentenceTransformerProvider,
    build_embedding_provider,
)
from hybridrag.storage.vectors.hnsw import HNSWIndex, HNSWNode, IndexState, VectorHit

__all__ = [
    # Index
    "HNSWIndex",
    "HNSWNode",
    "IndexState",
    "VectorHit",
    # Distance
    "similarity",
    "to_similarity",
    # Providers
    "EmbeddingProvider",
    "HashingEmbeddingProvider",
    "SentenceTransformerProvider",
    "HTTPEmbeddingProvider",
    "CachedEmbeddingProvider",
    "ProviderRegistry",
    "build_embedding_provider",
]
