"""
hybridrag Hybrid Retriever
==========================

Score fusion of lexical (BM25) and vector (HNSW) results.

Example:
    from hybridrag.storage.retriever import FusionConfig, FusionEngine

    engine = FusionEngine(hnsw, bm25, FusionConfig(alpha=0.3))
    hits = engine.search("cat pets", query_embedding=vector, limit=10)
"""

from hybridrag.storage.retriever.hybrid import FusionEngine
from hybridrag.storage.retriever.models import FusedHit, FusionConfig, min_max_normalize

__all__ = [
    "FusionEngine",
    "FusionConfig",
    "FusedHit",
    "min_max_normalize",
]
