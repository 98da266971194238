"""
hybridrag: Hybrid Retrieval for Personal Knowledge Bases
========================================================

Ricerca ibrida su note e documenti: indice vettoriale HNSW, indice lessicale
BM25, fusione dei punteggi e reranking a grafo (random walk with restart).

Quick Start:
    from hybridrag import HybridSearchEngine, HashingEmbeddingProvider, SearchOptions

    engine = HybridSearchEngine(provider=HashingEmbeddingProvider(dimension=256))

    # Ingestion
    await engine.add_document("n1", "Gatti", "The cat sat on the mat")

    # Ricerca
    results = await engine.search("cat", SearchOptions(alpha=0.5, limit=5))

Componenti:
- core: HybridSearchEngine, SearchOptions, SearchResult
- storage: HNSWIndex, BM25Index, FusionEngine, GraphRetriever
- pipeline: TextChunker, SemanticChunker, IngestionPipeline
- config: RetrievalSettings, SettingsStore
- benchmark: recall@K, MRR, NDCG
"""

__version__ = "0.1.0"
__author__ = "hybridrag contributors"

# Core API
from hybridrag.core import HybridSearchEngine, SearchOptions, SearchResult, SyncReport, create_engine
from hybridrag.config import RetrievalSettings, SettingsStore, load_settings
from hybridrag.models import Chunk, Document

# Convenience exports
from hybridrag.storage import BM25Index, FusionEngine, GraphRetriever, HNSWIndex
from hybridrag.storage.vectors import EmbeddingProvider, HashingEmbeddingProvider

__all__ = [
    # Core
    "HybridSearchEngine",
    "SearchOptions",
    "SearchResult",
    "SyncReport",
    "create_engine",
    # Config
    "RetrievalSettings",
    "SettingsStore",
    "load_settings",
    # Models
    "Document",
    "Chunk",
    # Storage
    "HNSWIndex",
    "BM25Index",
    "FusionEngine",
    "GraphRetriever",
    "EmbeddingProvider",
    "HashingEmbeddingProvider",
]
