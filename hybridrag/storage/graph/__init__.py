"""
hybridrag Graph Storage
=======================

Chunk graph (sequential + semantic edges) ranked by random walk with restart.

Example:
    from hybridrag.storage.graph import GraphRetriever

    graph = GraphRetriever(dimension=384, vector_index=hnsw, seed=42)
    graph.add_node(chunk)
    graph.build_semantic_edges(threshold=0.7)
    ranked = graph.query(query_embedding, top_k=5)
"""

from hybridrag.storage.graph.models import EdgeType, GraphEdge, RankedNode
from hybridrag.storage.graph.retriever import GraphRetriever

__all__ = [
    "EdgeType",
    "GraphEdge",
    "GraphRetriever",
    "RankedNode",
]
