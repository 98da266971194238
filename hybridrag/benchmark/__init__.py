"""
hybridrag Benchmark
===================

Metriche di valutazione del retrieval (recall@K, MRR, NDCG) e confronto
dell'indice HNSW con il k-NN esatto.
"""

from hybridrag.benchmark.metrics import (
    VectorRecallReport,
    dcg_at_k,
    evaluate_vector_recall,
    exact_knn,
    mrr,
    ndcg_at_k,
    precision_at_k,
    recall_at_k,
    reciprocal_rank,
)

__all__ = [
    "recall_at_k",
    "precision_at_k",
    "reciprocal_rank",
    "mrr",
    "dcg_at_k",
    "ndcg_at_k",
    "exact_knn",
    "evaluate_vector_recall",
    "VectorRecallReport",
]
