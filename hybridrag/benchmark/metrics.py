"""
Metriche di valutazione del retrieval
=====================================

Strumenti per misurare la qualità degli indici:
- Recall@K / Precision@K: copertura dei documenti rilevanti nei top-K
- MRR: Mean Reciprocal Rank
- NDCG@K: guadagno cumulativo scontato con rilevanza graduata
- exact_knn: k-NN esatto (forza bruta), usato SOLO come riferimento
- evaluate_vector_recall: recall dell'indice HNSW rispetto al k-NN esatto

Uso:
    >>> from hybridrag.benchmark.metrics import recall_at_k, mrr
    >>>
    >>> recall_at_k(["d1", "d2", "d3"], ["d2", "d4"], k=3)
    0.5
    >>> mrr([["d1", "d2"]], [["d2"]])
    0.5
"""

import math
import statistics
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Union

import numpy as np

from hybridrag.config.settings import DistanceMetric
from hybridrag.storage.vectors.distance import distances, prepare, resolve_metric
from hybridrag.storage.vectors.hnsw import HNSWIndex

IdCollection = Union[Sequence[str], Set[str]]


def recall_at_k(retrieved: Sequence[str], relevant: IdCollection, k: int) -> float:
    """
    Recall@K = |rilevanti nei top-K| / |rilevanti|

    Per convenzione vale 1.0 se non ci sono documenti rilevanti.
    """
    relevant_set = set(relevant)
    if not relevant_set:
        return 1.0
    return len(set(retrieved[:k]) & relevant_set) / len(relevant_set)


def precision_at_k(retrieved: Sequence[str], relevant: IdCollection, k: int) -> float:
    """Precision@K = |rilevanti nei top-K| / K"""
    if k <= 0:
        return 0.0
    return len(set(retrieved[:k]) & set(relevant)) / k


def reciprocal_rank(retrieved: Sequence[str], relevant: IdCollection) -> float:
    """
    1 / posizione del primo documento rilevante (0 se assente).

    Example:
        >>> reciprocal_rank(["a", "b", "c"], ["b"])
        0.5
    """
    relevant_set = set(relevant)
    for position, doc_id in enumerate(retrieved, start=1):
        if doc_id in relevant_set:
            return 1.0 / position
    return 0.0


def mrr(all_retrieved: Sequence[Sequence[str]], all_relevant: Sequence[IdCollection]) -> float:
    """Mean Reciprocal Rank su più query."""
    if not all_retrieved:
        return 0.0
    return statistics.mean(
        reciprocal_rank(retrieved, relevant)
        for retrieved, relevant in zip(all_retrieved, all_relevant)
    )


def dcg_at_k(relevance_scores: Sequence[float], k: int) -> float:
    """DCG@K = sum (2^rel_i - 1) / log2(i + 1)"""
    return sum(
        (2 ** rel - 1) / math.log2(position + 1)
        for position, rel in enumerate(relevance_scores[:k], start=1)
    )


def ndcg_at_k(retrieved: Sequence[str], graded: Dict[str, float], k: int) -> float:
    """
    NDCG@K con rilevanza graduata.

    Args:
        retrieved: ID recuperati, in ordine
        graded: Rilevanza per ID (es. 0-3); gli ID assenti valgono 0
        k: Numero di risultati considerati

    Returns:
        NDCG in [0, 1]; 0 se nessun documento è rilevante
    """
    ideal = dcg_at_k(sorted(graded.values(), reverse=True), k)
    if ideal == 0:
        return 0.0
    return dcg_at_k([graded.get(doc_id, 0.0) for doc_id in retrieved], k) / ideal


def exact_knn(
    vectors: Dict[str, Sequence[float]],
    query: Sequence[float],
    k: int,
    metric: Union[str, DistanceMetric] = DistanceMetric.COSINE,
) -> List[str]:
    """
    k-NN esatto per forza bruta, ordinato per (distanza, id).

    Solo per valutazione: il serving usa sempre l'indice HNSW.
    """
    if not vectors:
        return []
    metric = resolve_metric(metric)
    ids = list(vectors)
    matrix = np.stack([prepare(np.asarray(vectors[i], dtype=np.float64), metric) for i in ids])
    dists = distances(matrix, prepare(np.asarray(query, dtype=np.float64), metric), metric)
    order = sorted(range(len(ids)), key=lambda i: (float(dists[i]), ids[i]))
    return [ids[i] for i in order[:k]]


@dataclass
class VectorRecallReport:
    """
    Recall dell'indice HNSW rispetto al k-NN esatto.

    Attributes:
        k: Vicini richiesti per query
        ef: Ampiezza della lista candidati usata in ricerca
        recall: Recall@K media sulle query
        num_queries: Numero di query valutate
        mean_latency_ms: Latenza media di una ricerca HNSW
        p90_latency_ms: 90° percentile della latenza
    """
    k: int
    ef: Optional[int]
    recall: float
    num_queries: int
    mean_latency_ms: float
    p90_latency_ms: float

    def to_dict(self) -> Dict[str, Any]:
        """Converte in dizionario per serializzazione JSON."""
        return {
            "k": self.k,
            "ef": self.ef,
            "recall": round(self.recall, 4),
            "num_queries": self.num_queries,
            "mean_latency_ms": round(self.mean_latency_ms, 3),
            "p90_latency_ms": round(self.p90_latency_ms, 3),
        }


def evaluate_vector_recall(
    index: HNSWIndex,
    vectors: Dict[str, Sequence[float]],
    queries: Iterable[Sequence[float]],
    k: int = 10,
    ef: Optional[int] = None,
) -> VectorRecallReport:
    """
    Misura la recall@K dell'indice contro la ricerca esatta.

    Args:
        index: Indice HNSW popolato con ``vectors``
        vectors: Gli stessi vettori, per il riferimento esatto
        queries: Vettori di query
        k: Vicini per query
        ef: Ampiezza di ricerca (default: ef_search dell'indice)
    """
    recalls: List[float] = []
    latencies: List[float] = []
    for query in queries:
        expected = exact_knn(vectors, query, k, index.metric)
        started = time.perf_counter()
        hits = index.search(query, k=k, ef=ef)
        latencies.append((time.perf_counter() - started) * 1000)
        recalls.append(recall_at_k([hit.id for hit in hits], expected, k))

    if not recalls:
        return VectorRecallReport(k=k, ef=ef, recall=0.0, num_queries=0, mean_latency_ms=0.0, p90_latency_ms=0.0)

    ordered = sorted(latencies)
    return VectorRecallReport(
        k=k,
        ef=ef,
        recall=statistics.mean(recalls),
        num_queries=len(recalls),
        mean_latency_ms=statistics.mean(latencies),
        p90_latency_ms=ordered[min(len(ordered) - 1, int(len(ordered) * 0.90))],
    )
