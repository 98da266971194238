"""
Distance Metrics
================

Vector preparation, batched distances and the distance -> similarity mapping.

Convention used everywhere in hybridrag:
    distance   metric-native, lower is better (cosine: 1 - cos, euclidean: L2)
    similarity in [0, 1], higher is better (cosine: clip(cos, 0, 1),
               euclidean: 1 / (1 + L2))

Cosine vectors are L2-normalised once when stored, so a cosine distance is a
single dot product.
"""

from typing import Sequence, Union

import numpy as np

from hybridrag.config.settings import DistanceMetric
from hybridrag.exceptions import DimensionMismatch, InvalidParameter

VectorLike = Union[Sequence[float], np.ndarray]


def resolve_metric(metric: Union[str, DistanceMetric]) -> DistanceMetric:
    """Parse a metric name, raising InvalidParameter for unknown metrics."""
    try:
        return DistanceMetric(metric)
    except ValueError:
        raise InvalidParameter("metric", metric, "expected 'cosine' or 'euclidean'") from None


def as_vector(values: VectorLike, dimension: int) -> np.ndarray:
    """
    Convert ``values`` to a 1-D float64 array of the given dimension.

    Raises:
        DimensionMismatch: wrong length
        InvalidParameter: not 1-D or contains NaN / inf
    """
    arr = np.asarray(values, dtype=np.float64)
    if arr.ndim != 1:
        raise InvalidParameter("vector", f"shape {arr.shape}", "expected a 1-D vector")
    if arr.shape[0] != dimension:
        raise DimensionMismatch(dimension, int(arr.shape[0]))
    if not np.all(np.isfinite(arr)):
        raise InvalidParameter("vector", "non-finite values", "vectors must contain finite numbers")
    return arr


def prepare(vector: np.ndarray, metric: DistanceMetric) -> np.ndarray:
    """Return the stored form of ``vector`` for ``metric``."""
    if metric == DistanceMetric.COSINE:
        norm = float(np.linalg.norm(vector))
        # zero vectors stay zero: distance 1 to everything
        if norm > 0.0:
            return vector / norm
        return vector.copy()
    return vector.copy()


def distance(a: np.ndarray, b: np.ndarray, metric: DistanceMetric) -> float:
    """Distance between two prepared vectors."""
    if metric == DistanceMetric.COSINE:
        return float(1.0 - np.dot(a, b))
    return float(np.linalg.norm(a - b))


def distances(matrix: np.ndarray, query: np.ndarray, metric: DistanceMetric) -> np.ndarray:
    """Distances from ``query`` to every row of ``matrix`` (prepared vectors)."""
    if metric == DistanceMetric.COSINE:
        return 1.0 - matrix @ query
    return np.linalg.norm(matrix - query, axis=1)


def to_similarity(dist: float, metric: DistanceMetric) -> float:
    """Map a metric distance to a similarity in [0, 1]."""
    if metric == DistanceMetric.COSINE:
        return float(min(1.0, max(0.0, 1.0 - dist)))
    return float(1.0 / (1.0 + max(0.0, dist)))


def similarity(a: VectorLike, b: VectorLike, metric: Union[str, DistanceMetric] = DistanceMetric.COSINE) -> float:
    """Similarity in [0, 1] between two raw vectors of equal length."""
    metric = resolve_metric(metric)
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise DimensionMismatch(int(va.shape[0]), int(vb.shape[0]))
    return to_similarity(distance(prepare(va, metric), prepare(vb, metric), metric), metric)
