"""
HNSW Vector Index
=================

Hierarchical Navigable Small World graph for approximate k-nearest-neighbour
search over dense vectors.

Structure:
    layer L   o-------------o            (few nodes, long links)
              |             |
    layer 1   o----o----o---o----o
              |    |    |   |    |
    layer 0   o-o-o-o-o-o-o-o-o-o-o-o    (every node, short links)

Every node lives on layers 0..level, with level drawn from an exponentially
decaying distribution. Search enters at the single top-level entry point,
walks greedily down to layer 1 and runs a best-first beam search of width
``ef`` on layer 0.

Invariants:
- every stored vector has the index dimension
- the index has exactly one entry point whenever it holds nodes
- neighbour lists reference existing nodes only (kept by delete's repair)

Not thread-safe: callers serialise writers (see HybridSearchEngine).

Usage:
    index = HNSWIndex(dimension=384, m=16, ef_construction=200, seed=42)
    index.insert("doc1_chunk_0", vector)
    hits = index.search(query_vector, k=10, ef=64)
"""

import heapq
import math
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import structlog

from hybridrag.config.settings import DistanceMetric, HNSWSettings
from hybridrag.exceptions import IndexCorruption, InvalidParameter
from hybridrag.storage.vectors.distance import (
    VectorLike,
    as_vector,
    distance,
    distances,
    prepare,
    resolve_metric,
    to_similarity,
)

log = structlog.get_logger()

# (distance, node_id); heap entries sort by distance, then id
Candidate = Tuple[float, str]


class IndexState(str, Enum):
    """Lifecycle of a vector index."""
    EMPTY = "empty"
    HAS_ENTRY_POINT = "has_entry_point"
    POPULATED = "populated"


@dataclass
class HNSWNode:
    """
    A node of the proximity graph.

    Attributes:
        id: External id (chunk id)
        vector: Stored vector (L2-normalised for cosine)
        level: Top layer of this node
        neighbors: One ``{neighbor_id: distance}`` dict per layer 0..level
    """
    id: str
    vector: np.ndarray = field(repr=False)
    level: int
    neighbors: List[Dict[str, float]] = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.neighbors:
            self.neighbors = [{} for _ in range(self.level + 1)]


@dataclass(frozen=True)
class VectorHit:
    """
    A vector search result.

    Attributes:
        id: Node id
        distance: Metric-native distance (lower is better)
        score: Similarity in [0, 1] (higher is better)
    """
    id: str
    distance: float
    score: float


class HNSWIndex:
    """
    Approximate nearest-neighbour index over a proximity graph.

    Attributes:
        dimension: Vector dimension, fixed at construction
        metric: Distance metric, fixed at construction
        m: Neighbour cap on layers >= 1
        m_max0: Neighbour cap on layer 0
        ef_construction: Candidate width while inserting
        ef_search: Default candidate width while searching
    """

    def __init__(
        self,
        dimension: int,
        metric: Union[str, DistanceMetric] = DistanceMetric.COSINE,
        m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 50,
        m_max0: Optional[int] = None,
        seed: Optional[int] = None,
    ):
        if dimension < 1:
            raise InvalidParameter("dimension", dimension, "must be a positive integer")
        if m < 2:
            raise InvalidParameter("m", m, "must be >= 2")
        if ef_construction < 1:
            raise InvalidParameter("ef_construction", ef_construction, "must be >= 1")
        if ef_search < 1:
            raise InvalidParameter("ef_search", ef_search, "must be >= 1")

        self.dimension = int(dimension)
        self.metric = resolve_metric(metric)
        self.m = int(m)
        self.m_max0 = int(m_max0) if m_max0 is not None else 2 * self.m
        if self.m_max0 < self.m:
            raise InvalidParameter("m_max0", self.m_max0, "must be >= m")
        self.ef_construction = int(ef_construction)
        self.ef_search = int(ef_search)
        self.seed = seed

        self._level_mult = 1.0 / math.log(self.m)
        self._rng = random.Random(seed)
        self._nodes: Dict[str, HNSWNode] = {}
        self._entry_point: Optional[str] = None
        self._max_level = -1

    @classmethod
    def from_settings(cls, dimension: int, settings: HNSWSettings) -> "HNSWIndex":
        """Build an empty index from HNSWSettings."""
        return cls(
            dimension=dimension,
            metric=settings.metric,
            m=settings.m,
            ef_construction=settings.ef_construction,
            ef_search=settings.ef_search,
            m_max0=settings.m_max0,
            seed=settings.seed,
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    @property
    def state(self) -> IndexState:
        if not self._nodes:
            return IndexState.EMPTY
        if len(self._nodes) == 1:
            return IndexState.HAS_ENTRY_POINT
        return IndexState.POPULATED

    @property
    def entry_point(self) -> Optional[str]:
        return self._entry_point

    @property
    def max_level(self) -> int:
        return self._max_level

    def ids(self) -> List[str]:
        return list(self._nodes)

    def get_vector(self, node_id: str) -> np.ndarray:
        """Return a copy of the stored (prepared) vector."""
        return self._nodes[node_id].vector.copy()

    def get_node(self, node_id: str) -> HNSWNode:
        return self._nodes[node_id]

    def stats(self) -> Dict[str, Any]:
        layer_sizes = [0] * (self._max_level + 1)
        links = 0
        for node in self._nodes.values():
            for layer, neighbors in enumerate(node.neighbors):
                layer_sizes[layer] += 1
                links += len(neighbors)
        return {
            "node_count": len(self._nodes),
            "dimension": self.dimension,
            "metric": self.metric.value,
            "state": self.state.value,
            "entry_point": self._entry_point,
            "max_level": self._max_level,
            "layer_sizes": layer_sizes,
            "links": links,
        }

    def check_integrity(self) -> None:
        """
        Verify the structural invariants.

        Raises:
            IndexCorruption: missing entry point or dangling links
        """
        if not self._nodes:
            if self._entry_point is not None:
                raise IndexCorruption("Empty index still references an entry point",
                                      {"entry_point": self._entry_point})
            return
        if self._entry_point is None or self._entry_point not in self._nodes:
            raise IndexCorruption("Entry point missing while nodes exist",
                                  {"entry_point": self._entry_point, "node_count": len(self._nodes)})
        for node in self._nodes.values():
            if node.vector.shape[0] != self.dimension:
                raise IndexCorruption("Stored vector has wrong dimension", {"node_id": node.id})
            for layer, neighbors in enumerate(node.neighbors):
                for neighbor_id in neighbors:
                    other = self._nodes.get(neighbor_id)
                    if other is None or other.level < layer:
                        raise IndexCorruption("Dangling link",
                                              {"node_id": node.id, "neighbor_id": neighbor_id, "layer": layer})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _random_level(self) -> int:
        # 1 - random() is in (0, 1], so the log stays finite
        return int(-math.log(1.0 - self._rng.random()) * self._level_mult)

    def _cap(self, layer: int) -> int:
        return self.m_max0 if layer == 0 else self.m

    def _prepare(self, vector: VectorLike) -> np.ndarray:
        return prepare(as_vector(vector, self.dimension), self.metric)

    def _distance_to(self, query: np.ndarray, node_id: str) -> float:
        return distance(query, self._nodes[node_id].vector, self.metric)

    def _distances_to(self, query: np.ndarray, node_ids: List[str]) -> np.ndarray:
        matrix = np.stack([self._nodes[node_id].vector for node_id in node_ids])
        return distances(matrix, query, self.metric)

    def _search_layer(
        self,
        query: np.ndarray,
        entry_points: Sequence[Candidate],
        ef: int,
        layer: int,
    ) -> List[Candidate]:
        """
        Best-first search on a single layer.

        ``candidates`` is a min-heap on distance (the frontier), ``results`` a
        max-heap (negated distances) holding the ``ef`` best nodes so far. The
        search stops when the nearest frontier node is farther than the worst
        kept result.

        Returns:
            Up to ``ef`` (distance, id) pairs sorted nearest first
        """
        visited = {node_id for _, node_id in entry_points}
        candidates: List[Candidate] = list(entry_points)
        heapq.heapify(candidates)
        results: List[Tuple[float, str]] = [(-dist, node_id) for dist, node_id in entry_points]
        heapq.heapify(results)
        while len(results) > ef:
            heapq.heappop(results)

        while candidates:
            dist, current = heapq.heappop(candidates)
            if len(results) >= ef and dist > -results[0][0]:
                break

            fresh = [n for n in self._nodes[current].neighbors[layer] if n not in visited]
            if not fresh:
                continue
            visited.update(fresh)

            for neighbor_id, neighbor_dist in zip(fresh, self._distances_to(query, fresh)):
                neighbor_dist = float(neighbor_dist)
                if len(results) < ef or neighbor_dist < -results[0][0]:
                    heapq.heappush(candidates, (neighbor_dist, neighbor_id))
                    heapq.heappush(results, (-neighbor_dist, neighbor_id))
                    if len(results) > ef:
                        heapq.heappop(results)

        return sorted((-neg_dist, node_id) for neg_dist, node_id in results)

    def _descend(self, query: np.ndarray, target_level: int) -> List[Candidate]:
        """Greedy walk (ef=1) from the entry point down to ``target_level`` + 1."""
        entry_id = self._entry_point
        entry = [(self._distance_to(query, entry_id), entry_id)]
        for layer in range(self._max_level, target_level, -1):
            entry = self._search_layer(query, entry, 1, layer)[:1]
        return entry

    def _shrink(self, node: HNSWNode, layer: int) -> None:
        """Keep only the nearest ``cap`` neighbours of ``node`` on ``layer``."""
        neighbors = node.neighbors[layer]
        cap = self._cap(layer)
        if len(neighbors) <= cap:
            return
        kept = heapq.nsmallest(cap, neighbors.items(), key=lambda item: (item[1], item[0]))
        node.neighbors[layer] = dict(kept)

    def _elect_entry_point(self) -> None:
        """Pick the highest-level remaining node as entry point."""
        if not self._nodes:
            self._entry_point = None
            self._max_level = -1
            return
        best = max(self._nodes.values(), key=lambda n: n.level)
        self._entry_point = best.id
        self._max_level = best.level

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(self, node_id: str, vector: VectorLike) -> None:
        """
        Insert a vector. An existing id is replaced (see ``update``).

        Raises:
            DimensionMismatch: vector length differs from the index dimension
            IndexCorruption: nodes exist but the entry point is missing
        """
        query = self._prepare(vector)
        if node_id in self._nodes:
            self.delete(node_id)

        level = self._random_level()
        node = HNSWNode(id=node_id, vector=query, level=level)

        if self._entry_point is None:
            if self._nodes:
                raise IndexCorruption("Entry point missing while nodes exist",
                                      {"node_count": len(self._nodes)})
            self._nodes[node_id] = node
            self._entry_point = node_id
            self._max_level = level
            return

        entry = self._descend(query, level)
        self._nodes[node_id] = node

        for layer in range(min(level, self._max_level), -1, -1):
            candidates = self._search_layer(query, entry, self.ef_construction, layer)
            for dist, neighbor_id in candidates[: self._cap(layer)]:
                node.neighbors[layer][neighbor_id] = dist
                neighbor = self._nodes[neighbor_id]
                neighbor.neighbors[layer][node_id] = dist
                self._shrink(neighbor, layer)
            entry = candidates

        if level > self._max_level:
            self._entry_point = node_id
            self._max_level = level

    def add_items(self, items: Iterable[Tuple[str, VectorLike]]) -> int:
        """Insert many ``(id, vector)`` pairs. Returns the number inserted."""
        count = 0
        for node_id, vector in items:
            self.insert(node_id, vector)
            count += 1
        return count

    def update(self, node_id: str, vector: VectorLike) -> None:
        """Replace the vector of ``node_id`` (inserting it if absent)."""
        query = self._prepare(vector)
        if node_id in self._nodes:
            self.delete(node_id)
        self.insert(node_id, query)

    def delete(self, node_id: str) -> bool:
        """
        Remove a node and repair the graph around it.

        Every node that linked to the removed one is offered the removed
        node's own neighbours as replacement links (nearest first, within
        the layer cap). A new entry point is elected if needed.

        Returns:
            False if the id was not in the index
        """
        node = self._nodes.pop(node_id, None)
        if node is None:
            return False

        for layer in range(node.level + 1):
            orphans = [n for n in node.neighbors[layer] if n in self._nodes]
            for other in self._nodes.values():
                if other.level < layer or node_id not in other.neighbors[layer]:
                    continue
                del other.neighbors[layer][node_id]
                replacements = [
                    n for n in orphans
                    if n != other.id and n not in other.neighbors[layer]
                ]
                if replacements:
                    for candidate_id, dist in zip(replacements, self._distances_to(other.vector, replacements)):
                        other.neighbors[layer][candidate_id] = float(dist)
                    self._shrink(other, layer)

        if node_id == self._entry_point:
            self._elect_entry_point()
            log.debug("HNSW entry point re-elected", removed=node_id, entry_point=self._entry_point)
        return True

    def clear(self) -> None:
        self._nodes.clear()
        self._entry_point = None
        self._max_level = -1

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query: VectorLike, k: int = 10, ef: Optional[int] = None) -> List[VectorHit]:
        """
        Approximate k-nearest-neighbour search.

        Args:
            query: Query vector
            k: Number of results
            ef: Candidate list width (default ``ef_search``); raised to ``k`` if smaller

        Returns:
            Up to ``k`` VectorHit sorted by (distance, id); [] on an empty index

        Raises:
            DimensionMismatch: query length differs from the index dimension
            InvalidParameter: k or ef < 1
            IndexCorruption: nodes exist without an entry point
        """
        if k < 1:
            raise InvalidParameter("k", k, "must be >= 1")
        if ef is not None and ef < 1:
            raise InvalidParameter("ef", ef, "must be >= 1")
        prepared = self._prepare(query)
        if not self._nodes:
            return []
        if self._entry_point is None or self._entry_point not in self._nodes:
            raise IndexCorruption("Entry point missing while nodes exist",
                                  {"entry_point": self._entry_point, "node_count": len(self._nodes)})

        width = max(ef or self.ef_search, k)
        entry = self._descend(prepared, 0)
        found = self._search_layer(prepared, entry, width, 0)[:k]
        return [
            VectorHit(id=node_id, distance=dist, score=to_similarity(dist, self.metric))
            for dist, node_id in found
        ]

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form: parameters, entry point and adjacency lists."""
        return {
            "dimension": self.dimension,
            "metric": self.metric.value,
            "m": self.m,
            "m_max0": self.m_max0,
            "ef_construction": self.ef_construction,
            "ef_search": self.ef_search,
            "entry_point": self._entry_point,
            "max_level": self._max_level,
            "nodes": [
                {
                    "id": node.id,
                    "level": node.level,
                    "vector": node.vector.tolist(),
                    "neighbors": [
                        [[neighbor_id, dist] for neighbor_id, dist in layer.items()]
                        for layer in node.neighbors
                    ],
                }
                for node in self._nodes.values()
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], seed: Optional[int] = None) -> "HNSWIndex":
        """
        Rebuild an index from ``to_dict`` output.

        Raises:
            IndexCorruption: the restored graph breaks an invariant
        """
        index = cls(
            dimension=data["dimension"],
            metric=data["metric"],
            m=data["m"],
            ef_construction=data["ef_construction"],
            ef_search=data["ef_search"],
            m_max0=data.get("m_max0"),
            seed=seed,
        )
        for raw in data.get("nodes", []):
            node = HNSWNode(
                id=raw["id"],
                vector=as_vector(raw["vector"], index.dimension),
                level=int(raw["level"]),
                neighbors=[
                    {str(neighbor_id): float(dist) for neighbor_id, dist in layer}
                    for layer in raw["neighbors"]
                ],
            )
            if len(node.neighbors) != node.level + 1:
                raise IndexCorruption("Neighbour layers do not match node level", {"node_id": node.id})
            index._nodes[node.id] = node
        index._entry_point = data.get("entry_point")
        index._max_level = int(data.get("max_level", -1))
        index.check_integrity()
        return index
