"""
GraphRetriever
==============

Relevance propagation over a chunk graph (random walk with restart).

Graph:
    nodes  = chunks (with their embeddings)
    edges  = sequential (adjacent chunks of one document, weight 1.0)
           + semantic   (similarity >= threshold, weight = similarity)

Both edge types are stored symmetrically: an edge can be walked both ways.

Query algorithm:
1. Similarity between the query and every node (or only the
   ``candidate_pool`` nearest nodes, via the vector index)
2. Similarities become restart weights (uniform if all are zero)
3. Random walk of ``steps`` transitions: with probability ``restart_prob``
   jump to a seed sampled by restart weight, otherwise move to a neighbour
   sampled by edge weight; a node without neighbours restarts
4. visits / steps = visit frequency (frequencies sum to 1)
5. final_score = walk_weight * freq / max_freq + (1 - walk_weight) * similarity

Usage:
    graph = GraphRetriever(dimension=384, vector_index=hnsw, seed=42)
    for chunk in chunks:
        graph.add_node(chunk)
    graph.build_sequential_edges()
    graph.build_semantic_edges(threshold=0.7, k=10)
    ranked = graph.query(query_embedding, top_k=5)
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import structlog

from hybridrag.config.settings import DistanceMetric
from hybridrag.exceptions import IndexCorruption, InvalidParameter, NodeNotFound
from hybridrag.models import Chunk
from hybridrag.storage.graph.models import EdgeType, GraphEdge, RankedNode, resolve_edge_type
from hybridrag.storage.vectors.distance import (
    VectorLike,
    as_vector,
    distances,
    prepare,
    resolve_metric,
    to_similarity,
)
from hybridrag.storage.vectors.hnsw import HNSWIndex

log = structlog.get_logger()


def _check_unit_interval(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise InvalidParameter(name, value, "must be in [0, 1]")


class GraphRetriever:
    """
    Chunk graph with random-walk-with-restart ranking.

    Attributes:
        dimension: Embedding dimension of the nodes
        metric: Similarity metric (should match the vector index)
        vector_index: Optional HNSW index used for semantic edges and candidate pools
    """

    def __init__(
        self,
        dimension: int,
        vector_index: Optional[HNSWIndex] = None,
        metric: Union[str, DistanceMetric] = DistanceMetric.COSINE,
        seed: Optional[int] = None,
    ):
        if dimension < 1:
            raise InvalidParameter("dimension", dimension, "must be a positive integer")
        self.dimension = dimension
        self.metric = resolve_metric(metric)
        self.vector_index = vector_index
        self.seed = seed
        self._rng = np.random.default_rng(seed)

        self._nodes: Dict[str, Chunk] = {}
        self._vectors: Dict[str, np.ndarray] = {}
        self._adjacency: Dict[str, Dict[EdgeType, Dict[str, float]]] = {}
        # (threshold, k) of the last semantic build, reused by remove_document
        self._semantic_params: Optional[Tuple[float, int]] = None

    # ------------------------------------------------------------------
    # Nodes and edges
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def nodes(self) -> List[Chunk]:
        return list(self._nodes.values())

    def get_node(self, node_id: str) -> Chunk:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NodeNotFound(node_id) from None

    def add_node(self, chunk: Chunk) -> None:
        """
        Add (or replace) a chunk node. Replacing keeps existing edges.

        Raises:
            DimensionMismatch: the chunk embedding has the wrong length
        """
        if chunk.embedding is not None:
            self._vectors[chunk.id] = prepare(as_vector(chunk.embedding, self.dimension), self.metric)
        else:
            self._vectors.pop(chunk.id, None)
        self._nodes[chunk.id] = chunk
        self._adjacency.setdefault(chunk.id, {})

    def remove_node(self, node_id: str) -> bool:
        """Remove a node and every incident edge. False if unknown."""
        if node_id not in self._nodes:
            return False
        for edge_type, neighbors in self._adjacency.pop(node_id, {}).items():
            for other in neighbors:
                other_links = self._adjacency.get(other, {}).get(edge_type)
                if other_links is not None:
                    other_links.pop(node_id, None)
        del self._nodes[node_id]
        self._vectors.pop(node_id, None)
        return True

    def add_edge(
        self,
        source: str,
        target: str,
        edge_type: Union[str, EdgeType] = EdgeType.SEMANTIC,
        weight: float = 1.0,
    ) -> GraphEdge:
        """
        Add (or re-weight) an undirected edge.

        Raises:
            NodeNotFound: an endpoint is not in the graph
            InvalidParameter: weight outside (0, 1] or self-loop
        """
        for node_id in (source, target):
            if node_id not in self._nodes:
                raise NodeNotFound(node_id)
        if source == target:
            raise InvalidParameter("target", target, "self-loops are not allowed")
        if not 0.0 < weight <= 1.0:
            raise InvalidParameter("weight", weight, "must be in (0, 1]")
        kind = resolve_edge_type(edge_type)
        self._adjacency[source].setdefault(kind, {})[target] = float(weight)
        self._adjacency[target].setdefault(kind, {})[source] = float(weight)
        return GraphEdge(source=source, target=target, type=kind, weight=float(weight))

    def neighbors(self, node_id: str, edge_type: Optional[Union[str, EdgeType]] = None) -> Dict[str, float]:
        """
        ``{neighbor_id: weight}`` of a node.

        With ``edge_type=None`` all edge types are merged (max weight wins).
        """
        if node_id not in self._nodes:
            raise NodeNotFound(node_id)
        kind = resolve_edge_type(edge_type)
        links = self._adjacency.get(node_id, {})
        if kind is not None:
            return dict(links.get(kind, {}))
        merged: Dict[str, float] = {}
        for neighbors in links.values():
            for other, weight in neighbors.items():
                merged[other] = max(weight, merged.get(other, 0.0))
        return merged

    def edges(self, edge_type: Optional[Union[str, EdgeType]] = None) -> List[GraphEdge]:
        """Every edge once, as (source < target), sorted."""
        kind = resolve_edge_type(edge_type)
        result = []
        for source, links in self._adjacency.items():
            for link_type, neighbors in links.items():
                if kind is not None and link_type != kind:
                    continue
                for target, weight in neighbors.items():
                    if source < target:
                        result.append(GraphEdge(source=source, target=target, type=link_type, weight=weight))
        result.sort(key=lambda e: (e.type.value, e.source, e.target))
        return result

    def edge_count(self, edge_type: Optional[Union[str, EdgeType]] = None) -> int:
        return len(self.edges(edge_type))

    def clear(self) -> None:
        self._nodes.clear()
        self._vectors.clear()
        self._adjacency.clear()
        self._semantic_params = None

    def clear_edges(self, edge_type: Optional[Union[str, EdgeType]] = None) -> None:
        kind = resolve_edge_type(edge_type)
        for links in self._adjacency.values():
            if kind is None:
                links.clear()
            else:
                links.pop(kind, None)

    # ------------------------------------------------------------------
    # Graph construction
    # ------------------------------------------------------------------

    def build_sequential_edges(self) -> int:
        """
        Link chunks with consecutive ``chunk_index`` of the same document.

        Returns:
            Number of edges created
        """
        by_document: Dict[str, List[Chunk]] = {}
        for chunk in self._nodes.values():
            by_document.setdefault(chunk.source_doc_id, []).append(chunk)

        created = 0
        for chunks in by_document.values():
            chunks.sort(key=lambda c: c.metadata.chunk_index)
            for previous, current in zip(chunks, chunks[1:]):
                if current.metadata.chunk_index - previous.metadata.chunk_index == 1:
                    self.add_edge(previous.id, current.id, EdgeType.SEQUENTIAL, 1.0)
                    created += 1
        log.debug("Sequential edges built", edges=created, documents=len(by_document))
        return created

    def build_semantic_edges(
        self,
        threshold: float = 0.7,
        k: int = 10,
        node_ids: Optional[Iterable[str]] = None,
    ) -> int:
        """
        Link each node to its similar neighbours.

        With a vector index, each node queries its ``k`` nearest neighbours;
        without one, every pair of nodes is compared. An edge is created when
        similarity >= threshold and similarity > 0.

        Args:
            threshold: Minimum similarity in [0, 1]
            k: Neighbours inspected per node (vector index path only)
            node_ids: Restrict the build to these nodes (default: all nodes)

        Returns:
            Number of edges created or re-weighted
        """
        _check_unit_interval("threshold", threshold)
        if k < 1:
            raise InvalidParameter("k", k, "must be >= 1")
        self._semantic_params = (threshold, k)

        sources = [n for n in (node_ids if node_ids is not None else self._nodes) if n in self._vectors]
        if not sources:
            return 0

        if self.vector_index is not None and len(self.vector_index) > 0:
            created = self._semantic_edges_from_index(sources, threshold, k)
        else:
            created = self._semantic_edges_pairwise(sources, threshold)
        log.debug("Semantic edges built", edges=created, sources=len(sources), threshold=threshold)
        return created

    def _link_if_similar(self, source: str, target: str, sim: float, threshold: float) -> bool:
        if source == target or target not in self._nodes:
            return False
        if sim >= threshold and sim > 0.0:
            self.add_edge(source, target, EdgeType.SEMANTIC, min(1.0, sim))
            return True
        return False

    def _semantic_edges_from_index(self, sources: Sequence[str], threshold: float, k: int) -> int:
        created = 0
        for source in sources:
            for hit in self.vector_index.search(self._vectors[source], k=k + 1):
                if self._link_if_similar(source, hit.id, hit.score, threshold):
                    created += 1
        return created

    def _semantic_edges_pairwise(self, sources: Sequence[str], threshold: float) -> int:
        ids = list(self._vectors)
        matrix = np.stack([self._vectors[i] for i in ids])
        created = 0
        for source in sources:
            dists = distances(matrix, self._vectors[source], self.metric)
            for target, dist in zip(ids, dists):
                if self._link_if_similar(source, target, to_similarity(float(dist), self.metric), threshold):
                    created += 1
        return created

    def remove_document(self, doc_id: str) -> int:
        """
        Remove every node of a document and rebuild the semantic edges of
        the nodes that were linked to it.

        Returns:
            Number of nodes removed
        """
        removed = [node_id for node_id, chunk in self._nodes.items() if chunk.source_doc_id == doc_id]
        if not removed:
            return 0
        removed_set = set(removed)
        affected = set()
        for node_id in removed:
            affected.update(self._adjacency.get(node_id, {}).get(EdgeType.SEMANTIC, {}))
        affected -= removed_set

        for node_id in removed:
            self.remove_node(node_id)

        if affected and self._semantic_params is not None:
            threshold, k = self._semantic_params
            self.build_semantic_edges(threshold=threshold, k=k, node_ids=sorted(affected))
        log.debug("Graph document removed", doc_id=doc_id, nodes=len(removed), affected=len(affected))
        return len(removed)

    # ------------------------------------------------------------------
    # Random walk
    # ------------------------------------------------------------------

    def random_walk(
        self,
        restart_weights: Dict[str, float],
        steps: int = 1000,
        restart_prob: float = 0.15,
        edge_type: Optional[Union[str, EdgeType]] = EdgeType.SEMANTIC,
    ) -> Dict[str, float]:
        """
        Random walk with restart.

        Args:
            restart_weights: ``{node_id: weight >= 0}``; seeds are sampled
                proportionally (uniformly if every weight is zero)
            steps: Number of transitions
            restart_prob: Probability of jumping back to a seed at each step
            edge_type: Edge type to follow (None = any)

        Returns:
            ``{node_id: visit frequency}``, frequencies sum to 1
        """
        _check_unit_interval("restart_prob", restart_prob)
        if steps < 1:
            raise InvalidParameter("steps", steps, "must be >= 1")
        kind = resolve_edge_type(edge_type)

        seeds = [node_id for node_id in restart_weights if node_id in self._nodes]
        if not seeds:
            return {}
        weights = np.array([max(0.0, float(restart_weights[s])) for s in seeds], dtype=np.float64)
        total = weights.sum()
        seed_p = weights / total if total > 0 else np.full(len(seeds), 1.0 / len(seeds))

        transitions: Dict[str, Tuple[List[str], Optional[np.ndarray]]] = {}

        def step_from(node_id: str) -> Optional[str]:
            if node_id not in transitions:
                links = self.neighbors(node_id, kind)
                if links:
                    targets = sorted(links)
                    p = np.array([links[t] for t in targets], dtype=np.float64)
                    transitions[node_id] = (targets, p / p.sum())
                else:
                    transitions[node_id] = ([], None)
            targets, p = transitions[node_id]
            if not targets:
                return None
            return targets[int(self._rng.choice(len(targets), p=p))]

        def restart() -> str:
            return seeds[int(self._rng.choice(len(seeds), p=seed_p))]

        counts: Dict[str, int] = {}
        current = restart()
        for _ in range(steps):
            if self._rng.random() < restart_prob:
                current = restart()
            else:
                moved = step_from(current)
                current = moved if moved is not None else restart()
            counts[current] = counts.get(current, 0) + 1

        return {node_id: count / steps for node_id, count in counts.items()}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _similarities(self, query: np.ndarray, node_ids: Sequence[str]) -> Dict[str, float]:
        with_vectors = [n for n in node_ids if n in self._vectors]
        sims = {n: 0.0 for n in node_ids}
        if with_vectors:
            matrix = np.stack([self._vectors[n] for n in with_vectors])
            for node_id, dist in zip(with_vectors, distances(matrix, query, self.metric)):
                sims[node_id] = to_similarity(float(dist), self.metric)
        return sims

    def _rank(
        self,
        frequencies: Dict[str, float],
        similarities: Dict[str, float],
        walk_weight: float,
        top_k: int,
    ) -> List[RankedNode]:
        max_freq = max(frequencies.values(), default=0.0)
        ranked = []
        for node_id in set(frequencies) | set(similarities):
            visits = frequencies.get(node_id, 0.0)
            walk_score = visits / max_freq if max_freq > 0 else 0.0
            sim = similarities.get(node_id, 0.0)
            ranked.append(RankedNode(
                id=node_id,
                score=walk_weight * walk_score + (1.0 - walk_weight) * sim,
                similarity=sim,
                walk_score=walk_score,
                visits=visits,
                chunk=self._nodes[node_id],
            ))
        ranked.sort(key=lambda r: (-r.score, r.id))
        return ranked[:top_k]

    def query(
        self,
        query_embedding: VectorLike,
        top_k: int = 10,
        steps: int = 1000,
        restart_prob: float = 0.15,
        edge_type: Optional[Union[str, EdgeType]] = EdgeType.SEMANTIC,
        candidate_pool: Optional[int] = None,
        walk_weight: float = 0.5,
    ) -> List[RankedNode]:
        """
        Rank chunks for a query embedding.

        Args:
            query_embedding: Query vector
            top_k: Number of results
            steps: Random walk transitions
            restart_prob: Restart probability in [0, 1]
            edge_type: Edge type to walk ("semantic", "sequential", None = any)
            candidate_pool: Seed the walk from the N nearest nodes only
                (vector index required, otherwise all nodes are used)
            walk_weight: Share of the final score taken from the walk, in [0, 1]

        Returns:
            Up to ``top_k`` RankedNode sorted by (-score, id); [] on an empty graph
        """
        _check_unit_interval("restart_prob", restart_prob)
        _check_unit_interval("walk_weight", walk_weight)
        if top_k < 1:
            raise InvalidParameter("top_k", top_k, "must be >= 1")
        if candidate_pool is not None and candidate_pool < 1:
            raise InvalidParameter("candidate_pool", candidate_pool, "must be >= 1")
        query = prepare(as_vector(query_embedding, self.dimension), self.metric)
        if not self._nodes:
            return []

        if candidate_pool is not None and self.vector_index is not None and len(self.vector_index) > 0:
            # hits for chunks no longer in the graph are skipped
            seeds = {
                hit.id: hit.score
                for hit in self.vector_index.search(query, k=candidate_pool)
                if hit.id in self._nodes
            }
            if not seeds:
                seeds = self._similarities(query, list(self._nodes))
        else:
            seeds = self._similarities(query, list(self._nodes))

        frequencies = self.random_walk(seeds, steps=steps, restart_prob=restart_prob, edge_type=edge_type)
        similarities = dict(seeds)
        unseen = [n for n in frequencies if n not in similarities]
        if unseen:
            similarities.update(self._similarities(query, unseen))

        ranked = self._rank(frequencies, similarities, walk_weight, top_k)
        log.debug("Graph query", nodes=len(self._nodes), seeds=len(seeds), visited=len(frequencies),
                  returned=len(ranked))
        return ranked

    def query_from_seeds(
        self,
        seed_ids: Iterable[str],
        top_k: int = 10,
        steps: int = 1000,
        restart_prob: float = 0.15,
        edge_type: Optional[Union[str, EdgeType]] = EdgeType.SEMANTIC,
    ) -> List[RankedNode]:
        """
        Rank chunks by walking from known nodes (uniform restart weights).

        Scores are the scaled visit frequencies.

        Raises:
            NodeNotFound: a seed is not in the graph
        """
        seeds = list(dict.fromkeys(seed_ids))
        for node_id in seeds:
            if node_id not in self._nodes:
                raise NodeNotFound(node_id)
        if top_k < 1:
            raise InvalidParameter("top_k", top_k, "must be >= 1")
        if not seeds:
            return []
        frequencies = self.random_walk(
            {node_id: 1.0 for node_id in seeds},
            steps=steps,
            restart_prob=restart_prob,
            edge_type=edge_type,
        )
        return self._rank(frequencies, {}, 1.0, top_k)

    # ------------------------------------------------------------------
    # Status / snapshot
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        return {
            "nodes": len(self._nodes),
            "edges": {kind.value: self.edge_count(kind) for kind in EdgeType},
        }

    def to_dict(self) -> Dict[str, Any]:
        """Edge lists and build parameters. Nodes are restored from chunks."""
        return {
            "dimension": self.dimension,
            "metric": self.metric.value,
            "semantic_params": list(self._semantic_params) if self._semantic_params else None,
            "edges": [edge.to_dict() for edge in self.edges()],
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        chunks: Iterable[Chunk],
        vector_index: Optional[HNSWIndex] = None,
        seed: Optional[int] = None,
    ) -> "GraphRetriever":
        """
        Rebuild a graph from ``to_dict`` output and its chunks.

        Raises:
            IndexCorruption: an edge references a chunk that is not provided
        """
        graph = cls(dimension=data["dimension"], vector_index=vector_index, metric=data["metric"], seed=seed)
        for chunk in chunks:
            graph.add_node(chunk)
        for raw in data.get("edges", []):
            try:
                graph.add_edge(raw["source"], raw["target"], raw["type"], raw["weight"])
            except NodeNotFound as e:
                raise IndexCorruption("Graph edge references a missing node", {"edge": raw}) from e
        params = data.get("semantic_params")
        graph._semantic_params = (float(params[0]), int(params[1])) if params else None
        return graph
