"""
Engine Models
=============

Query options, results and reports exchanged with HybridSearchEngine.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from hybridrag.exceptions import InvalidParameter
from hybridrag.pipeline.ingestion import IngestionFailure


class SearchMode(str, Enum):
    """Ranking strategy used by a query."""
    HYBRID = "hybrid"    # BM25 + HNSW, fused by alpha
    LEXICAL = "lexical"  # BM25 only
    VECTOR = "vector"    # HNSW only
    GRAPH = "graph"      # random walk over the chunk graph


GRAPH_EDGE_TYPES = ("semantic", "sequential", "any")


@dataclass
class SearchOptions:
    """
    Options of a single query.

    Graph parameters left to None take their value from GraphSettings.

    Attributes:
        mode: hybrid | lexical | vector | graph
        alpha: Vector weight for hybrid mode [0-1] (None = configured alpha)
        limit: Maximum number of results
        ef: HNSW search width (None = configured ef_search)
        include_component_scores: Attach per-component scores to each result
        steps: Random walk transitions (graph mode)
        restart_prob: Random walk restart probability [0-1] (graph mode)
        edge_type: "semantic", "sequential" or "any" (graph mode)
        walk_weight: Share of the walk in the graph score [0-1] (graph mode)
        candidate_pool: Seed the walk from the N nearest chunks (graph mode)
    """
    mode: Union[str, SearchMode] = SearchMode.HYBRID
    alpha: Optional[float] = None
    limit: int = 10
    ef: Optional[int] = None
    include_component_scores: bool = False
    steps: Optional[int] = None
    restart_prob: Optional[float] = None
    edge_type: Optional[str] = None
    walk_weight: Optional[float] = None
    candidate_pool: Optional[int] = None

    def __post_init__(self):
        """Validate option values."""
        try:
            self.mode = SearchMode(self.mode)
        except ValueError:
            raise InvalidParameter("mode", self.mode, "expected hybrid, lexical, vector or graph") from None
        for name in ("alpha", "restart_prob", "walk_weight"):
            value = getattr(self, name)
            if value is not None and not 0 <= value <= 1:
                raise InvalidParameter(name, value, "must be in [0, 1]")
        if self.limit < 1:
            raise InvalidParameter("limit", self.limit, "must be >= 1")
        for name in ("ef", "steps", "candidate_pool"):
            value = getattr(self, name)
            if value is not None and value < 1:
                raise InvalidParameter(name, value, "must be >= 1")
        if self.edge_type is not None and self.edge_type not in GRAPH_EDGE_TYPES:
            raise InvalidParameter("edge_type", self.edge_type, f"expected one of {GRAPH_EDGE_TYPES}")


@dataclass
class SearchResult:
    """
    A ranked document.

    Attributes:
        id: Document id
        title: Document title
        snippet: Short excerpt around the first matching query term
        score: Relevance in [0, 1], higher is better
        component_scores: Per-component scores (when requested)
    """
    id: str
    title: str
    snippet: str
    score: float
    component_scores: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"id": self.id, "title": self.title, "snippet": self.snippet, "score": round(self.score, 6)}
        if self.component_scores is not None:
            data["component_scores"] = self.component_scores
        return data

    def __repr__(self) -> str:
        return f"<SearchResult(id={self.id}, score={self.score:.3f}, title={self.title[:30]!r})>"


@dataclass
class SyncReport:
    """
    Outcome of an ingestion call.

    Attributes:
        indexed: Documents added or updated
        chunks: Chunks stored for those documents
        removed: Documents removed
        failures: Documents skipped, with the reason
        duration_ms: Wall time of the call
    """
    indexed: int = 0
    chunks: int = 0
    removed: int = 0
    failures: List[IngestionFailure] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "indexed": self.indexed,
            "chunks": self.chunks,
            "removed": self.removed,
            "failed": self.failed,
            "failures": [f.to_dict() for f in self.failures],
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass
class IndexStatus:
    """Snapshot of the engine state, one section per component."""
    documents: int
    chunks: int
    vector: Optional[Dict[str, Any]]
    lexical: Dict[str, Any]
    graph: Optional[Dict[str, Any]]
    provider: Optional[Dict[str, Any]]
    last_sync: Optional[str] = None

    @property
    def lexical_only(self) -> bool:
        return self.provider is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documents": self.documents,
            "chunks": self.chunks,
            "vector": self.vector,
            "lexical": self.lexical,
            "graph": self.graph,
            "provider": self.provider,
            "last_sync": self.last_sync,
        }
