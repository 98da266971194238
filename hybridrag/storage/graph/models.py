"""
Graph Retriever Models
======================

Edge types, edges and ranked results of the chunk graph.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from hybridrag.exceptions import InvalidParameter
from hybridrag.models import Chunk


class EdgeType(str, Enum):
    """Kinds of chunk relationships."""
    SEQUENTIAL = "sequential"  # adjacent chunks of the same document
    SEMANTIC = "semantic"      # embedding similarity above a threshold


def resolve_edge_type(edge_type: Optional[Any]) -> Optional[EdgeType]:
    """Parse an edge type name; None means "any type"."""
    if edge_type is None:
        return None
    try:
        return EdgeType(edge_type)
    except ValueError:
        raise InvalidParameter("edge_type", edge_type, "expected 'semantic', 'sequential' or None") from None


@dataclass(frozen=True)
class GraphEdge:
    """
    A weighted undirected edge.

    Attributes:
        source: Chunk id
        target: Chunk id
        type: Edge type
        weight: Transition weight in (0, 1]
    """
    source: str
    target: str
    type: EdgeType
    weight: float

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "target": self.target, "type": self.type.value, "weight": self.weight}


@dataclass
class RankedNode:
    """
    A chunk ranked by the graph retriever.

    Attributes:
        id: Chunk id
        score: Final score = walk_weight * walk_score + (1 - walk_weight) * similarity
        similarity: Query similarity in [0, 1]
        walk_score: Visit frequency scaled by the most visited node, in [0, 1]
        visits: Raw visit frequency (frequencies of all nodes sum to 1)
        chunk: The ranked chunk
    """
    id: str
    score: float
    similarity: float
    walk_score: float
    visits: float
    chunk: Optional[Chunk] = field(default=None, repr=False)

    @property
    def source_doc_id(self) -> Optional[str]:
        return self.chunk.source_doc_id if self.chunk is not None else None

    def __repr__(self) -> str:
        return (
            f"<RankedNode(id={self.id}, score={self.score:.3f}, "
            f"sim={self.similarity:.3f}, walk={self.walk_score:.3f})>"
        )
