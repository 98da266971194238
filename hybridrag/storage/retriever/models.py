"""
FusionEngine Models
===================

Dataclasses for fusion configuration and fused results, plus the score
normalisation helpers.
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Union

from hybridrag.config.settings import FusionMethod, FusionSettings
from hybridrag.exceptions import InvalidParameter


@dataclass
class FusionConfig:
    """
    Configuration for FusionEngine.

    Attributes:
        alpha: Weight of the vector side [0-1]
               0.0 = lexical only, 1.0 = vector only
               Default: 0.5
        over_retrieve_factor: Each side is queried for limit * factor hits
                              Default: 3
        method: "minmax" (normalise and blend) or "rrf" (reciprocal rank)
        rrf_k: Rank offset for reciprocal rank fusion
               Default: 60
    """
    alpha: float = 0.5
    over_retrieve_factor: int = 3
    method: Union[str, FusionMethod] = FusionMethod.MINMAX
    rrf_k: int = 60

    def __post_init__(self):
        """Validate configuration values."""
        if not 0 <= self.alpha <= 1:
            raise InvalidParameter("alpha", self.alpha, "must be in [0, 1]")
        if self.over_retrieve_factor < 1:
            raise InvalidParameter("over_retrieve_factor", self.over_retrieve_factor, "must be >= 1")
        if self.rrf_k < 1:
            raise InvalidParameter("rrf_k", self.rrf_k, "must be >= 1")
        try:
            self.method = FusionMethod(self.method)
        except ValueError:
            raise InvalidParameter("method", self.method, "expected 'minmax' or 'rrf'") from None

    @classmethod
    def from_settings(cls, settings: FusionSettings) -> "FusionConfig":
        return cls(
            alpha=settings.alpha,
            over_retrieve_factor=settings.over_retrieve_factor,
            method=settings.method,
            rrf_k=settings.rrf_k,
        )


@dataclass
class FusedHit:
    """
    Result of hybrid fusion.

    Attributes:
        id: Result id (document id when a resolver is configured)
        score: Fused score, higher is better
        lexical_score: Normalised lexical score [0-1] (0 if absent)
        vector_score: Normalised vector score [0-1] (0 if absent)
        lexical_raw: Raw BM25 score, None if the lexical side missed it
        vector_raw: Raw vector similarity, None if the vector side missed it
        lexical_rank: 1-based rank on the lexical side
        vector_rank: 1-based rank on the vector side
    """
    id: str
    score: float
    lexical_score: float = 0.0
    vector_score: float = 0.0
    lexical_raw: Optional[float] = None
    vector_raw: Optional[float] = None
    lexical_rank: Optional[int] = None
    vector_rank: Optional[int] = None

    def component_scores(self) -> Dict[str, Optional[float]]:
        return {
            "lexical": self.lexical_score,
            "vector": self.vector_score,
            "lexical_raw": self.lexical_raw,
            "vector_raw": self.vector_raw,
        }

    def __repr__(self) -> str:
        return (
            f"<FusedHit(id={self.id}, score={self.score:.3f}, "
            f"lex={self.lexical_score:.3f}, vec={self.vector_score:.3f})>"
        )


def min_max_normalize(scores: Mapping[str, float]) -> Dict[str, float]:
    """
    Rescale scores to [0, 1].

    An empty mapping gives {}; when every score is equal (including a single
    score) every entry maps to 1.0.
    """
    if not scores:
        return {}
    low = min(scores.values())
    high = max(scores.values())
    if high - low <= 0:
        return {key: 1.0 for key in scores}
    span = high - low
    return {key: (value - low) / span for key, value in scores.items()}


def ranks(ordered_ids: List[str]) -> Dict[str, int]:
    """1-based rank of each id in an already sorted list."""
    return {item_id: position for position, item_id in enumerate(ordered_ids, start=1)}
