"""
FusionEngine
============

Hybrid retrieval blending BM25 (sparse) and HNSW (dense) results.

Core algorithm:
1. Lexical search and vector search, each over-retrieving
   limit * over_retrieve_factor hits
2. Vector hits (chunks) are collapsed to result ids through ``resolve_id``,
   keeping the best chunk per result
3. Min-max normalisation of each side to [0, 1]
4. Combine over the union: fused = (1 - alpha) * sparse + alpha * dense
   (a side that missed a result contributes 0)
5. Sort by fused score and truncate to ``limit``

Ties are broken by rank on the dominant side (lexical when alpha < 0.5,
vector otherwise), then by rank on the other side, then by id. With alpha=0
the order is exactly the lexical order and with alpha=1 exactly the vector
order.
"""

import math
from typing import Callable, Dict, List, Optional, Sequence

import structlog

from hybridrag.config.settings import FusionMethod
from hybridrag.exceptions import InvalidParameter
from hybridrag.storage.lexical.bm25 import BM25Index
from hybridrag.storage.retriever.models import FusedHit, FusionConfig, min_max_normalize, ranks
from hybridrag.storage.vectors.hnsw import HNSWIndex

log = structlog.get_logger()

IdResolver = Callable[[str], Optional[str]]


class FusionEngine:
    """
    Hybrid retriever combining lexical and vector rankings.

    Flow:
        Query text ------> BM25Index.search ----> sparse scores --+
                                                                  |-> normalise -> blend -> rank
        Query vector ----> HNSWIndex.search ----> dense scores ---+
                           (chunk ids -> resolve_id)

    Example:
        >>> engine = FusionEngine(hnsw, bm25, FusionConfig(alpha=0.5),
        ...                       resolve_id=lambda chunk_id: chunk_id.split("_chunk_")[0])
        >>> hits = engine.search("cat pets", query_embedding=vector, limit=5)
    """

    def __init__(
        self,
        vector_index: Optional[HNSWIndex],
        lexical_index: BM25Index,
        config: Optional[FusionConfig] = None,
        resolve_id: Optional[IdResolver] = None,
    ):
        """
        Initialize FusionEngine.

        Args:
            vector_index: HNSW index (None for a lexical-only engine)
            lexical_index: BM25 index
            config: Fusion configuration (default: alpha=0.5, minmax)
            resolve_id: Maps vector ids to result ids; returning None drops the hit
        """
        self.vector_index = vector_index
        self.lexical_index = lexical_index
        self.config = config or FusionConfig()
        self.resolve_id = resolve_id

        log.debug(
            "FusionEngine initialized",
            alpha=self.config.alpha,
            method=self.config.method.value,
            over_retrieve=self.config.over_retrieve_factor,
        )

    def _lexical_scores(self, query: str, headroom: int) -> Dict[str, float]:
        hits = self.lexical_index.search(query, limit=headroom)
        return {hit.doc_id: hit.score for hit in hits}

    def _vector_scores(self, query_embedding: Optional[Sequence[float]], headroom: int,
                       ef: Optional[int]) -> Dict[str, float]:
        if query_embedding is None or self.vector_index is None or len(self.vector_index) == 0:
            return {}
        hits = self.vector_index.search(query_embedding, k=headroom, ef=ef)
        scores: Dict[str, float] = {}
        for hit in hits:
            result_id = self.resolve_id(hit.id) if self.resolve_id else hit.id
            if result_id is None:
                continue
            # hits arrive nearest first: the first chunk of a result is its best
            if result_id not in scores:
                scores[result_id] = hit.score
        return scores

    def search(
        self,
        query: str,
        query_embedding: Optional[Sequence[float]] = None,
        alpha: Optional[float] = None,
        limit: int = 10,
        ef: Optional[int] = None,
    ) -> List[FusedHit]:
        """
        Hybrid search.

        Args:
            query: Query text for the lexical side
            query_embedding: Query vector for the dense side (None = lexical only)
            alpha: Override of the configured alpha, in [0, 1]
            limit: Number of results
            ef: HNSW search width override

        Returns:
            Up to ``limit`` FusedHit, best first

        Raises:
            InvalidParameter: alpha outside [0, 1] or limit < 1
            DimensionMismatch: query_embedding has the wrong length
        """
        alpha = self.config.alpha if alpha is None else alpha
        if not 0.0 <= alpha <= 1.0:
            raise InvalidParameter("alpha", alpha, "must be in [0, 1]")
        if limit < 1:
            raise InvalidParameter("limit", limit, "must be >= 1")
        headroom = limit * self.config.over_retrieve_factor

        lexical_raw = self._lexical_scores(query, headroom)
        vector_raw = self._vector_scores(query_embedding, headroom, ef)

        # both dicts keep the order of their index: (-score, id) and (distance, id)
        lexical_rank = ranks(list(lexical_raw))
        vector_rank = ranks(list(vector_raw))

        if self.config.method == FusionMethod.RRF:
            lexical_part = {i: 1.0 / (self.config.rrf_k + r) for i, r in lexical_rank.items()}
            vector_part = {i: 1.0 / (self.config.rrf_k + r) for i, r in vector_rank.items()}
        else:
            lexical_part = min_max_normalize(lexical_raw)
            vector_part = min_max_normalize(vector_raw)

        hits = []
        for result_id in set(lexical_raw) | set(vector_raw):
            lex = lexical_part.get(result_id, 0.0)
            vec = vector_part.get(result_id, 0.0)
            hits.append(FusedHit(
                id=result_id,
                score=(1.0 - alpha) * lex + alpha * vec,
                lexical_score=lex,
                vector_score=vec,
                lexical_raw=lexical_raw.get(result_id),
                vector_raw=vector_raw.get(result_id),
                lexical_rank=lexical_rank.get(result_id),
                vector_rank=vector_rank.get(result_id),
            ))

        vector_first = alpha >= 0.5

        def order(hit: FusedHit):
            lex_rank = hit.lexical_rank if hit.lexical_rank is not None else math.inf
            vec_rank = hit.vector_rank if hit.vector_rank is not None else math.inf
            primary, secondary = (vec_rank, lex_rank) if vector_first else (lex_rank, vec_rank)
            return (-hit.score, primary, secondary, hit.id)

        hits.sort(key=order)
        top = hits[:limit]
        log.debug(
            "Fusion search",
            alpha=alpha,
            lexical_hits=len(lexical_raw),
            vector_hits=len(vector_raw),
            returned=len(top),
        )
        return top
