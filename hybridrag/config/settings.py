"""
Retrieval Settings
==================

Pydantic models for every tunable parameter of the retrieval core.

Values come from YAML (``defaults.yaml`` or a user file, see
``hybridrag.config.loader``) and can be overridden at runtime. Range checks
live here so a bad config file fails at load time, not at query time.

Example:
    >>> settings = RetrievalSettings()
    >>> settings.hnsw.m
    16
    >>> settings.fusion.alpha
    0.5
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class DistanceMetric(str, Enum):
    """Distance metrics supported by the vector index."""
    COSINE = "cosine"
    EUCLIDEAN = "euclidean"


class FusionMethod(str, Enum):
    """Score fusion strategies."""
    MINMAX = "minmax"
    RRF = "rrf"


class HNSWSettings(BaseModel):
    """
    Parameters of the HNSW vector index.

    Attributes:
        m: Neighbour cap per node on layers >= 1
        m_max0: Neighbour cap on layer 0 (None -> 2 * m)
        ef_construction: Candidate list width while inserting
        ef_search: Default candidate list width while searching
        metric: Distance metric, fixed for the lifetime of an index
        seed: Seed for level sampling (None -> non-deterministic)
    """
    m: int = Field(default=16, ge=2, le=128)
    m_max0: Optional[int] = Field(default=None, ge=2)
    ef_construction: int = Field(default=200, ge=1)
    ef_search: int = Field(default=50, ge=1)
    metric: DistanceMetric = DistanceMetric.COSINE
    seed: Optional[int] = None


class BM25Settings(BaseModel):
    """BM25 constants and tokenizer switches."""
    k1: float = Field(default=1.2, ge=0.0)
    b: float = Field(default=0.75, ge=0.0, le=1.0)
    remove_stopwords: bool = True
    min_token_length: int = Field(default=1, ge=1)


class FusionSettings(BaseModel):
    """
    Hybrid fusion parameters.

    Attributes:
        alpha: 0.0 = lexical only, 1.0 = vector only
        over_retrieve_factor: Each side is queried for limit * factor hits
        method: "minmax" (normalise + blend) or "rrf" (reciprocal rank)
        rrf_k: Rank offset for reciprocal rank fusion
    """
    alpha: float = Field(default=0.5, ge=0.0, le=1.0)
    over_retrieve_factor: int = Field(default=3, ge=1, le=20)
    method: FusionMethod = FusionMethod.MINMAX
    rrf_k: int = Field(default=60, ge=1)


class GraphSettings(BaseModel):
    """
    Graph construction and random-walk parameters.

    Attributes:
        semantic_threshold: Minimum similarity for a semantic edge
        semantic_k: Nearest neighbours inspected per node for semantic edges
        walk_steps: Total transitions of the random walk
        restart_prob: Probability of jumping back to a seed at each step
        walk_weight: Share of the final score taken from visit frequency
        edge_type: Edge type followed by the walk (None = all types)
        candidate_pool: Restrict seeds to the N nearest nodes (None = all nodes)
        seed: Seed for the walk RNG
    """
    semantic_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    semantic_k: int = Field(default=10, ge=1)
    walk_steps: int = Field(default=1000, ge=1)
    restart_prob: float = Field(default=0.15, ge=0.0, le=1.0)
    walk_weight: float = Field(default=0.5, ge=0.0, le=1.0)
    edge_type: Optional[str] = "semantic"
    candidate_pool: Optional[int] = Field(default=None, ge=1)
    seed: Optional[int] = None

    @field_validator("edge_type")
    @classmethod
    def known_edge_type(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in ("semantic", "sequential"):
            raise ValueError(f"edge_type must be 'semantic', 'sequential' or null, got {v!r}")
        return v


class ChunkingStrategy(str, Enum):
    """How documents are split into chunks."""
    WINDOW = "window"
    SEMANTIC = "semantic"


class ChunkingSettings(BaseModel):
    """
    Chunking parameters.

    Attributes:
        strategy: "window" (overlapping character windows) or "semantic"
            (sentences grouped by embedding similarity; needs a provider)
        chunk_size: Maximum chunk length in characters
        overlap: Characters shared by consecutive windows ("window" only)
        similarity_threshold: Base similarity to keep a sentence in the current chunk
        threshold_lower_bound: Floor of the variance-adjusted threshold
        threshold_upper_bound: Ceiling of the variance-adjusted threshold
        lookahead: Following sentences averaged into each sentence similarity
        combine_chunks: Merge adjacent similar chunks that fit in chunk_size
        combine_threshold: Minimum similarity for that merge
    """
    strategy: ChunkingStrategy = ChunkingStrategy.WINDOW
    chunk_size: int = Field(default=500, ge=50)
    overlap: int = Field(default=50, ge=0)
    similarity_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    threshold_lower_bound: float = Field(default=0.4, ge=0.0, le=1.0)
    threshold_upper_bound: float = Field(default=0.8, ge=0.0, le=1.0)
    lookahead: int = Field(default=3, ge=1)
    combine_chunks: bool = True
    combine_threshold: float = Field(default=0.5, ge=0.0, le=1.0)

    @field_validator("overlap")
    @classmethod
    def overlap_smaller_than_chunk(cls, v: int, info) -> int:
        if "chunk_size" in info.data and v >= info.data["chunk_size"]:
            raise ValueError("overlap must be smaller than chunk_size")
        return v

    @field_validator("threshold_upper_bound")
    @classmethod
    def bounds_ordered(cls, v: float, info) -> float:
        if "threshold_lower_bound" in info.data and v < info.data["threshold_lower_bound"]:
            raise ValueError("threshold_upper_bound must be >= threshold_lower_bound")
        return v


class EmbeddingSettings(BaseModel):
    """
    Embedding provider selection.

    Attributes:
        provider: "hashing", "sentence-transformers", "http" or "none"
        model_name: Model for sentence-transformers / remote API
        dimension: Output dimension (hashing provider, remote API)
        batch_size: Texts per provider call
        cache_size: LRU cache entries (0 disables caching)
        use_prefixes: Prepend E5-style "query: " / "passage: " prefixes
        api_base: Base URL of an OpenAI-compatible embeddings API
        api_key_env: Environment variable holding the API key
        timeout_s: HTTP client timeout in seconds
    """
    provider: str = "hashing"
    model_name: str = "sentence-transformers/all-MiniLM-L6-v2"
    dimension: int = Field(default=384, ge=1)
    batch_size: int = Field(default=32, ge=1)
    cache_size: int = Field(default=500, ge=0)
    use_prefixes: bool = False
    api_base: str = "https://api.openai.com/v1"
    api_key_env: str = "HYBRIDRAG_API_KEY"
    timeout_s: float = Field(default=30.0, gt=0.0)

    @field_validator("provider")
    @classmethod
    def known_provider(cls, v: str) -> str:
        allowed = ("hashing", "sentence-transformers", "http", "none")
        if v not in allowed:
            raise ValueError(f"provider must be one of {allowed}, got {v!r}")
        return v


class RetrievalSettings(BaseModel):
    """Complete configuration of a retrieval engine."""
    version: str = "1.0"
    hnsw: HNSWSettings = Field(default_factory=HNSWSettings)
    bm25: BM25Settings = Field(default_factory=BM25Settings)
    fusion: FusionSettings = Field(default_factory=FusionSettings)
    graph: GraphSettings = Field(default_factory=GraphSettings)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    snippet_length: int = Field(default=200, ge=10)
