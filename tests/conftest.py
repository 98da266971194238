"""
hybridrag Test Configuration
============================

Shared fixtures for all tests.
"""

from typing import Dict, List

import numpy as np
import pytest

from hybridrag.config.settings import RetrievalSettings
from hybridrag.models import Chunk, ChunkMetadata, Document, chunk_id_for
from hybridrag.storage.vectors.embeddings import HashingEmbeddingProvider


def make_chunk(doc_id: str, index: int, vector, text: str = "", total: int = 1) -> Chunk:
    """Build an embedded chunk for graph / index tests."""
    return Chunk(
        id=chunk_id_for(doc_id, index),
        text=text or f"{doc_id} part {index}",
        metadata=ChunkMetadata(source_doc_id=doc_id, chunk_index=index, total_chunks=total),
        embedding=tuple(float(v) for v in vector),
    )


@pytest.fixture
def chunk_factory():
    """Factory building embedded chunks: chunk_factory(doc_id, index, vector)."""
    return make_chunk


# Sample data fixtures
@pytest.fixture
def pet_documents() -> List[Document]:
    """Three tiny documents with a known BM25 ranking for "cat pets"."""
    return [
        Document(id="D1", text="the cat sat on the mat"),
        Document(id="D2", text="dogs are great pets"),
        Document(id="D3", text="cats and dogs are both pets"),
    ]


@pytest.fixture
def notes() -> List[Document]:
    """A handful of notes on distinct topics."""
    return [
        Document(id="n-python", title="Python asyncio",
                 text="The asyncio event loop runs coroutines and schedules callbacks. "
                      "Use asyncio.gather to await several coroutines concurrently."),
        Document(id="n-garden", title="Tomato garden",
                 text="Tomato plants need full sun, regular watering and a stake. "
                      "Prune the suckers so the garden stays productive."),
        Document(id="n-bread", title="Sourdough bread",
                 text="A sourdough starter is flour and water fermented by wild yeast. "
                      "Feed the starter daily before baking bread."),
        Document(id="n-hnsw", title="HNSW vector search",
                 text="HNSW builds a layered proximity graph for approximate nearest neighbour "
                      "vector search. The ef parameter trades recall for latency."),
    ]


@pytest.fixture
def hashing_provider() -> HashingEmbeddingProvider:
    """Deterministic 64-dimensional provider."""
    return HashingEmbeddingProvider(dimension=64)


@pytest.fixture
def fast_settings() -> RetrievalSettings:
    """Settings with small, seeded indexes so tests stay quick and reproducible."""
    return RetrievalSettings.model_validate({
        "hnsw": {"m": 8, "ef_construction": 64, "ef_search": 32, "seed": 42},
        "graph": {"walk_steps": 300, "seed": 7, "semantic_threshold": 0.2},
        "chunking": {"chunk_size": 120, "overlap": 20},
        "embedding": {"provider": "hashing", "dimension": 64, "cache_size": 0},
    })


@pytest.fixture
def random_vectors() -> Dict[str, np.ndarray]:
    """200 seeded random 16-d vectors keyed v000..v199."""
    rng = np.random.default_rng(1234)
    return {f"v{i:03d}": rng.normal(size=16) for i in range(200)}
