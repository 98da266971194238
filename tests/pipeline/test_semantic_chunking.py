"""
Test Semantic Chunking
======================

Tests for:
- Sentence splitting, lookahead similarity and dynamic threshold
- Grouping by topic under the size cap
- Combine pass for adjacent similar chunks
- build_chunker selection from ChunkingSettings
"""

import numpy as np
import pytest

from hybridrag.config.settings import ChunkingSettings
from hybridrag.exceptions import InvalidParameter, ProviderError, ProviderUnavailable
from hybridrag.models import Document
from hybridrag.pipeline import IngestionPipeline, SemanticChunker, TextChunker, build_chunker, split_sentences
from hybridrag.pipeline.chunking import preprocess_text
from hybridrag.pipeline.semantic_chunking import dynamic_threshold, lookahead_similarities
from hybridrag.storage.vectors.embeddings import HashingEmbeddingProvider

CATS = [f"Cats purr nap stretch groom hunt {w}." for w in ("softly", "daily", "often")]
TRAINS = [f"Trains rails stations tickets carriages platforms {w}." for w in ("north", "south", "east")]


class CountingProvider(HashingEmbeddingProvider):
    """Records every batch it embeds."""

    def __init__(self, dimension=4096):
        super().__init__(dimension=dimension)
        self.calls = []

    async def generate_embeddings(self, texts, is_query=False):
        self.calls.append(list(texts))
        return await super().generate_embeddings(texts, is_query=is_query)


class OfflineProvider(HashingEmbeddingProvider):
    async def generate_embeddings(self, texts, is_query=False):
        raise ProviderUnavailable(self.name, "set an API key")


class DroppingProvider(HashingEmbeddingProvider):
    """Returns one vector less than requested."""

    async def generate_embeddings(self, texts, is_query=False):
        return (await super().generate_embeddings(texts, is_query))[:-1]


@pytest.fixture
def provider():
    return CountingProvider()


@pytest.fixture
def topics():
    return Document(id="topics", title="", text=" ".join(CATS + TRAINS))


class TestHelpers:
    """Test sentence splitting and similarity helpers"""

    def test_split_sentences_keeps_offsets(self):
        text = "One. Two! Three?  Four"
        sentences = split_sentences(text)
        assert [s.text for s in sentences] == ["One.", "Two!", "Three?", "Four"]
        assert all(text[s.start:s.end] == s.text for s in sentences)

    def test_split_blank(self):
        assert split_sentences("") == []

    def test_lookahead_is_truncated_at_the_end(self):
        embeddings = np.array([[1.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        assert lookahead_similarities(embeddings, 2) == pytest.approx([0.5, 0.0])

    def test_dynamic_threshold(self):
        assert dynamic_threshold([], 0.5, 0.4, 0.8) == 0.5
        # varianza 0.25 -> +0.125
        assert dynamic_threshold([0.0, 1.0], 0.5, 0.4, 0.8) == pytest.approx(0.625)
        assert dynamic_threshold([0.0, 1.0], 0.79, 0.4, 0.8) == pytest.approx(0.8)
        assert dynamic_threshold([0.3, 0.3], 0.1, 0.4, 0.8) == pytest.approx(0.4)


class TestSemanticChunker:
    """Test topic grouping"""

    @pytest.mark.asyncio
    async def test_groups_by_topic(self, provider, topics):
        chunks = await SemanticChunker(provider, lookahead=1).chunk(topics)

        assert [c.text for c in chunks] == [" ".join(CATS), " ".join(TRAINS)]
        assert [c.id for c in chunks] == ["topics_chunk_0", "topics_chunk_1"]
        assert all(c.metadata.total_chunks == 2 for c in chunks)
        assert chunks[1].metadata.start == len(" ".join(CATS)) + 1

    @pytest.mark.asyncio
    async def test_high_threshold_splits_every_sentence(self, provider, topics):
        chunker = SemanticChunker(provider, lookahead=1, threshold_lower_bound=0.95,
                                  threshold_upper_bound=0.95, combine_chunks=False)

        chunks = await chunker.chunk(topics)

        assert [c.text for c in chunks] == CATS + TRAINS

    @pytest.mark.asyncio
    async def test_combine_merges_similar_neighbours(self, provider, topics):
        """Con soglia alta ogni frase è un chunk; il combine pass riunisce i temi"""
        chunker = SemanticChunker(provider, lookahead=1, threshold_lower_bound=0.95,
                                  threshold_upper_bound=0.95, combine_chunks=True)

        chunks = await chunker.chunk(topics)

        assert [c.text for c in chunks] == [" ".join(CATS), " ".join(TRAINS)]
        # sentence embeddings, then one call for the six single-sentence groups
        assert [len(call) for call in provider.calls] == [6, 6]

    @pytest.mark.asyncio
    async def test_chunks_respect_size_cap(self, provider, topics):
        chunks = await SemanticChunker(provider, chunk_size=100, lookahead=1).chunk(topics)

        assert len(chunks) > 2
        assert all(len(c.text) <= 100 for c in chunks)

    @pytest.mark.asyncio
    async def test_oversize_sentence_is_split(self, provider):
        document = Document(id="long", text=" ".join(["retrieval"] * 60) + ".")
        text = preprocess_text(document.full_text)

        chunks = await SemanticChunker(provider, chunk_size=100).chunk(document)

        assert len(chunks) >= 6
        assert all(len(c.text) <= 100 for c in chunks)
        assert all(text[c.metadata.start:c.metadata.end] == c.text for c in chunks)

    @pytest.mark.asyncio
    async def test_single_sentence_needs_no_embeddings(self):
        chunks = await SemanticChunker(OfflineProvider(dimension=8)).chunk(
            Document(id="one", title="Note", text="just one sentence here")
        )

        assert len(chunks) == 1
        assert chunks[0].text == "Note just one sentence here"

    @pytest.mark.asyncio
    async def test_empty_document(self, provider):
        assert await SemanticChunker(provider).chunk(Document(id="empty")) == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_provider_errors_propagate(self, topics):
        with pytest.raises(ProviderUnavailable):
            await SemanticChunker(OfflineProvider(dimension=8)).chunk(topics)
        with pytest.raises(ProviderError):
            await SemanticChunker(DroppingProvider(dimension=8)).chunk(topics)

    @pytest.mark.asyncio
    async def test_batches_follow_provider_limit(self, topics):
        provider = CountingProvider()
        provider._batch_size = 4

        await SemanticChunker(provider, lookahead=1, combine_chunks=False).chunk(topics)

        assert [len(call) for call in provider.calls] == [4, 2]

    def test_invalid_parameters(self, provider):
        with pytest.raises(InvalidParameter):
            SemanticChunker(None)
        with pytest.raises(InvalidParameter):
            SemanticChunker(provider, lookahead=0)
        with pytest.raises(InvalidParameter):
            SemanticChunker(provider, threshold_lower_bound=0.9, threshold_upper_bound=0.5)
        with pytest.raises(InvalidParameter):
            SemanticChunker(provider, combine_threshold=1.5)


class TestPipelineIntegration:
    """Test semantic chunks flowing through ingestion"""

    @pytest.mark.asyncio
    async def test_semantic_chunks_are_embedded(self, provider, topics):
        pipeline = IngestionPipeline(provider, SemanticChunker(provider, lookahead=1))

        prepared, failures = await pipeline.prepare_all([topics])

        assert failures == []
        assert [len(p.chunks) for p in prepared] == [2]
        assert all(len(c.embedding) == 4096 for c in prepared[0].chunks)

    @pytest.mark.asyncio
    async def test_chunking_failure_is_isolated(self, topics):
        pipeline = IngestionPipeline(DroppingProvider(dimension=8), SemanticChunker(DroppingProvider(dimension=8)))

        prepared, failures = await pipeline.prepare_all([topics])

        assert prepared == []
        assert [f.doc_id for f in failures] == ["topics"]


class TestBuildChunker:
    """Test chunker selection"""

    def test_window_is_default(self, provider):
        chunker = build_chunker(ChunkingSettings(), provider)
        assert isinstance(chunker, TextChunker)
        assert chunker.overlap == 50

    def test_semantic_with_provider(self, provider):
        settings = ChunkingSettings(strategy="semantic", chunk_size=300, lookahead=2, combine_chunks=False)

        chunker = build_chunker(settings, provider)

        assert isinstance(chunker, SemanticChunker)
        assert chunker.provider is provider
        assert chunker.chunk_size == 300
        assert chunker.lookahead == 2
        assert chunker.combine_chunks is False

    def test_semantic_without_provider_falls_back(self):
        chunker = build_chunker(ChunkingSettings(strategy="semantic"), None)
        assert isinstance(chunker, TextChunker)
