"""
Test HybridSearchEngine
=======================

End-to-end tests of the engine facade:
- Lexical-only engine (no provider)
- Hybrid / vector / graph queries with a deterministic provider
- Incremental updates, removal and full sync
- Failure isolation, query-time degradation and corruption recovery
- Snapshot save / load and provider changes
"""

import asyncio
import json

import pytest
import pytest_asyncio

from hybridrag.config.settings import ChunkingSettings
from hybridrag.core import HybridSearchEngine, SearchOptions, create_engine, make_snippet
from hybridrag.exceptions import (
    InvalidParameter,
    ProviderError,
    ProviderUnavailable,
    SearchFailed,
)
from hybridrag.models import Document
from hybridrag.pipeline import SemanticChunker, TextChunker
from hybridrag.storage.vectors.embeddings import HashingEmbeddingProvider


class FlakyProvider(HashingEmbeddingProvider):
    """Fails to embed any passage containing 'boom'."""

    async def generate_embeddings(self, texts, is_query=False):
        if any("boom" in text for text in texts):
            raise ProviderError(self.name, "backend timeout")
        return await super().generate_embeddings(texts, is_query=is_query)


class QueryOutageProvider(HashingEmbeddingProvider):
    """Embeds passages but fails on queries."""

    async def generate_embeddings(self, texts, is_query=False):
        if is_query:
            raise ProviderError(self.name, "query endpoint down")
        return await super().generate_embeddings(texts, is_query=is_query)


class OfflineProvider(HashingEmbeddingProvider):
    async def generate_embeddings(self, texts, is_query=False):
        raise ProviderUnavailable(self.name, "set an API key")


class GatedProvider(HashingEmbeddingProvider):
    """Embeds ``allowed`` passage batches, then blocks until ``release`` is set."""

    def __init__(self, dimension, allowed=0):
        super().__init__(dimension=dimension)
        self.allowed = allowed
        self.waiting = asyncio.Event()
        self.release = asyncio.Event()

    async def generate_embeddings(self, texts, is_query=False):
        if not is_query:
            if self.allowed <= 0:
                self.waiting.set()
                await self.release.wait()
            self.allowed -= 1
        return await super().generate_embeddings(texts, is_query=is_query)


@pytest.fixture
def engine(hashing_provider, fast_settings):
    return HybridSearchEngine(provider=hashing_provider, settings=fast_settings)


@pytest_asyncio.fixture
async def populated_engine(engine, notes):
    await engine.add_documents(notes)
    return engine


def ids(results):
    return [result.id for result in results]


# ==============================================================================
# Lexical-only engine
# ==============================================================================

class TestLexicalOnlyEngine:
    """Test an engine without embedding provider"""

    @pytest.mark.asyncio
    async def test_pet_ranking(self, pet_documents):
        """"cat pets" ranks D1, then D2 and D3 by id"""
        engine = HybridSearchEngine()
        await engine.add_documents(pet_documents)

        results = await engine.search("cat pets")

        assert ids(results) == ["D1", "D2", "D3"]
        assert results[0].score == pytest.approx(0.5)
        assert results[0].snippet == "the cat sat on the mat"

    @pytest.mark.asyncio
    async def test_status(self, pet_documents):
        engine = HybridSearchEngine()
        await engine.add_documents(pet_documents)

        status = engine.status()

        assert status.lexical_only is True
        assert status.documents == 3
        assert status.vector is None
        assert status.graph is None
        assert status.lexical["document_count"] == 3
        assert status.last_sync is not None

    @pytest.mark.asyncio
    async def test_vector_and_graph_modes_need_provider(self, pet_documents):
        engine = HybridSearchEngine()
        await engine.add_documents(pet_documents)

        with pytest.raises(ProviderUnavailable):
            await engine.search("cat", SearchOptions(mode="vector"))
        with pytest.raises(ProviderUnavailable):
            await engine.search("cat", SearchOptions(mode="graph"))

    @pytest.mark.asyncio
    async def test_empty_engine(self):
        assert await HybridSearchEngine().search("anything") == []


# ==============================================================================
# Queries with a provider
# ==============================================================================

class TestHybridQueries:
    """Test hybrid, lexical, vector and graph modes"""

    @pytest.mark.asyncio
    async def test_add_documents_report(self, engine, notes):
        report = await engine.add_documents(notes)

        status = engine.status()
        assert report.indexed == 4
        assert report.ok
        assert report.chunks == status.chunks
        assert status.vector["node_count"] == status.chunks
        assert status.graph["nodes"] == status.chunks
        assert status.provider == {"name": "hashing", "dimension": 64}

    @pytest.mark.asyncio
    async def test_hybrid_finds_topic(self, populated_engine):
        results = await populated_engine.search("sourdough starter")

        assert results[0].id == "n-bread"
        assert results[0].title == "Sourdough bread"
        assert "sourdough" in results[0].snippet.lower()
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_vector_mode(self, populated_engine):
        results = await populated_engine.search("tomato garden sun", SearchOptions(mode="vector", limit=2))

        assert results[0].id == "n-garden"
        assert len(results) <= 2

    @pytest.mark.asyncio
    async def test_graph_mode(self, populated_engine):
        results = await populated_engine.search(
            "asyncio coroutines", SearchOptions(mode="graph", include_component_scores=True)
        )

        assert results[0].id == "n-python"
        assert len(set(ids(results))) == len(results)
        assert set(results[0].component_scores) == {"similarity", "walk", "chunk_id"}

    @pytest.mark.asyncio
    async def test_component_scores(self, populated_engine):
        results = await populated_engine.search("sourdough", SearchOptions(include_component_scores=True))
        assert {"lexical", "vector"} <= set(results[0].component_scores)

        plain = await populated_engine.search("sourdough")
        assert plain[0].component_scores is None

    @pytest.mark.asyncio
    async def test_alpha_zero_matches_lexical_mode(self, populated_engine):
        lexical = await populated_engine.search("asyncio vector search", SearchOptions(mode="lexical"))
        hybrid = await populated_engine.search("asyncio vector search", SearchOptions(alpha=0.0))

        assert ids(hybrid)[: len(lexical)] == ids(lexical)

    @pytest.mark.asyncio
    async def test_limit(self, populated_engine):
        assert len(await populated_engine.search("the", SearchOptions(limit=1, mode="vector"))) == 1

    @pytest.mark.asyncio
    async def test_blank_query(self, populated_engine):
        assert await populated_engine.search("   ") == []

    def test_invalid_options(self):
        with pytest.raises(InvalidParameter):
            SearchOptions(alpha=1.5)
        with pytest.raises(InvalidParameter):
            SearchOptions(mode="fuzzy")
        with pytest.raises(InvalidParameter):
            SearchOptions(limit=0)
        with pytest.raises(InvalidParameter):
            SearchOptions(edge_type="citation")


# ==============================================================================
# Updates
# ==============================================================================

class TestIndexUpdates:
    """Test add / update / remove / sync"""

    @pytest.mark.asyncio
    async def test_remove_document(self, populated_engine):
        chunks_before = populated_engine.status().chunks

        assert await populated_engine.remove_document("n-bread") is True

        status = populated_engine.status()
        assert status.documents == 3
        assert status.chunks < chunks_before
        assert status.vector["node_count"] == status.chunks
        assert "n-bread" not in ids(await populated_engine.search("sourdough starter"))
        assert await populated_engine.remove_document("n-bread") is False
        populated_engine.bundle.vector_index.check_integrity()

    @pytest.mark.asyncio
    async def test_update_replaces_document(self, populated_engine):
        await populated_engine.add_document("n-bread", "Rye", "A dense rye loaf with caraway seeds.")

        assert populated_engine.document_count == 4
        assert populated_engine.get_document("n-bread").title == "Rye"
        assert await populated_engine.search("sourdough", SearchOptions(mode="lexical")) == []
        assert ids(await populated_engine.search("caraway", SearchOptions(mode="lexical"))) == ["n-bread"]
        assert populated_engine.status().vector["node_count"] == populated_engine.status().chunks

    @pytest.mark.asyncio
    async def test_sync_all_replaces_everything(self, populated_engine, notes):
        report = await populated_engine.sync_all(notes[:2])

        assert report.indexed == 2
        assert report.removed == 2
        assert populated_engine.document_count == 2
        assert populated_engine.get_document("n-bread") is None
        status = populated_engine.status()
        assert status.graph["nodes"] == status.chunks

    @pytest.mark.asyncio
    async def test_sync_all_accepts_dicts(self, engine):
        report = await engine.sync_all([{"id": "x", "title": "X", "text": "plain dict document"}])
        assert report.indexed == 1
        assert engine.get_document("x").text == "plain dict document"

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, fast_settings, notes):
        engine = HybridSearchEngine(provider=FlakyProvider(dimension=64), settings=fast_settings)
        documents = notes + [Document(id="bad", title="Bad", text="this one goes boom")]

        report = await engine.add_documents(documents)

        assert report.indexed == 4
        assert [f.doc_id for f in report.failures] == ["bad"]
        assert report.failures[0].retryable is True
        assert engine.get_document("bad") is None
        assert (await engine.search("sourdough"))[0].id == "n-bread"

    @pytest.mark.asyncio
    async def test_provider_unavailable_aborts(self, fast_settings, notes):
        engine = HybridSearchEngine(provider=OfflineProvider(dimension=64), settings=fast_settings)

        with pytest.raises(ProviderUnavailable):
            await engine.add_documents(notes)
        with pytest.raises(ProviderUnavailable):
            await engine.sync_all(notes)
        assert engine.document_count == 0

    @pytest.mark.asyncio
    async def test_set_embedding_provider(self, populated_engine):
        report = await populated_engine.set_embedding_provider(HashingEmbeddingProvider(dimension=32))

        status = populated_engine.status()
        assert report.indexed == 4
        assert status.vector["dimension"] == 32
        assert status.provider["dimension"] == 32
        assert (await populated_engine.search("sourdough starter bread", SearchOptions(mode="vector")))[0].id == "n-bread"

    @pytest.mark.asyncio
    async def test_drop_provider(self, populated_engine):
        await populated_engine.set_embedding_provider(None)

        assert populated_engine.status().lexical_only
        assert populated_engine.status().vector is None
        assert (await populated_engine.search("sourdough"))[0].id == "n-bread"

    @pytest.mark.asyncio
    async def test_semantic_chunking_follows_provider(self, fast_settings, notes):
        """strategy "semantic" needs the provider, so the chunker is rebuilt on every switch"""
        settings = fast_settings.model_copy(update={
            "chunking": ChunkingSettings(strategy="semantic", chunk_size=120, overlap=20),
        })
        engine = HybridSearchEngine(provider=HashingEmbeddingProvider(dimension=64), settings=settings)
        assert isinstance(engine.chunker, SemanticChunker)

        report = await engine.add_documents(notes)
        assert report.indexed == 4
        assert (await engine.search("sourdough starter bread", SearchOptions(mode="vector")))[0].id == "n-bread"

        await engine.set_embedding_provider(None)
        assert isinstance(engine.chunker, TextChunker)
        assert engine.pipeline.chunker is engine.chunker

        replacement = HashingEmbeddingProvider(dimension=32)
        await engine.set_embedding_provider(replacement)
        assert isinstance(engine.chunker, SemanticChunker)
        assert engine.chunker.provider is replacement
        assert (await engine.search("sourdough"))[0].id == "n-bread"

    @pytest.mark.asyncio
    async def test_search_during_provider_switch(self, populated_engine):
        """Queries keep using the old provider and bundle until the switch completes"""
        provider = GatedProvider(dimension=32, allowed=1)
        switch = asyncio.create_task(populated_engine.set_embedding_provider(provider))
        await provider.waiting.wait()

        results = await populated_engine.search("asyncio coroutines")
        assert results[0].id == "n-python"
        assert await populated_engine.search("asyncio coroutines", SearchOptions(mode="vector"))
        assert populated_engine.status().provider["dimension"] == 64
        assert not switch.done()

        provider.release.set()
        report = await switch

        assert report.indexed == 4
        assert populated_engine.provider is provider
        assert populated_engine.status().vector["dimension"] == 32
        results = await populated_engine.search("sourdough starter bread", SearchOptions(mode="vector"))
        assert results[0].id == "n-bread"

    @pytest.mark.asyncio
    async def test_cancelled_sync_keeps_old_bundle(self, fast_settings, notes):
        provider = GatedProvider(dimension=64, allowed=1)
        engine = HybridSearchEngine(provider=provider, settings=fast_settings)
        await engine.add_documents(notes[:1])

        task = asyncio.create_task(engine.sync_all(notes[1:]))
        await provider.waiting.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert list(engine.bundle.documents) == ["n-python"]
        assert sorted(engine.bundle.vector_index.ids()) == sorted(engine.bundle.chunks)
        assert (await engine.search("asyncio"))[0].id == "n-python"

    @pytest.mark.asyncio
    async def test_cancelled_batch_commits_whole_documents(self, fast_settings, notes):
        provider = GatedProvider(dimension=64, allowed=2)
        engine = HybridSearchEngine(provider=provider, settings=fast_settings)

        task = asyncio.create_task(engine.add_documents(notes))
        await provider.waiting.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        bundle = engine.bundle
        assert list(bundle.documents) == [notes[0].id, notes[1].id]
        assert sorted(bundle.vector_index.ids()) == sorted(bundle.chunks)
        assert {chunk.source_doc_id for chunk in bundle.chunks.values()} == {notes[0].id, notes[1].id}
        bundle.vector_index.check_integrity()

        provider.release.set()
        report = await engine.add_documents(notes[2:])
        assert report.indexed == 2
        assert engine.document_count == 4

    @pytest.mark.asyncio
    async def test_concurrent_writes_and_reads(self, engine, notes):
        await engine.add_documents(notes[:2])

        _, results = await asyncio.gather(
            engine.add_documents(notes[2:]),
            engine.search("asyncio"),
        )

        assert results[0].id == "n-python"
        assert engine.document_count == 4


# ==============================================================================
# Failure handling
# ==============================================================================

class TestFailureHandling:
    """Test degradation and recovery"""

    @pytest.mark.asyncio
    async def test_query_embedding_failure_degrades_to_lexical(self, fast_settings, notes):
        engine = HybridSearchEngine(provider=QueryOutageProvider(dimension=64), settings=fast_settings)
        await engine.add_documents(notes)

        results = await engine.search("sourdough starter", SearchOptions(include_component_scores=True))

        assert results[0].id == "n-bread"
        assert all(r.component_scores["vector_raw"] is None for r in results)

    @pytest.mark.asyncio
    async def test_misconfigured_provider_is_not_hidden(self, populated_engine, monkeypatch):
        """A missing API key surfaces in hybrid mode instead of degrading to lexical"""
        offline = OfflineProvider(dimension=64)
        monkeypatch.setattr(populated_engine, "provider", offline)

        with pytest.raises(ProviderUnavailable) as exc_info:
            await populated_engine.search("sourdough starter")
        assert "API key" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_query_embedding_failure_in_vector_mode(self, fast_settings, notes):
        engine = HybridSearchEngine(provider=QueryOutageProvider(dimension=64), settings=fast_settings)
        await engine.add_documents(notes)

        with pytest.raises(ProviderError):
            await engine.search("sourdough", SearchOptions(mode="vector"))

    @pytest.mark.asyncio
    async def test_corrupted_vector_index_is_rebuilt(self, populated_engine):
        chunks = populated_engine.status().chunks
        populated_engine.bundle.vector_index._entry_point = None

        results = await populated_engine.search("sourdough starter")

        assert results[0].id == "n-bread"
        populated_engine.bundle.vector_index.check_integrity()
        assert len(populated_engine.bundle.vector_index) == chunks
        assert populated_engine.bundle.graph.vector_index is populated_engine.bundle.vector_index

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_search_failed(self, populated_engine, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(populated_engine.bundle.fusion, "search", explode)

        with pytest.raises(SearchFailed) as exc_info:
            await populated_engine.search("sourdough")
        assert isinstance(exc_info.value.__cause__, RuntimeError)


# ==============================================================================
# Snapshots
# ==============================================================================

class TestSnapshots:
    """Test save / load"""

    @pytest.mark.asyncio
    async def test_round_trip(self, populated_engine, hashing_provider, fast_settings, tmp_path):
        path = tmp_path / "index.json"
        checksum = populated_engine.save_snapshot(path)

        restored = HybridSearchEngine(provider=hashing_provider, settings=fast_settings)
        assert await restored.load_snapshot(path) is True

        assert len(checksum) == 64
        assert restored.status().documents == 4
        assert restored.status().chunks == populated_engine.status().chunks
        assert restored.status().graph["edges"] == populated_engine.status().graph["edges"]
        for query in ("sourdough starter", "vector search recall"):
            expected = await populated_engine.search(query)
            actual = await restored.search(query)
            assert ids(actual) == ids(expected)
            assert [r.score for r in actual] == pytest.approx([r.score for r in expected])

    @pytest.mark.asyncio
    async def test_tampered_snapshot_rebuilds(self, populated_engine, hashing_provider, fast_settings,
                                              notes, tmp_path):
        path = tmp_path / "index.json"
        populated_engine.save_snapshot(path)
        document = json.loads(path.read_text(encoding="utf-8"))
        document["payload"]["documents"][0]["title"] = "tampered"
        path.write_text(json.dumps(document), encoding="utf-8")

        restored = HybridSearchEngine(provider=hashing_provider, settings=fast_settings)
        assert await restored.load_snapshot(path, documents=notes) is False

        assert restored.document_count == 4
        assert restored.get_document(notes[0].id).title == notes[0].title
        assert (await restored.search("sourdough"))[0].id == "n-bread"

    @pytest.mark.asyncio
    async def test_missing_snapshot_without_documents(self, engine, tmp_path):
        assert await engine.load_snapshot(tmp_path / "absent.json") is False
        assert engine.document_count == 0

    @pytest.mark.asyncio
    async def test_provider_change_reembeds(self, populated_engine, fast_settings, tmp_path):
        path = tmp_path / "index.json"
        populated_engine.save_snapshot(path)

        other = HybridSearchEngine(provider=HashingEmbeddingProvider(dimension=32), settings=fast_settings)
        assert await other.load_snapshot(path) is False

        status = other.status()
        assert status.documents == 4
        assert status.vector["dimension"] == 32
        assert status.vector["node_count"] == status.chunks

    @pytest.mark.asyncio
    async def test_lexical_only_round_trip(self, pet_documents, tmp_path):
        engine = HybridSearchEngine()
        await engine.add_documents(pet_documents)
        path = tmp_path / "lexical.json"
        engine.save_snapshot(path)

        restored = HybridSearchEngine()
        assert await restored.load_snapshot(path) is True
        assert ids(await restored.search("cat pets")) == ["D1", "D2", "D3"]


# ==============================================================================
# Helpers
# ==============================================================================

class TestHelpers:
    """Test create_engine and make_snippet"""

    def test_create_engine_from_settings(self, fast_settings):
        engine = create_engine(settings=fast_settings)
        assert isinstance(engine.provider, HashingEmbeddingProvider)
        assert engine.provider.dimension == 64

    def test_create_engine_from_yaml(self, tmp_path):
        path = tmp_path / "lexical.yaml"
        path.write_text("embedding:\n  provider: none\n", encoding="utf-8")
        engine = create_engine(config_path=path)
        assert engine.provider is None
        assert engine.status().lexical_only

    def test_snippet_short_text(self):
        assert make_snippet("short   text", ["text"], length=50) == "short text"

    def test_snippet_centres_on_term(self):
        text = "filler " * 60 + "needle in the haystack " + "filler " * 60
        snippet = make_snippet(text, ["needle"], length=80)

        assert "needle" in snippet
        assert snippet.startswith("...")
        assert snippet.endswith("...")

    def test_snippet_without_match(self):
        text = "alpha " * 100
        assert make_snippet(text, ["zeta"], length=30).startswith("alpha")
