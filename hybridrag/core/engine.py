"""
HybridSearchEngine
==================

Facade over the retrieval core: ingestion, queries, status and snapshots.

Every engine is an explicit instance owning its indexes and its embedding
provider, so several independent engines can live in one process.

Index bundle:
    documents + chunks
        |-> BM25Index        (one entry per document, title + text)
        |-> HNSWIndex        (one node per chunk, only with a provider)
        |-> GraphRetriever   (one node per chunk, only with a provider)

Concurrency:
    Writers are serialised by an asyncio.Lock. Embedding is the only await;
    index mutations run without awaits, so a query on the same event loop
    never sees a half-applied change. ``sync_all`` builds a new bundle and
    swaps it in at the end: a failed or cancelled sync leaves the previous
    bundle serving.

Usage:
    engine = create_engine()
    await engine.add_document("n1", "Cats", "The cat sat on the mat")
    results = await engine.search("cat", SearchOptions(alpha=0.5, limit=5))
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import structlog

from hybridrag.config.loader import SettingsStore
from hybridrag.config.settings import RetrievalSettings
from hybridrag.core.models import IndexStatus, SearchMode, SearchOptions, SearchResult, SyncReport
from hybridrag.exceptions import (
    DimensionMismatch,
    IndexCorruption,
    InvalidParameter,
    ProviderError,
    ProviderUnavailable,
    SearchFailed,
    SnapshotError,
)
from hybridrag.models import Chunk, Document
from hybridrag.pipeline.semantic_chunking import build_chunker
from hybridrag.pipeline.ingestion import IngestionPipeline, PreparedDocument
from hybridrag.storage.graph.models import EdgeType
from hybridrag.storage.graph.retriever import GraphRetriever
from hybridrag.storage.lexical.bm25 import BM25Index
from hybridrag.storage.retriever.hybrid import FusionEngine
from hybridrag.storage.retriever.models import FusionConfig
from hybridrag.storage.snapshot import read_snapshot, write_snapshot
from hybridrag.storage.vectors.embeddings import EmbeddingProvider, build_embedding_provider
from hybridrag.storage.vectors.hnsw import HNSWIndex

log = structlog.get_logger()

DocumentLike = Union[Document, Dict[str, Any]]


def _as_document(item: DocumentLike) -> Document:
    if isinstance(item, Document):
        return item
    return Document.from_dict(item)


def make_snippet(text: str, terms: Sequence[str], length: int = 200) -> str:
    """
    Excerpt of ``text`` around the first occurrence of any of ``terms``.

    Falls back to the beginning of the text when no term occurs.
    """
    text = " ".join(text.split())
    if len(text) <= length:
        return text
    lowered = text.lower()
    positions = [p for p in (lowered.find(t) for t in terms if t) if p >= 0]
    start = max(0, min(positions) - length // 4) if positions else 0
    start = min(start, len(text) - length)
    snippet = text[start:start + length].strip()
    prefix = "..." if start > 0 else ""
    suffix = "..." if start + length < len(text) else ""
    return f"{prefix}{snippet}{suffix}"


@dataclass
class IndexBundle:
    """
    Every index of an engine, mutated together.

    Attributes:
        settings: Settings used to build the indexes
        lexical_index: BM25 over whole documents
        vector_index: HNSW over chunk embeddings (None without a provider)
        graph: Chunk graph (None without a provider)
    """
    settings: RetrievalSettings
    lexical_index: BM25Index
    vector_index: Optional[HNSWIndex] = None
    graph: Optional[GraphRetriever] = None
    documents: Dict[str, Document] = field(default_factory=dict)
    chunks: Dict[str, Chunk] = field(default_factory=dict)
    doc_chunks: Dict[str, List[str]] = field(default_factory=dict)
    fusion: Optional[FusionEngine] = field(default=None, repr=False)

    def __post_init__(self):
        self.fusion = FusionEngine(
            self.vector_index,
            self.lexical_index,
            FusionConfig.from_settings(self.settings.fusion),
            resolve_id=self.resolve_chunk,
        )

    @classmethod
    def empty(cls, settings: RetrievalSettings, dimension: Optional[int]) -> "IndexBundle":
        """New bundle; vector index and graph only when ``dimension`` is known."""
        vector_index = None
        graph = None
        if dimension is not None:
            vector_index = HNSWIndex.from_settings(dimension, settings.hnsw)
            graph = GraphRetriever(
                dimension=dimension,
                vector_index=vector_index,
                metric=settings.hnsw.metric,
                seed=settings.graph.seed,
            )
        return cls(
            settings=settings,
            lexical_index=BM25Index.from_settings(settings.bm25),
            vector_index=vector_index,
            graph=graph,
        )

    def resolve_chunk(self, chunk_id: str) -> Optional[str]:
        chunk = self.chunks.get(chunk_id)
        return chunk.source_doc_id if chunk is not None else None

    def commit(self, prepared: PreparedDocument, link_semantic: bool = True) -> None:
        """Index a prepared document in every index (replacing an older version)."""
        document = prepared.document
        if document.id in self.documents:
            self.remove(document.id)

        self.documents[document.id] = document
        self.lexical_index.index(document.id, document.full_text)
        self.doc_chunks[document.id] = [chunk.id for chunk in prepared.chunks]
        for chunk in prepared.chunks:
            self.chunks[chunk.id] = chunk

        if self.vector_index is None or self.graph is None:
            return
        embedded = [chunk for chunk in prepared.chunks if chunk.embedding is not None]
        for chunk in embedded:
            self.vector_index.insert(chunk.id, chunk.embedding)
            self.graph.add_node(chunk)
        for previous, current in zip(embedded, embedded[1:]):
            self.graph.add_edge(previous.id, current.id, EdgeType.SEQUENTIAL, 1.0)
        if link_semantic and embedded:
            self.graph.build_semantic_edges(
                threshold=self.settings.graph.semantic_threshold,
                k=self.settings.graph.semantic_k,
                node_ids=[chunk.id for chunk in embedded],
            )

    def link_all(self) -> None:
        """Build every graph edge from scratch (after a bulk load)."""
        if self.graph is None:
            return
        self.graph.clear_edges()
        self.graph.build_sequential_edges()
        self.graph.build_semantic_edges(
            threshold=self.settings.graph.semantic_threshold,
            k=self.settings.graph.semantic_k,
        )

    def remove(self, doc_id: str) -> bool:
        if self.documents.pop(doc_id, None) is None:
            return False
        self.lexical_index.remove_doc(doc_id)
        for chunk_id in self.doc_chunks.pop(doc_id, []):
            self.chunks.pop(chunk_id, None)
            if self.vector_index is not None:
                self.vector_index.delete(chunk_id)
        if self.graph is not None:
            self.graph.remove_document(doc_id)
        return True

    def rebuild_vector_index(self) -> None:
        """Recreate the HNSW index from the stored chunk embeddings."""
        if self.vector_index is None:
            return
        fresh = HNSWIndex.from_settings(self.vector_index.dimension, self.settings.hnsw)
        fresh.add_items(
            (chunk.id, chunk.embedding) for chunk in self.chunks.values() if chunk.embedding is not None
        )
        self.vector_index = fresh
        self.fusion.vector_index = fresh
        if self.graph is not None:
            self.graph.vector_index = fresh
        log.info("Vector index rebuilt", nodes=len(fresh))


class HybridSearchEngine:
    """
    Hybrid retrieval engine.

    With ``provider=None`` the engine is lexical-only: documents are indexed
    in BM25, hybrid queries reduce to the lexical ranking, and vector / graph
    queries raise ProviderUnavailable.

    Example:
        >>> engine = HybridSearchEngine(provider=HashingEmbeddingProvider(64))
        >>> await engine.add_documents([Document("D1", text="the cat sat on the mat")])
        >>> await engine.search("cat")
    """

    def __init__(
        self,
        provider: Optional[EmbeddingProvider] = None,
        settings: Optional[RetrievalSettings] = None,
    ):
        """
        Initialize HybridSearchEngine.

        Args:
            provider: Embedding provider (None = lexical-only engine)
            settings: Retrieval settings (default: built-in defaults)
        """
        self.settings = settings or RetrievalSettings()
        self.provider = provider
        self.chunker = build_chunker(self.settings.chunking, provider)
        self.pipeline = IngestionPipeline(provider, self.chunker)
        self._lock = asyncio.Lock()
        self._bundle = self._new_bundle()
        self._last_sync: Optional[datetime] = None

        log.info(
            "HybridSearchEngine initialized",
            provider=provider.name if provider else None,
            alpha=self.settings.fusion.alpha,
            metric=self.settings.hnsw.metric.value,
        )

    def _new_bundle(self) -> IndexBundle:
        dimension = self.provider.dimension if self.provider is not None else None
        return IndexBundle.empty(self.settings, dimension)

    @property
    def bundle(self) -> IndexBundle:
        return self._bundle

    @property
    def document_count(self) -> int:
        return len(self._bundle.documents)

    def get_document(self, doc_id: str) -> Optional[Document]:
        return self._bundle.documents.get(doc_id)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def add_document(self, doc_id: str, title: str = "", text: str = "") -> SyncReport:
        """Add or update a single document."""
        return await self.add_documents([Document(id=doc_id, title=title, text=text)])

    async def add_documents(self, documents: Iterable[DocumentLike]) -> SyncReport:
        """
        Add or update documents, committing each one as soon as it is embedded.

        Raises:
            ProviderUnavailable: the provider cannot embed anything
        """
        started = time.perf_counter()
        report = SyncReport()
        async with self._lock:
            bundle = self._bundle
            async for prepared in self.pipeline.stream([_as_document(d) for d in documents], report.failures):
                bundle.commit(prepared)
                report.indexed += 1
                report.chunks += len(prepared.chunks)
            self._last_sync = datetime.now(timezone.utc)
        report.duration_ms = (time.perf_counter() - started) * 1000
        log.info("Documents added", indexed=report.indexed, failed=report.failed, chunks=report.chunks)
        return report

    async def remove_document(self, doc_id: str) -> bool:
        """Remove a document from every index. False if unknown."""
        async with self._lock:
            removed = self._bundle.remove(doc_id)
        log.info("Document removed", doc_id=doc_id, found=removed)
        return removed

    async def _sync_all_locked(
        self,
        documents: Iterable[Document],
        pipeline: Optional[IngestionPipeline] = None,
    ) -> SyncReport:
        """
        Build a fresh bundle with ``pipeline`` (default: the current one).

        Provider, pipeline and bundle are replaced together only once the
        bundle is complete, so concurrent queries keep a consistent pair.
        """
        pipeline = pipeline or self.pipeline
        started = time.perf_counter()
        report = SyncReport()
        fresh = IndexBundle.empty(
            self.settings, pipeline.provider.dimension if pipeline.provider is not None else None
        )
        async for prepared in pipeline.stream(list(documents), report.failures):
            fresh.commit(prepared, link_semantic=False)
            report.indexed += 1
            report.chunks += len(prepared.chunks)
        fresh.link_all()

        report.removed = len(set(self._bundle.documents) - set(fresh.documents))
        self.provider = pipeline.provider
        self.pipeline = pipeline
        self.chunker = pipeline.chunker
        self._bundle = fresh
        self._last_sync = datetime.now(timezone.utc)
        report.duration_ms = (time.perf_counter() - started) * 1000
        log.info(
            "Full sync completed",
            indexed=report.indexed,
            failed=report.failed,
            chunks=report.chunks,
            duration_ms=round(report.duration_ms, 1),
        )
        return report

    async def sync_all(self, documents: Iterable[DocumentLike]) -> SyncReport:
        """
        Rebuild every index from ``documents`` and swap them in atomically.

        Documents missing from ``documents`` disappear from the engine.
        """
        async with self._lock:
            return await self._sync_all_locked([_as_document(d) for d in documents])

    async def set_embedding_provider(self, provider: Optional[EmbeddingProvider]) -> SyncReport:
        """
        Switch provider. Every stored vector is invalidated, so all documents
        are re-embedded.
        """
        async with self._lock:
            documents = list(self._bundle.documents.values())
            pipeline = IngestionPipeline(provider, build_chunker(self.settings.chunking, provider))
            report = await self._sync_all_locked(documents, pipeline)
        log.info("Embedding provider switched", provider=provider.name if provider else None)
        return report

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _query_embedding(
        self,
        provider: Optional[EmbeddingProvider],
        query: str,
        mode: SearchMode,
    ) -> Optional[List[float]]:
        """
        Embed the query. In hybrid mode a transient failure falls back to
        lexical search; a missing or misconfigured provider is always raised.
        """
        if mode == SearchMode.LEXICAL:
            return None
        if provider is None:
            if mode == SearchMode.HYBRID:
                return None
            raise ProviderUnavailable("none", f"configure an embedding provider to use {mode.value} search")
        try:
            vectors = await provider.generate_embeddings([query], is_query=True)
        except ProviderUnavailable:
            raise
        except Exception as e:
            if mode == SearchMode.HYBRID:
                log.warning("Query embedding failed, falling back to lexical search", error=str(e))
                return None
            if isinstance(e, ProviderError):
                raise
            raise SearchFailed({"query": query, "error": str(e)}) from e
        return vectors[0]

    def _graph_search(self, bundle: IndexBundle, embedding: List[float], options: SearchOptions,
                      terms: List[str]) -> List[SearchResult]:
        if bundle.graph is None:
            return []
        graph_settings = self.settings.graph
        edge_type = options.edge_type or graph_settings.edge_type
        ranked = bundle.graph.query(
            embedding,
            top_k=options.limit * self.settings.fusion.over_retrieve_factor,
            steps=options.steps or graph_settings.walk_steps,
            restart_prob=graph_settings.restart_prob if options.restart_prob is None else options.restart_prob,
            edge_type=None if edge_type == "any" else edge_type,
            candidate_pool=options.candidate_pool or graph_settings.candidate_pool,
            walk_weight=graph_settings.walk_weight if options.walk_weight is None else options.walk_weight,
        )
        results: List[SearchResult] = []
        seen = set()
        for node in ranked:
            doc_id = node.source_doc_id
            document = bundle.documents.get(doc_id) if doc_id else None
            if document is None or doc_id in seen:
                continue
            seen.add(doc_id)
            results.append(SearchResult(
                id=doc_id,
                title=document.title,
                snippet=make_snippet(node.chunk.text, terms, self.settings.snippet_length),
                score=node.score,
                component_scores={
                    "similarity": node.similarity,
                    "walk": node.walk_score,
                    "chunk_id": node.id,
                } if options.include_component_scores else None,
            ))
            if len(results) >= options.limit:
                break
        return results

    def _run_search(self, bundle: IndexBundle, query: str, embedding: Optional[List[float]],
                    options: SearchOptions) -> List[SearchResult]:
        terms = bundle.lexical_index.tokenizer.tokenize(query)
        if options.mode == SearchMode.GRAPH:
            return self._graph_search(bundle, embedding, options, terms)

        if options.mode == SearchMode.LEXICAL:
            hits = bundle.fusion.search(query, None, alpha=0.0, limit=options.limit, ef=options.ef)
        elif options.mode == SearchMode.VECTOR:
            hits = bundle.fusion.search("", embedding, alpha=1.0, limit=options.limit, ef=options.ef)
        else:
            hits = bundle.fusion.search(query, embedding, alpha=options.alpha, limit=options.limit, ef=options.ef)

        results = []
        for hit in hits:
            document = bundle.documents.get(hit.id)
            if document is None:
                continue
            results.append(SearchResult(
                id=hit.id,
                title=document.title,
                snippet=make_snippet(document.text or document.title, terms, self.settings.snippet_length),
                score=hit.score,
                component_scores=hit.component_scores() if options.include_component_scores else None,
            ))
        return results

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> List[SearchResult]:
        """
        Rank documents for ``query``.

        Args:
            query: Query text
            options: Search options (default: hybrid, configured alpha, limit 10)

        Returns:
            Up to ``options.limit`` SearchResult, best first; [] for a blank query

        Raises:
            InvalidParameter: invalid options
            ProviderUnavailable: vector / graph mode without a provider, or a misconfigured provider
            SearchFailed: unexpected failure (original error chained)
        """
        options = options or SearchOptions()
        if not query or not query.strip():
            return []

        # provider and bundle are swapped together: read both before awaiting
        bundle, provider = self._bundle, self.provider
        embedding = await self._query_embedding(provider, query, options.mode)
        try:
            return self._run_search(bundle, query, embedding, options)
        except IndexCorruption as e:
            log.error("Index corruption detected, rebuilding vector index", error=str(e))
            bundle.rebuild_vector_index()
            try:
                return self._run_search(bundle, query, embedding, options)
            except (InvalidParameter, DimensionMismatch):
                raise
            except Exception as retry_error:
                raise SearchFailed({"query": query, "error": str(retry_error)}) from retry_error
        except (InvalidParameter, DimensionMismatch):
            raise
        except Exception as e:
            log.error("Search failed", query=query, mode=options.mode.value, error=str(e))
            raise SearchFailed({"query": query, "error": str(e)}) from e

    # ------------------------------------------------------------------
    # Status / snapshot
    # ------------------------------------------------------------------

    def status(self) -> IndexStatus:
        bundle = self._bundle
        return IndexStatus(
            documents=len(bundle.documents),
            chunks=len(bundle.chunks),
            vector=bundle.vector_index.stats() if bundle.vector_index is not None else None,
            lexical=bundle.lexical_index.stats(),
            graph=bundle.graph.stats() if bundle.graph is not None else None,
            provider=self.provider.identity if self.provider is not None else None,
            last_sync=self._last_sync.isoformat() if self._last_sync else None,
        )

    def _snapshot_payload(self) -> Dict[str, Any]:
        bundle = self._bundle
        return {
            "provider": self.provider.identity if self.provider is not None else None,
            "settings": self.settings.model_dump(mode="json"),
            "documents": [document.to_dict() for document in bundle.documents.values()],
            "chunks": [chunk.to_dict() for chunk in bundle.chunks.values()],
            "hnsw": bundle.vector_index.to_dict() if bundle.vector_index is not None else None,
            "bm25": bundle.lexical_index.to_dict(),
            "graph": bundle.graph.to_dict() if bundle.graph is not None else None,
        }

    def save_snapshot(self, path: Union[str, Path]) -> str:
        """Write the current indexes to ``path``. Returns the payload checksum."""
        return write_snapshot(path, self._snapshot_payload())

    def _restore_bundle(self, payload: Dict[str, Any]) -> IndexBundle:
        chunks = [Chunk.from_dict(raw) for raw in payload["chunks"]]
        vector_index = HNSWIndex.from_dict(payload["hnsw"], seed=self.settings.hnsw.seed) if payload["hnsw"] else None
        graph = None
        if vector_index is not None:
            embedded = [chunk for chunk in chunks if chunk.embedding is not None]
            if payload.get("graph"):
                graph = GraphRetriever.from_dict(
                    payload["graph"], embedded, vector_index=vector_index, seed=self.settings.graph.seed
                )
            else:
                graph = GraphRetriever(
                    dimension=vector_index.dimension,
                    vector_index=vector_index,
                    metric=vector_index.metric,
                    seed=self.settings.graph.seed,
                )
                for chunk in embedded:
                    graph.add_node(chunk)
        bundle = IndexBundle(
            settings=self.settings,
            lexical_index=BM25Index.from_dict(payload["bm25"]),
            vector_index=vector_index,
            graph=graph,
        )
        for raw in payload["documents"]:
            document = Document.from_dict(raw)
            bundle.documents[document.id] = document
            bundle.doc_chunks[document.id] = []
        for chunk in chunks:
            bundle.chunks[chunk.id] = chunk
            bundle.doc_chunks.setdefault(chunk.source_doc_id, []).append(chunk.id)
        return bundle

    async def load_snapshot(
        self,
        path: Union[str, Path],
        documents: Optional[Iterable[DocumentLike]] = None,
    ) -> bool:
        """
        Restore indexes from a snapshot.

        When the snapshot is unreadable or fails its checksum, every index is
        rebuilt from ``documents`` (or from the documents currently loaded).
        When it was written with a different provider, its documents are
        re-embedded with the current one.

        Returns:
            True if the indexes were restored as saved, False if a rebuild was needed
        """
        async with self._lock:
            try:
                payload = read_snapshot(path)
            except SnapshotError as e:
                log.warning("Snapshot rejected, rebuilding indexes", path=str(path), error=str(e))
                source = [_as_document(d) for d in documents] if documents is not None \
                    else list(self._bundle.documents.values())
                await self._sync_all_locked(source)
                return False

            saved_documents = [Document.from_dict(raw) for raw in payload.get("documents", [])]
            current_identity = self.provider.identity if self.provider is not None else None
            if payload.get("provider") != current_identity:
                log.warning(
                    "Snapshot provider differs, re-embedding documents",
                    saved=payload.get("provider"),
                    current=current_identity,
                )
                await self._sync_all_locked(saved_documents)
                return False

            try:
                bundle = self._restore_bundle(payload)
            except (IndexCorruption, KeyError, TypeError, ValueError) as e:
                log.warning("Snapshot content inconsistent, rebuilding indexes", path=str(path), error=str(e))
                await self._sync_all_locked(saved_documents)
                return False

            self._bundle = bundle
            self._last_sync = datetime.now(timezone.utc)
        log.info("Snapshot loaded", path=str(path), documents=len(bundle.documents), chunks=len(bundle.chunks))
        return True

    async def close(self) -> None:
        if self.provider is not None:
            await self.provider.close()


def create_engine(
    settings: Optional[RetrievalSettings] = None,
    config_path: Optional[Union[str, Path]] = None,
) -> HybridSearchEngine:
    """
    Build an engine and its provider from settings.

    Args:
        settings: Explicit settings (wins over ``config_path``)
        config_path: YAML file loaded through SettingsStore
    """
    if settings is None:
        settings = SettingsStore(config_path).get_settings()
    provider = build_embedding_provider(settings.embedding)
    return HybridSearchEngine(provider=provider, settings=settings)
