"""
Embedding Providers

Text -> fixed-dimension vectors, behind a single async interface.

Providers:
- SentenceTransformerProvider: local sentence-transformers model, loaded
  lazily on first use, encoding offloaded to the default thread pool
- HTTPEmbeddingProvider: OpenAI-compatible ``/embeddings`` endpoint (aiohttp)
- HashingEmbeddingProvider: deterministic feature hashing, no model needed
  (offline use and tests)
- CachedEmbeddingProvider: LRU cache in front of any provider

E5 Prefixes:
E5-family models expect "query: " for queries and "passage: " for documents.
Set ``use_prefixes=True`` on the sentence-transformers provider (or in
EmbeddingSettings) when the configured model is an E5 model.

There is no module-level singleton: the engine owns its provider, and
ProviderRegistry keeps named providers when more than one is needed.

Usage:
    provider = build_embedding_provider(EmbeddingSettings(provider="hashing", dimension=64))
    vectors = await provider.generate_embeddings(["first note", "second note"])
    query_vector = (await provider.generate_embeddings(["cats"], is_query=True))[0]
"""

import asyncio
import hashlib
import logging
import os
import re
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import aiohttp
import numpy as np

from hybridrag.config.settings import EmbeddingSettings
from hybridrag.exceptions import InvalidParameter, ProviderError, ProviderUnavailable

logger = logging.getLogger(__name__)

QUERY_PREFIX = "query: "
PASSAGE_PREFIX = "passage: "


def batched(items: Sequence[str], size: int) -> Iterator[Sequence[str]]:
    """Yield consecutive slices of ``items`` of at most ``size`` elements."""
    for start in range(0, len(items), size):
        yield items[start:start + size]


class EmbeddingProvider(ABC):
    """
    Abstract embedding backend.

    Implementations must return one vector of length ``dimension`` per input
    text, in input order.
    """

    name: str = "abstract"

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Output vector dimension."""

    @property
    def max_batch_size(self) -> int:
        return 32

    @property
    def identity(self) -> Dict[str, object]:
        """Name and dimension, stored in snapshots to detect provider changes."""
        return {"name": self.name, "dimension": self.dimension}

    async def initialize(self) -> None:
        """Prepare the backend (load a model, open a session). Optional."""

    async def close(self) -> None:
        """Release backend resources. Optional."""

    @abstractmethod
    async def generate_embeddings(self, texts: Sequence[str], is_query: bool = False) -> List[List[float]]:
        """
        Embed ``texts``.

        Args:
            texts: Texts to embed
            is_query: True for search queries, False for indexed passages

        Returns:
            One vector per text

        Raises:
            ProviderUnavailable: backend not configured (not retryable)
            ProviderError: transient backend failure (retryable)
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name}, dimension={self.dimension})"


class HashingEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic bag-of-words feature hashing.

    Each lowercase word is hashed (blake2b) into one of ``dimension`` buckets
    with a hash-derived sign; the count vector is L2-normalised. Texts sharing
    words get positive cosine similarity, so the provider is good enough for
    offline indexing and fully reproducible tests.
    """

    name = "hashing"
    _word_re = re.compile(r"\w+", re.UNICODE)

    def __init__(self, dimension: int = 384, batch_size: int = 256):
        if dimension < 1:
            raise InvalidParameter("dimension", dimension, "must be a positive integer")
        self._dimension = dimension
        self._batch_size = batch_size

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def max_batch_size(self) -> int:
        return self._batch_size

    def _bucket(self, word: str) -> Tuple[int, float]:
        digest = hashlib.blake2b(word.encode("utf-8"), digest_size=8).digest()
        value = int.from_bytes(digest, "little")
        sign = 1.0 if (value >> 63) & 1 == 0 else -1.0
        return value % self._dimension, sign

    def embed(self, text: str) -> List[float]:
        """Synchronous single-text embedding."""
        vector = np.zeros(self._dimension, dtype=np.float64)
        for word in self._word_re.findall(text.lower()):
            bucket, sign = self._bucket(word)
            vector[bucket] += sign
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()

    async def generate_embeddings(self, texts: Sequence[str], is_query: bool = False) -> List[List[float]]:
        return [self.embed(text) for text in texts]


class SentenceTransformerProvider(EmbeddingProvider):
    """
    Local sentence-transformers model.

    The model is loaded lazily (first ``initialize`` or first call), and
    encoding runs in the default executor so the event loop is not blocked.
    Requires the ``embeddings`` extra: ``pip install hybridrag[embeddings]``.
    """

    name = "sentence-transformers"

    def __init__(
        self,
        model_name: str = "sentence-transformers/all-MiniLM-L6-v2",
        device: Optional[str] = None,
        batch_size: int = 32,
        use_prefixes: bool = False,
        normalize_embeddings: bool = True,
        dimension: Optional[int] = None,
    ):
        self.model_name = model_name
        self.device = device or os.getenv("HYBRIDRAG_EMBEDDING_DEVICE")
        self.batch_size = batch_size
        self.use_prefixes = use_prefixes
        self.normalize_embeddings = normalize_embeddings
        self._dimension = dimension
        self._model = None

        logger.info(
            "SentenceTransformerProvider configured",
            extra={"model": self.model_name, "device": self.device, "batch_size": self.batch_size},
        )

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            self._dimension = int(self._load_model().get_sentence_embedding_dimension())
        return self._dimension

    @property
    def max_batch_size(self) -> int:
        return self.batch_size

    def _load_model(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError:
                raise ProviderUnavailable(
                    self.name,
                    "install the embeddings extra: pip install hybridrag[embeddings]",
                ) from None

            logger.info(f"Loading embedding model: {self.model_name}")
            try:
                self._model = SentenceTransformer(self.model_name, device=self.device)
            except OSError as e:
                raise ProviderUnavailable(
                    self.name,
                    f"model '{self.model_name}' could not be loaded, check the name or network access",
                    {"error": str(e)},
                ) from e
            logger.info(f"Model loaded. Embedding dimension: {self._model.get_sentence_embedding_dimension()}")
        return self._model

    async def initialize(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._load_model)

    def _prefixed(self, texts: Sequence[str], is_query: bool) -> List[str]:
        if not self.use_prefixes:
            return list(texts)
        prefix = QUERY_PREFIX if is_query else PASSAGE_PREFIX
        return [f"{prefix}{text}" for text in texts]

    def encode_batch(self, texts: Sequence[str], is_query: bool = False) -> List[List[float]]:
        """Synchronous batch encoding."""
        if not texts:
            return []
        model = self._load_model()
        logger.debug(f"Batch encoding {len(texts)} {'queries' if is_query else 'passages'}")
        embeddings = model.encode(
            self._prefixed(texts, is_query),
            batch_size=self.batch_size,
            normalize_embeddings=self.normalize_embeddings,
            show_progress_bar=False,
            convert_to_numpy=True,
        )
        return embeddings.tolist()

    async def generate_embeddings(self, texts: Sequence[str], is_query: bool = False) -> List[List[float]]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self.encode_batch(texts, is_query))

    async def close(self) -> None:
        self._model = None


class HTTPEmbeddingProvider(EmbeddingProvider):
    """
    OpenAI-compatible embeddings API.

    POSTs ``{"model": ..., "input": [...]}`` to ``{api_base}/embeddings`` and
    reads ``data[*].embedding`` ordered by ``data[*].index``. The API key is
    read from the environment variable named by ``api_key_env``.
    """

    name = "http"

    def __init__(
        self,
        model_name: str,
        dimension: int,
        api_base: str = "https://api.openai.com/v1",
        api_key_env: str = "HYBRIDRAG_API_KEY",
        batch_size: int = 32,
        timeout_s: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.model_name = model_name
        self._dimension = dimension
        self.api_base = api_base.rstrip("/")
        self.api_key_env = api_key_env
        self.batch_size = batch_size
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session = session
        self._owns_session = session is None

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def max_batch_size(self) -> int:
        return self.batch_size

    @property
    def endpoint(self) -> str:
        return f"{self.api_base}/embeddings"

    def _api_key(self) -> str:
        api_key = os.environ.get(self.api_key_env)
        if not api_key:
            raise ProviderUnavailable(
                self.name,
                f"set the {self.api_key_env} environment variable to an API key",
                {"api_base": self.api_base},
            )
        return api_key

    async def initialize(self) -> None:
        self._api_key()
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def _post(self, batch: Sequence[str], api_key: str) -> List[List[float]]:
        headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
        payload = {"model": self.model_name, "input": list(batch)}
        try:
            async with self._session.post(self.endpoint, json=payload, headers=headers) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise ProviderError(
                        self.name,
                        f"Embedding API returned HTTP {response.status}",
                        {"status": response.status, "body": body[:500]},
                    )
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderError(self.name, f"Embedding API request failed: {e}", {"endpoint": self.endpoint}) from e

        try:
            items = sorted(data["data"], key=lambda item: item["index"])
            vectors = [[float(v) for v in item["embedding"]] for item in items]
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(self.name, "Malformed embedding API response", {"error": str(e)}) from e

        if len(vectors) != len(batch):
            raise ProviderError(
                self.name,
                "Embedding API returned the wrong number of vectors",
                {"expected": len(batch), "actual": len(vectors)},
            )
        return vectors

    async def generate_embeddings(self, texts: Sequence[str], is_query: bool = False) -> List[List[float]]:
        if not texts:
            return []
        api_key = self._api_key()
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

        vectors: List[List[float]] = []
        for batch in batched(list(texts), self.batch_size):
            vectors.extend(await self._post(batch, api_key))
        return vectors

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None


class CachedEmbeddingProvider(EmbeddingProvider):
    """
    LRU cache in front of another provider.

    Entries are keyed by ``(is_query, text)``; only cache misses reach the
    wrapped provider, in one call.
    """

    def __init__(self, provider: EmbeddingProvider, max_size: int = 500):
        if max_size < 1:
            raise InvalidParameter("max_size", max_size, "must be >= 1")
        self.provider = provider
        self.max_size = max_size
        self._cache: "OrderedDict[Tuple[bool, str], List[float]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    @property
    def name(self) -> str:
        return self.provider.name

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    @property
    def max_batch_size(self) -> int:
        return self.provider.max_batch_size

    def __len__(self) -> int:
        return len(self._cache)

    async def initialize(self) -> None:
        await self.provider.initialize()

    async def close(self) -> None:
        await self.provider.close()

    def clear(self) -> None:
        self._cache.clear()

    async def generate_embeddings(self, texts: Sequence[str], is_query: bool = False) -> List[List[float]]:
        results: List[Optional[List[float]]] = [None] * len(texts)
        missing: Dict[str, List[int]] = {}

        for i, text in enumerate(texts):
            key = (is_query, text)
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                results[i] = cached
                self.hits += 1
            else:
                missing.setdefault(text, []).append(i)

        if missing:
            self.misses += len(missing)
            unique = list(missing)
            vectors = await self.provider.generate_embeddings(unique, is_query=is_query)
            for text, vector in zip(unique, vectors):
                for i in missing[text]:
                    results[i] = vector
                self._cache[(is_query, text)] = vector
                self._cache.move_to_end((is_query, text))
                while len(self._cache) > self.max_size:
                    self._cache.popitem(last=False)

        return [vector for vector in results if vector is not None]


class ProviderRegistry:
    """
    Named embedding providers with one active selection.

    Example:
        registry = ProviderRegistry()
        registry.register(HashingEmbeddingProvider(64))
        registry.register(HTTPEmbeddingProvider("text-embedding-3-small", 1536), activate=True)
        registry.active.name  # "http"
    """

    def __init__(self):
        self._providers: Dict[str, EmbeddingProvider] = {}
        self._active: Optional[str] = None

    def register(self, provider: EmbeddingProvider, name: Optional[str] = None, activate: bool = False) -> str:
        key = name or provider.name
        self._providers[key] = provider
        if activate or self._active is None:
            self._active = key
        logger.debug(f"Registered embedding provider '{key}'")
        return key

    def get(self, name: str) -> EmbeddingProvider:
        try:
            return self._providers[name]
        except KeyError:
            raise ProviderUnavailable(name, f"register it first, known providers: {sorted(self._providers)}") from None

    def activate(self, name: str) -> EmbeddingProvider:
        provider = self.get(name)
        self._active = name
        return provider

    @property
    def active(self) -> Optional[EmbeddingProvider]:
        if self._active is None:
            return None
        return self._providers[self._active]

    def names(self) -> List[str]:
        return list(self._providers)

    async def close_all(self) -> None:
        for provider in self._providers.values():
            await provider.close()


def build_embedding_provider(settings: EmbeddingSettings) -> Optional[EmbeddingProvider]:
    """
    Build the provider described by ``settings``.

    Returns None for ``provider="none"`` (lexical-only engine). A positive
    ``cache_size`` wraps the provider in CachedEmbeddingProvider.
    """
    if settings.provider == "none":
        return None

    provider: EmbeddingProvider
    if settings.provider == "hashing":
        provider = HashingEmbeddingProvider(dimension=settings.dimension)
    elif settings.provider == "sentence-transformers":
        provider = SentenceTransformerProvider(
            model_name=settings.model_name,
            batch_size=settings.batch_size,
            use_prefixes=settings.use_prefixes,
        )
    elif settings.provider == "http":
        provider = HTTPEmbeddingProvider(
            model_name=settings.model_name,
            dimension=settings.dimension,
            api_base=settings.api_base,
            api_key_env=settings.api_key_env,
            batch_size=settings.batch_size,
            timeout_s=settings.timeout_s,
        )
    else:
        raise ProviderUnavailable(settings.provider, "use one of: hashing, sentence-transformers, http, none")

    if settings.cache_size > 0:
        provider = CachedEmbeddingProvider(provider, max_size=settings.cache_size)
    return provider
