"""
Semantic Similarity Chunking
============================

Chunking basato sulla similarity tra embedding di frasi consecutive.

Algoritmo:
1. Normalizza il testo e lo segmenta in frasi
2. Genera l'embedding di ogni frase
3. Similarity della frase i = coseno medio con le ``lookahead`` frasi successive
4. Soglia dinamica: ``similarity_threshold + varianza / 2``, limitata a
   [threshold_lower_bound, threshold_upper_bound]
5. La frase successiva resta nel chunk corrente se la similarity raggiunge
   la soglia e il chunk non supera ``chunk_size`` caratteri
6. Opzionale: chunk adiacenti simili (``combine_threshold``) vengono uniti
   se insieme stanno in ``chunk_size``

Frasi più lunghe di ``chunk_size`` vengono spezzate in finestre con
``chunk_text``, quindi nessun chunk supera mai ``chunk_size``.

Esempio:
    chunker = SemanticChunker(provider, chunk_size=500)
    chunks = await chunker.chunk(document)
"""

import logging
import re
from typing import List, Optional, Sequence, Union

import numpy as np

from hybridrag.config.settings import ChunkingSettings, ChunkingStrategy
from hybridrag.exceptions import InvalidParameter, ProviderError
from hybridrag.models import Chunk, Document
from hybridrag.pipeline.chunking import TextChunker, TextSpan, chunk_text, preprocess_text, spans_to_chunks
from hybridrag.storage.vectors.embeddings import EmbeddingProvider, batched

logger = logging.getLogger(__name__)

# fine frase: punto / punto esclamativo / punto interrogativo seguiti da spazio
SENTENCE_SPLIT_PATTERN = re.compile(r"(?<=[.!?])\s+")

# peso della varianza nella soglia dinamica
VARIANCE_WEIGHT = 0.5


def split_sentences(text: str) -> List[TextSpan]:
    """Frasi di ``text`` con i loro offset; [] per testo vuoto."""
    spans: List[TextSpan] = []
    start = 0
    for match in SENTENCE_SPLIT_PATTERN.finditer(text):
        spans.append(TextSpan(text[start:match.start()], start, match.start()))
        start = match.end()
    spans.append(TextSpan(text[start:], start, len(text)))
    return [span for span in spans if span.text.strip()]


def _unit_rows(embeddings: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
    return np.divide(embeddings, norms, out=np.zeros_like(embeddings), where=norms > 0)


def lookahead_similarities(embeddings: np.ndarray, lookahead: int) -> List[float]:
    """
    Coseno medio tra ogni frase e le ``lookahead`` successive.

    Returns:
        n - 1 valori: l'i-esimo decide se la frase i + 1 continua il chunk
    """
    unit = _unit_rows(np.asarray(embeddings, dtype=np.float64))
    return [
        float(np.mean(unit[i + 1:i + 1 + lookahead] @ unit[i]))
        for i in range(len(unit) - 1)
    ]


def dynamic_threshold(similarities: Sequence[float], base: float, lower: float, upper: float) -> float:
    """Alza la soglia quando le similarity sono disperse, entro [lower, upper]."""
    if not similarities:
        return base
    adjusted = base + float(np.var(similarities)) * VARIANCE_WEIGHT
    return min(upper, max(lower, adjusted))


class SemanticChunker:
    """
    Chunker basato su similarity tra embedding di frasi.

    Attributes:
        provider: Provider usato per gli embedding delle frasi
        chunk_size: Lunghezza massima di un chunk in caratteri
        similarity_threshold: Soglia base per continuare un chunk
        threshold_lower_bound / threshold_upper_bound: Limiti della soglia dinamica
        lookahead: Frasi successive mediate nella similarity
        combine_chunks: Unisce chunk adiacenti simili
        combine_threshold: Similarity minima per l'unione

    Example:
        >>> chunker = SemanticChunker(provider, chunk_size=500, lookahead=3)
        >>> chunks = await chunker.chunk(document)
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        chunk_size: int = 500,
        similarity_threshold: float = 0.5,
        threshold_lower_bound: float = 0.4,
        threshold_upper_bound: float = 0.8,
        lookahead: int = 3,
        combine_chunks: bool = True,
        combine_threshold: float = 0.5,
    ):
        if provider is None:
            raise InvalidParameter("provider", None, "semantic chunking needs an embedding provider")
        if chunk_size < 1:
            raise InvalidParameter("chunk_size", chunk_size, "must be >= 1")
        if lookahead < 1:
            raise InvalidParameter("lookahead", lookahead, "must be >= 1")
        for name, value in (
            ("similarity_threshold", similarity_threshold),
            ("threshold_lower_bound", threshold_lower_bound),
            ("threshold_upper_bound", threshold_upper_bound),
            ("combine_threshold", combine_threshold),
        ):
            if not 0.0 <= value <= 1.0:
                raise InvalidParameter(name, value, "must be in [0, 1]")
        if threshold_lower_bound > threshold_upper_bound:
            raise InvalidParameter("threshold_lower_bound", threshold_lower_bound,
                                   "must not exceed threshold_upper_bound")

        self.provider = provider
        self.chunk_size = chunk_size
        self.similarity_threshold = similarity_threshold
        self.threshold_lower_bound = threshold_lower_bound
        self.threshold_upper_bound = threshold_upper_bound
        self.lookahead = lookahead
        self.combine_chunks = combine_chunks
        self.combine_threshold = combine_threshold

    @classmethod
    def from_settings(cls, settings: ChunkingSettings, provider: EmbeddingProvider) -> "SemanticChunker":
        return cls(
            provider,
            chunk_size=settings.chunk_size,
            similarity_threshold=settings.similarity_threshold,
            threshold_lower_bound=settings.threshold_lower_bound,
            threshold_upper_bound=settings.threshold_upper_bound,
            lookahead=settings.lookahead,
            combine_chunks=settings.combine_chunks,
            combine_threshold=settings.combine_threshold,
        )

    async def _embed(self, texts: Sequence[str]) -> np.ndarray:
        vectors: List[List[float]] = []
        for batch in batched(list(texts), self.provider.max_batch_size):
            vectors.extend(await self.provider.generate_embeddings(batch, is_query=False))
        if len(vectors) != len(texts):
            raise ProviderError(
                self.provider.name,
                "Provider returned the wrong number of vectors",
                {"expected": len(texts), "actual": len(vectors)},
            )
        return np.asarray(vectors, dtype=np.float64)

    def _units(self, text: str) -> List[TextSpan]:
        """Frasi, con quelle troppo lunghe spezzate in finestre senza overlap."""
        units: List[TextSpan] = []
        for sentence in split_sentences(text):
            if len(sentence.text) <= self.chunk_size:
                units.append(sentence)
                continue
            for piece in chunk_text(sentence.text, self.chunk_size, 0):
                # window ends may include the separating space
                offset = sentence.start + sentence.text.index(piece.text, piece.start)
                units.append(TextSpan(piece.text, offset, offset + len(piece.text)))
        return units

    def _fits(self, units: List[TextSpan], first: int, last: int) -> bool:
        return units[last].end - units[first].start <= self.chunk_size

    def _group(self, units: List[TextSpan], similarities: List[float], threshold: float) -> List[List[int]]:
        groups = [[0]]
        for i in range(1, len(units)):
            current = groups[-1]
            if similarities[i - 1] >= threshold and self._fits(units, current[0], i):
                current.append(i)
            else:
                groups.append([i])
        return groups

    async def _combine(self, text: str, units: List[TextSpan], groups: List[List[int]]) -> List[List[int]]:
        """Unisce gruppi adiacenti simili; il confronto usa l'ultimo gruppo unito."""
        embeddings = _unit_rows(await self._embed([self._span(text, units, g).text for g in groups]))
        combined = [list(groups[0])]
        current = embeddings[0]
        for group, embedding in zip(groups[1:], embeddings[1:]):
            if self._fits(units, combined[-1][0], group[-1]) and float(current @ embedding) >= self.combine_threshold:
                combined[-1].extend(group)
            else:
                combined.append(list(group))
            current = embedding
        return combined

    @staticmethod
    def _span(text: str, units: List[TextSpan], group: List[int]) -> TextSpan:
        start, end = units[group[0]].start, units[group[-1]].end
        return TextSpan(text[start:end], start, end)

    async def chunk(self, document: Document) -> List[Chunk]:
        """
        Segmenta il documento in chunk semanticamente coerenti.

        Returns:
            Chunk senza embedding, in ordine; [] per un documento vuoto

        Raises:
            ProviderUnavailable / ProviderError: dal provider degli embedding
        """
        text = preprocess_text(document.full_text)
        units = self._units(text)
        if not units:
            return []

        groups = [[0]]
        if len(units) > 1:
            similarities = lookahead_similarities(await self._embed([u.text for u in units]), self.lookahead)
            threshold = dynamic_threshold(
                similarities, self.similarity_threshold, self.threshold_lower_bound, self.threshold_upper_bound
            )
            groups = self._group(units, similarities, threshold)
            if self.combine_chunks and len(groups) > 1:
                groups = await self._combine(text, units, groups)
            logger.debug(f"Document {document.id}: {len(units)} frasi, soglia {threshold:.3f}")

        chunks = spans_to_chunks(document, [self._span(text, units, group) for group in groups])
        logger.info(f"Semantic chunking {document.id}: {len(units)} frasi -> {len(chunks)} chunks")
        return chunks


def build_chunker(
    settings: ChunkingSettings,
    provider: Optional[EmbeddingProvider],
) -> Union[TextChunker, SemanticChunker]:
    """
    Chunker selezionato da ``settings.strategy``.

    Senza provider la strategia "semantic" ricade sulle finestre di caratteri.
    """
    if settings.strategy == ChunkingStrategy.SEMANTIC:
        if provider is not None:
            return SemanticChunker.from_settings(settings, provider)
        logger.warning("Semantic chunking needs an embedding provider, falling back to window chunking")
    return TextChunker.from_settings(settings)
