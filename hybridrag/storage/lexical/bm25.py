"""
BM25 Lexical Index
==================

Inverted index with Okapi BM25 scoring.

Scoring, for each distinct query term t present in document d:

    idf(t)  = ln((N - df + 0.5) / (df + 0.5) + 1)
    tf_part = tf * (k1 + 1) / (tf + k1 * (1 - b + b * |d| / avgdl))
    score   = sum(idf(t) * tf_part)

The "+1" inside the log (Lucene variant) keeps idf positive even for terms
present in more than half of the corpus. Documents that share no query term
are not scored at all.

Bookkeeping invariants (kept exact under index / remove):
- postings[t][d] == tf of t in d, and only for tf > 0
- total_length == sum of document lengths (an int, no float drift)
- document_count == len(doc_lengths)

Usage:
    index = BM25Index()
    index.index("D1", "the cat sat on the mat")
    index.search("cat", limit=5)
"""

import math
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from hybridrag.config.settings import BM25Settings
from hybridrag.exceptions import InvalidParameter
from hybridrag.storage.lexical.tokenizer import Tokenizer

log = structlog.get_logger()


@dataclass(frozen=True)
class LexicalHit:
    """A lexical search result: document id and BM25 score (> 0)."""
    doc_id: str
    score: float


def _check_constants(k1: float, b: float) -> None:
    if k1 < 0:
        raise InvalidParameter("k1", k1, "must be >= 0")
    if not 0.0 <= b <= 1.0:
        raise InvalidParameter("b", b, "must be in [0, 1]")


class BM25Index:
    """
    In-memory BM25 index over whole documents.

    Attributes:
        tokenizer: Tokenizer applied to documents and queries
        k1: Term-frequency saturation
        b: Length normalisation strength
    """

    def __init__(self, tokenizer: Optional[Tokenizer] = None, k1: float = 1.2, b: float = 0.75):
        _check_constants(k1, b)
        self.tokenizer = tokenizer or Tokenizer()
        self.k1 = k1
        self.b = b
        self._postings: Dict[str, Dict[str, int]] = {}
        self._doc_lengths: Dict[str, int] = {}
        self._doc_terms: Dict[str, List[str]] = {}
        self._total_length = 0

    @classmethod
    def from_settings(cls, settings: BM25Settings) -> "BM25Index":
        tokenizer = Tokenizer(
            remove_stopwords=settings.remove_stopwords,
            min_token_length=settings.min_token_length,
        )
        return cls(tokenizer=tokenizer, k1=settings.k1, b=settings.b)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._doc_lengths)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._doc_lengths

    @property
    def document_count(self) -> int:
        return len(self._doc_lengths)

    @property
    def total_length(self) -> int:
        return self._total_length

    @property
    def average_document_length(self) -> float:
        if not self._doc_lengths:
            return 0.0
        return self._total_length / len(self._doc_lengths)

    @property
    def vocabulary_size(self) -> int:
        return len(self._postings)

    def document_frequency(self, term: str) -> int:
        return len(self._postings.get(term, {}))

    def postings(self, term: str) -> Dict[str, int]:
        """Copy of ``{doc_id: tf}`` for ``term``."""
        return dict(self._postings.get(term, {}))

    def document_length(self, doc_id: str) -> int:
        return self._doc_lengths[doc_id]

    def doc_ids(self) -> List[str]:
        return list(self._doc_lengths)

    def stats(self) -> Dict[str, Any]:
        return {
            "document_count": self.document_count,
            "vocabulary_size": self.vocabulary_size,
            "average_document_length": self.average_document_length,
            "k1": self.k1,
            "b": self.b,
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def index(self, doc_id: str, text: str) -> int:
        """
        Index (or re-index) a document.

        Returns:
            Number of tokens indexed for the document
        """
        if doc_id in self._doc_lengths:
            self.remove_doc(doc_id)

        tokens = self.tokenizer.tokenize(text)
        for term, tf in Counter(tokens).items():
            self._postings.setdefault(term, {})[doc_id] = tf

        self._doc_lengths[doc_id] = len(tokens)
        self._doc_terms[doc_id] = sorted(set(tokens))
        self._total_length += len(tokens)
        return len(tokens)

    def remove_doc(self, doc_id: str) -> bool:
        """
        Remove a document and all its postings.

        Returns:
            False if the document was not indexed
        """
        length = self._doc_lengths.pop(doc_id, None)
        if length is None:
            return False

        for term in self._doc_terms.pop(doc_id, []):
            docs = self._postings.get(term)
            if docs is None:
                continue
            docs.pop(doc_id, None)
            if not docs:
                del self._postings[term]

        self._total_length -= length
        return True

    def clear(self) -> None:
        self._postings.clear()
        self._doc_lengths.clear()
        self._doc_terms.clear()
        self._total_length = 0

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def idf(self, term: str) -> float:
        n = len(self._doc_lengths)
        df = self.document_frequency(term)
        return math.log((n - df + 0.5) / (df + 0.5) + 1.0)

    def score(self, query: str, k1: Optional[float] = None, b: Optional[float] = None) -> Dict[str, float]:
        """
        BM25 scores of every document sharing at least one term with ``query``.

        Args:
            query: Query text (tokenized like documents; repeated terms count once)
            k1: Override of the index k1
            b: Override of the index b

        Returns:
            ``{doc_id: score}``; empty when nothing matches
        """
        k1 = self.k1 if k1 is None else k1
        b = self.b if b is None else b
        _check_constants(k1, b)

        if not self._doc_lengths:
            return {}
        avgdl = self.average_document_length or 1.0

        scores: Dict[str, float] = {}
        for term in dict.fromkeys(self.tokenizer.tokenize(query)):
            docs = self._postings.get(term)
            if not docs:
                continue
            idf = self.idf(term)
            for doc_id, tf in docs.items():
                norm = k1 * (1.0 - b + b * self._doc_lengths[doc_id] / avgdl)
                scores[doc_id] = scores.get(doc_id, 0.0) + idf * tf * (k1 + 1.0) / (tf + norm)
        return scores

    def search(
        self,
        query: str,
        limit: int = 10,
        k1: Optional[float] = None,
        b: Optional[float] = None,
    ) -> List[LexicalHit]:
        """Top ``limit`` hits sorted by (-score, doc_id)."""
        if limit < 1:
            raise InvalidParameter("limit", limit, "must be >= 1")
        scores = self.score(query, k1=k1, b=b)
        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))[:limit]
        log.debug("BM25 search", query=query, matches=len(scores), returned=len(ranked))
        return [LexicalHit(doc_id=doc_id, score=score) for doc_id, score in ranked]

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "k1": self.k1,
            "b": self.b,
            "tokenizer": self.tokenizer.to_dict(),
            "postings": {term: dict(docs) for term, docs in self._postings.items()},
            "doc_lengths": dict(self._doc_lengths),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BM25Index":
        index = cls(
            tokenizer=Tokenizer.from_dict(data.get("tokenizer", {})),
            k1=data.get("k1", 1.2),
            b=data.get("b", 0.75),
        )
        terms: Dict[str, List[str]] = {}
        for term, docs in data.get("postings", {}).items():
            index._postings[term] = {str(doc_id): int(tf) for doc_id, tf in docs.items()}
            for doc_id in docs:
                terms.setdefault(str(doc_id), []).append(term)
        for doc_id, length in data.get("doc_lengths", {}).items():
            index._doc_lengths[str(doc_id)] = int(length)
            index._doc_terms[str(doc_id)] = sorted(terms.get(str(doc_id), []))
            index._total_length += int(length)
        return index
