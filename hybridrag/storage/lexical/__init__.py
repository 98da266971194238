"""
hybridrag Lexical Storage
=========================

Tokenizer and BM25 inverted index.

Example:
    from hybridrag.storage.lexical import BM25Index

    index = BM25Index(k1=1.2, b=0.75)
    index.index("D1", "the cat sat on the mat")
    hits = index.search("cat", limit=10)
"""

from hybridrag.storage.lexical.bm25 import BM25Index, LexicalHit
from hybridrag.storage.lexical.tokenizer import ENGLISH_STOPWORDS, Tokenizer

__all__ = [
    "BM25Index",
    "LexicalHit",
    "Tokenizer",
    "ENGLISH_STOPWORDS",
]
