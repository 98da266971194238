"""
Tokenizer
=========

Text -> term list for the lexical index.

Pipeline: lowercase, drop apostrophes ("cat's" -> "cats"), replace every
other non-word character with a space, split on whitespace, drop short
tokens and (optionally) English stopwords.
"""

import re
from typing import FrozenSet, Iterable, List, Optional

ENGLISH_STOPWORDS: FrozenSet[str] = frozenset("""
a about above after again against all am an and any are as at be because been
before being below between both but by can could did do does doing down during
each few for from further had has have having he her here hers herself him
himself his how i if in into is it its itself just me more most my myself no nor
not now of off on once only or other our ours ourselves out over own same she
should so some such than that the their theirs them themselves then there these
they this those through to too under until up very was we were what when where
which while who whom why will with would you your yours yourself yourselves
""".split())

_APOSTROPHES = re.compile(r"['’`]")
_NON_WORD = re.compile(r"[^\w\s]+", re.UNICODE)


class Tokenizer:
    """
    Configurable word tokenizer.

    Args:
        remove_stopwords: Drop English stopwords (or ``stopwords`` if given)
        stopwords: Custom stopword set, replaces the English list
        min_token_length: Shorter tokens are dropped
    """

    def __init__(
        self,
        remove_stopwords: bool = True,
        stopwords: Optional[Iterable[str]] = None,
        min_token_length: int = 1,
    ):
        self.remove_stopwords = remove_stopwords
        self.stopwords: FrozenSet[str] = (
            frozenset(w.lower() for w in stopwords) if stopwords is not None else ENGLISH_STOPWORDS
        )
        self.min_token_length = max(1, int(min_token_length))

    def tokenize(self, text: str) -> List[str]:
        if not text:
            return []
        text = _APOSTROPHES.sub("", text.lower())
        text = _NON_WORD.sub(" ", text)
        tokens = [t for t in text.split() if len(t) >= self.min_token_length]
        if self.remove_stopwords:
            tokens = [t for t in tokens if t not in self.stopwords]
        return tokens

    __call__ = tokenize

    def to_dict(self) -> dict:
        data = {"remove_stopwords": self.remove_stopwords, "min_token_length": self.min_token_length}
        if self.stopwords is not ENGLISH_STOPWORDS:
            data["stopwords"] = sorted(self.stopwords)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Tokenizer":
        return cls(
            remove_stopwords=data.get("remove_stopwords", True),
            stopwords=data.get("stopwords"),
            min_token_length=data.get("min_token_length", 1),
        )
