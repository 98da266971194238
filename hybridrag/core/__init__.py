"""
hybridrag Core
==============

HybridSearchEngine facade and the models it exchanges with callers.

Esempio:
    from hybridrag.core import SearchOptions, create_engine

    engine = create_engine()
    await engine.sync_all(documents)
    results = await engine.search("cat pets", SearchOptions(alpha=0.5))
"""

from hybridrag.core.engine import HybridSearchEngine, IndexBundle, create_engine, make_snippet
from hybridrag.core.models import IndexStatus, SearchMode, SearchOptions, SearchResult, SyncReport

__all__ = [
    "HybridSearchEngine",
    "IndexBundle",
    "create_engine",
    "make_snippet",
    "IndexStatus",
    "SearchMode",
    "SearchOptions",
    "SearchResult",
    "SyncReport",
]
