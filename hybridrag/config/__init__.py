"""
Configuration module for hybridrag.
"""

from .settings import (
    BM25Settings,
    ChunkingSettings,
    DistanceMetric,
    EmbeddingSettings,
    FusionMethod,
    FusionSettings,
    GraphSettings,
    HNSWSettings,
    RetrievalSettings,
)
from .loader import CONFIG_ENV_VAR, SettingsStore, load_settings

__all__ = [
    "BM25Settings",
    "ChunkingSettings",
    "DistanceMetric",
    "EmbeddingSettings",
    "FusionMethod",
    "FusionSettings",
    "GraphSettings",
    "HNSWSettings",
    "RetrievalSettings",
    "CONFIG_ENV_VAR",
    "SettingsStore",
    "load_settings",
]
