"""
Exception hierarchy for hybridrag.

Every error carries a human-readable message plus a ``details`` dict with the
context needed to debug it (ids, expected/actual values, remediation hints).

Empty indexes are NOT an error anywhere in the package: searching an empty
index returns an empty list.
"""

from typing import Any, Dict, Optional


class HybridRAGError(Exception):
    """Base exception for all hybridrag errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class DimensionMismatch(HybridRAGError, ValueError):
    """Raised when a vector does not match the configured dimension."""

    def __init__(self, expected: int, actual: int, details: Optional[Dict[str, Any]] = None) -> None:
        details = details or {}
        details.update({"expected": expected, "actual": actual})
        self.expected = expected
        self.actual = actual
        super().__init__(f"Vector dimension must be {expected}, got {actual}", details)


class InvalidParameter(HybridRAGError, ValueError):
    """Raised when a tuning parameter is outside its valid range."""

    def __init__(self, name: str, value: Any, reason: str) -> None:
        self.name = name
        self.value = value
        super().__init__(f"Invalid {name}={value!r}: {reason}", {"parameter": name, "value": value})


class ProviderUnavailable(HybridRAGError):
    """
    Raised when no usable embedding backend is configured.

    Covers missing optional dependencies, missing credentials and a missing
    provider. Not retryable: ``remediation`` says what the operator must fix.
    """

    def __init__(self, provider: str, remediation: str, details: Optional[Dict[str, Any]] = None) -> None:
        details = details or {}
        details.update({"provider": provider, "remediation": remediation})
        self.provider = provider
        self.remediation = remediation
        super().__init__(f"Embedding provider '{provider}' unavailable: {remediation}", details)


class ProviderError(HybridRAGError):
    """Transient embedding backend failure (network, 5xx, bad payload). Callers may retry."""

    retryable = True

    def __init__(self, provider: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        details = details or {}
        details["provider"] = provider
        self.provider = provider
        super().__init__(message, details)


class IndexCorruption(HybridRAGError):
    """Raised when an index invariant is broken (e.g. nodes without an entry point)."""


class SnapshotError(HybridRAGError):
    """Raised when a snapshot cannot be read or fails checksum verification."""


class NodeNotFound(HybridRAGError, LookupError):
    """Raised when an operation references a node that does not exist."""

    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}", {"node_id": node_id})


class SearchFailed(HybridRAGError):
    """Generic query failure surfaced to callers; the original error is chained."""

    def __init__(self, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("Search failed, resync the index", details)
