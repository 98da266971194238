"""
Snapshot Persistence
====================

JSON snapshot of the whole index bundle, protected by a checksum.

File layout:
    {
        "format": "hybridrag-snapshot",
        "version": 1,
        "created_at": "2026-01-01T12:00:00+00:00",
        "checksum": "<sha256 of the canonical payload>",
        "payload": {...}
    }

The canonical payload is ``json.dumps(payload, sort_keys=True,
separators=(",", ":"))``. Files are written to a temporary sibling and then
renamed, so a crash never leaves a half-written snapshot in place.
"""

import hashlib
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Union

import structlog

from hybridrag.exceptions import SnapshotError

log = structlog.get_logger()

SNAPSHOT_FORMAT = "hybridrag-snapshot"
SNAPSHOT_VERSION = 1


def canonical_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_checksum(payload: Dict[str, Any]) -> str:
    """SHA-256 hex digest of the canonical payload."""
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def write_snapshot(path: Union[str, Path], payload: Dict[str, Any]) -> str:
    """
    Write ``payload`` to ``path``.

    Returns:
        The payload checksum
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    checksum = compute_checksum(payload)
    document = {
        "format": SNAPSHOT_FORMAT,
        "version": SNAPSHOT_VERSION,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "checksum": checksum,
        "payload": payload,
    }
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(document, f, ensure_ascii=False)
    os.replace(tmp_path, path)
    log.info("Snapshot written", path=str(path), checksum=checksum[:12])
    return checksum


def read_snapshot(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read and verify a snapshot.

    Returns:
        The payload

    Raises:
        SnapshotError: unreadable file, unknown format or version, checksum mismatch
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    except FileNotFoundError as e:
        raise SnapshotError("Snapshot file not found", {"path": str(path)}) from e
    except (OSError, json.JSONDecodeError) as e:
        raise SnapshotError("Snapshot file unreadable", {"path": str(path), "error": str(e)}) from e

    if not isinstance(document, dict) or document.get("format") != SNAPSHOT_FORMAT:
        raise SnapshotError("Not a hybridrag snapshot", {"path": str(path)})
    if document.get("version") != SNAPSHOT_VERSION:
        raise SnapshotError(
            "Unsupported snapshot version",
            {"path": str(path), "version": document.get("version"), "supported": SNAPSHOT_VERSION},
        )

    payload = document.get("payload")
    if not isinstance(payload, dict):
        raise SnapshotError("Snapshot payload missing", {"path": str(path)})
    expected = document.get("checksum")
    actual = compute_checksum(payload)
    if expected != actual:
        raise SnapshotError(
            "Snapshot checksum mismatch",
            {"path": str(path), "expected": expected, "actual": actual},
        )
    return payload
