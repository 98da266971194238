"""
Test Snapshot Persistence
=========================

Tests for checksum-protected JSON snapshots.
"""

import json

import pytest

from hybridrag.exceptions import SnapshotError
from hybridrag.storage.snapshot import (
    SNAPSHOT_FORMAT,
    compute_checksum,
    read_snapshot,
    write_snapshot,
)

PAYLOAD = {"documents": [{"id": "d1", "title": "Caffè", "text": "espresso"}], "bm25": {"k1": 1.2}}


class TestSnapshotFiles:
    """Test write / read / verification"""

    def test_round_trip(self, tmp_path):
        path = tmp_path / "index.json"
        checksum = write_snapshot(path, PAYLOAD)

        assert read_snapshot(path) == PAYLOAD
        assert checksum == compute_checksum(PAYLOAD)
        assert not (tmp_path / "index.json.tmp").exists()

    def test_file_layout(self, tmp_path):
        path = tmp_path / "nested" / "index.json"
        write_snapshot(path, PAYLOAD)

        document = json.loads(path.read_text(encoding="utf-8"))
        assert document["format"] == SNAPSHOT_FORMAT
        assert document["version"] == 1
        assert "created_at" in document

    def test_checksum_ignores_key_order(self):
        reordered = {"bm25": {"k1": 1.2}, "documents": PAYLOAD["documents"]}
        assert compute_checksum(reordered) == compute_checksum(PAYLOAD)

    def test_tampered_payload_rejected(self, tmp_path):
        path = tmp_path / "index.json"
        write_snapshot(path, PAYLOAD)
        document = json.loads(path.read_text(encoding="utf-8"))
        document["payload"]["documents"][0]["text"] = "decaf"
        path.write_text(json.dumps(document), encoding="utf-8")

        with pytest.raises(SnapshotError, match="checksum"):
            read_snapshot(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(SnapshotError):
            read_snapshot(tmp_path / "absent.json")

    def test_not_json(self, tmp_path):
        path = tmp_path / "garbage.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(SnapshotError):
            read_snapshot(path)

    def test_wrong_format_or_version(self, tmp_path):
        path = tmp_path / "other.json"
        path.write_text(json.dumps({"format": "something-else", "payload": {}}), encoding="utf-8")
        with pytest.raises(SnapshotError):
            read_snapshot(path)

        path.write_text(json.dumps({"format": SNAPSHOT_FORMAT, "version": 99, "payload": {}}), encoding="utf-8")
        with pytest.raises(SnapshotError, match="version"):
            read_snapshot(path)
