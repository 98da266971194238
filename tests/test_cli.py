"""
Test CLI
========

End-to-end runs of ``hybridrag index / search / status`` through click's CliRunner.
"""

import json

import pytest
import structlog
from click.testing import CliRunner

from hybridrag.cli import cli, load_documents

DOCUMENTS = [
    {"id": "D1", "title": "Mat", "text": "the cat sat on the mat"},
    {"id": "D2", "title": "Dogs", "text": "dogs are great pets"},
    {"id": "D3", "title": "Both", "text": "cats and dogs are both pets"},
]

CONFIG = """\
hnsw:
  m: 8
  ef_construction: 32
  seed: 1
graph:
  walk_steps: 100
  seed: 1
embedding:
  provider: hashing
  dimension: 32
  cache_size: 0
"""


@pytest.fixture(autouse=True)
def reset_structlog():
    # the CLI binds structlog to the runner's stderr, which is closed after each invoke
    yield
    structlog.reset_defaults()


@pytest.fixture
def workspace(tmp_path):
    docs = tmp_path / "docs.json"
    docs.write_text(json.dumps(DOCUMENTS), encoding="utf-8")
    config = tmp_path / "settings.yaml"
    config.write_text(CONFIG, encoding="utf-8")
    return tmp_path, docs, config


def invoke(*args):
    return CliRunner().invoke(cli, list(args), catch_exceptions=False)


class TestCommands:
    """Test index -> search -> status"""

    def test_index_search_status(self, workspace):
        tmp_path, docs, config = workspace
        snapshot = tmp_path / "index.json"

        result = invoke("--config", str(config), "--log-level", "error",
                        "index", str(docs), "--snapshot", str(snapshot))
        assert result.exit_code == 0
        assert "Indexed 3 documents" in result.stdout
        assert snapshot.exists()

        result = invoke("--config", str(config), "--log-level", "error",
                        "search", "cat mat", "--snapshot", str(snapshot), "--mode", "lexical",
                        "--format", "json")
        assert result.exit_code == 0
        hits = json.loads(result.stdout)
        assert hits[0]["id"] == "D1"
        assert hits[0]["title"] == "Mat"

        result = invoke("--config", str(config), "--log-level", "error",
                        "status", "--snapshot", str(snapshot), "--format", "json")
        assert result.exit_code == 0
        status = json.loads(result.stdout)
        assert status["documents"] == 3
        assert status["restored"] is True
        assert status["provider"] == {"name": "hashing", "dimension": 32}

    def test_hybrid_table_output(self, workspace):
        tmp_path, docs, config = workspace
        snapshot = tmp_path / "index.json"
        invoke("--config", str(config), "--log-level", "error", "index", str(docs), "--snapshot", str(snapshot))

        result = invoke("--config", str(config), "--log-level", "error",
                        "search", "dogs pets", "--snapshot", str(snapshot), "--scores", "--limit", "2")

        assert result.exit_code == 0
        assert result.stdout.startswith(" 1. [")
        assert "lexical=" in result.stdout

    def test_missing_snapshot(self, tmp_path):
        result = CliRunner().invoke(cli, ["search", "cat", "--snapshot", str(tmp_path / "absent.json")])
        assert result.exit_code != 0

    @pytest.mark.parametrize("command", ["search", "status"])
    def test_invalid_config_value(self, tmp_path, command):
        config = tmp_path / "bad.yaml"
        config.write_text("fusion:\n  alpha: 3\n", encoding="utf-8")
        snapshot = tmp_path / "index.json"
        snapshot.write_text("{}", encoding="utf-8")
        args = ["--config", str(config), "--log-level", "error", command]
        if command == "search":
            args.append("cat")

        result = CliRunner().invoke(cli, args + ["--snapshot", str(snapshot)])

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert result.exception is None or isinstance(result.exception, SystemExit)

    def test_version(self):
        result = invoke("--version")
        assert result.exit_code == 0
        assert "hybridrag" in result.stdout


class TestLoadDocuments:
    """Test document sources"""

    def test_directory_of_text_files(self, tmp_path):
        (tmp_path / "alpha.txt").write_text("Alpha title\nfirst body", encoding="utf-8")
        (tmp_path / "beta.md").write_text("# Beta\nsecond body", encoding="utf-8")

        documents = load_documents(tmp_path)

        assert [d.id for d in documents] == ["alpha", "beta"]
        assert documents[0].title == "Alpha title"
        assert documents[1].title == "Beta"
        assert documents[1].text == "second body"

    def test_jsonl(self, tmp_path):
        path = tmp_path / "docs.jsonl"
        path.write_text("\n".join(json.dumps(d) for d in DOCUMENTS), encoding="utf-8")
        assert [d.id for d in load_documents(path)] == ["D1", "D2", "D3"]
