"""
hybridrag CLI

Commands:
    hybridrag index DOCUMENTS --snapshot index.json   build indexes, save a snapshot
    hybridrag search "query" --snapshot index.json    query a saved snapshot
    hybridrag status --snapshot index.json            show index statistics

DOCUMENTS is a JSON file (a list of {"id", "title", "text"} objects), a
JSONL file (one object per line) or a directory of .txt / .md files (the
file stem is the id, the first line the title).
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import click
import structlog

from hybridrag import __version__
from hybridrag.config.loader import SettingsStore
from hybridrag.core.engine import HybridSearchEngine, create_engine
from hybridrag.core.models import SearchMode, SearchOptions
from hybridrag.exceptions import HybridRAGError
from hybridrag.models import Document


# ============================================================================
# Helper Functions
# ============================================================================

def configure_logging(level: str) -> None:
    """Console logging on stderr, so JSON output on stdout stays parseable."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper())),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )
    logging.getLogger("hybridrag").setLevel(getattr(logging, level.upper()))


def run_async(coro):
    """Run an async coroutine to completion."""
    return asyncio.run(coro)


def load_documents(path: Path) -> List[Document]:
    """Read documents from a JSON / JSONL file or a directory of text files."""
    if path.is_dir():
        documents = []
        for file in sorted(list(path.glob("*.txt")) + list(path.glob("*.md"))):
            content = file.read_text(encoding="utf-8")
            title, _, body = content.partition("\n")
            documents.append(Document(id=file.stem, title=title.strip().lstrip("# "), text=body.strip()))
        return documents

    text = path.read_text(encoding="utf-8")
    if path.suffix == ".jsonl":
        records = [json.loads(line) for line in text.splitlines() if line.strip()]
    else:
        records = json.loads(text)
        if isinstance(records, dict):
            records = records.get("documents", [])
    return [Document.from_dict(record) for record in records]


def build_engine(config: Optional[str]) -> HybridSearchEngine:
    return create_engine(settings=SettingsStore(config).get_settings())


# ============================================================================
# CLI
# ============================================================================

@click.group()
@click.version_option(version=__version__, prog_name="hybridrag")
@click.option("--config", "config", type=click.Path(exists=True, dir_okay=False), default=None,
              help="YAML settings file (default: $HYBRIDRAG_CONFIG or built-in defaults)")
@click.option("--log-level", default="warning",
              type=click.Choice(["debug", "info", "warning", "error"]), help="Log verbosity")
@click.pass_context
def cli(ctx, config, log_level):
    """hybridrag - hybrid lexical / vector / graph retrieval."""
    configure_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command("index")
@click.argument("documents", type=click.Path(exists=True, path_type=Path))
@click.option("--snapshot", "snapshot", type=click.Path(path_type=Path), required=True,
              help="Snapshot file to write")
@click.pass_context
def index_command(ctx, documents, snapshot):
    """Index DOCUMENTS and save a snapshot.

    Example:
        hybridrag index notes/ --snapshot index.json
    """
    try:
        docs = load_documents(documents)
        engine = build_engine(ctx.obj["config"])

        async def build():
            try:
                report = await engine.sync_all(docs)
                checksum = engine.save_snapshot(snapshot)
                return report, checksum
            finally:
                await engine.close()

        report, checksum = run_async(build())
    except (HybridRAGError, OSError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Indexed {report.indexed} documents ({report.chunks} chunks) in {report.duration_ms:.0f} ms")
    for failure in report.failures:
        click.echo(f"  skipped {failure.doc_id}: {failure.error}", err=True)
    click.echo(f"Snapshot: {snapshot} (sha256 {checksum[:12]})")


@cli.command("search")
@click.argument("query")
@click.option("--snapshot", "snapshot", type=click.Path(exists=True, path_type=Path), required=True,
              help="Snapshot file to query")
@click.option("--mode", type=click.Choice([m.value for m in SearchMode]), default=SearchMode.HYBRID.value,
              help="Ranking strategy")
@click.option("--alpha", type=click.FloatRange(0.0, 1.0), default=None, help="Vector weight (hybrid mode)")
@click.option("--limit", default=10, type=click.IntRange(min=1), help="Maximum number of results")
@click.option("--scores", is_flag=True, help="Show per-component scores")
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), default="table",
              help="Output format")
@click.pass_context
def search_command(ctx, query, snapshot, mode, alpha, limit, scores, output_format):
    """Search a saved snapshot.

    Example:
        hybridrag search "cat pets" --snapshot index.json --alpha 0.3
    """
    try:
        engine = build_engine(ctx.obj["config"])
        options = SearchOptions(mode=mode, alpha=alpha, limit=limit, include_component_scores=scores)

        async def run():
            try:
                await engine.load_snapshot(snapshot)
                return await engine.search(query, options)
            finally:
                await engine.close()

        results = run_async(run())
    except (HybridRAGError, OSError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if output_format == "json":
        click.echo(json.dumps([r.to_dict() for r in results], indent=2, ensure_ascii=False))
        return

    if not results:
        click.echo("No results.")
        return
    for rank, result in enumerate(results, start=1):
        click.echo(f"{rank:>2}. [{result.score:.3f}] {result.id}  {result.title}")
        click.echo(f"    {result.snippet}")
        if result.component_scores:
            parts = ", ".join(
                f"{name}={value:.3f}" for name, value in result.component_scores.items()
                if isinstance(value, float)
            )
            click.echo(f"    ({parts})")


@cli.command("status")
@click.option("--snapshot", "snapshot", type=click.Path(exists=True, path_type=Path), required=True,
              help="Snapshot file to inspect")
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), default="table",
              help="Output format")
@click.pass_context
def status_command(ctx, snapshot, output_format):
    """Show statistics of a saved snapshot."""
    try:
        engine = build_engine(ctx.obj["config"])

        async def run():
            try:
                restored = await engine.load_snapshot(snapshot)
                return restored, engine.status()
            finally:
                await engine.close()

        restored, status = run_async(run())
    except (HybridRAGError, OSError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    data = status.to_dict()
    data["restored"] = restored
    if output_format == "json":
        click.echo(json.dumps(data, indent=2, ensure_ascii=False))
        return

    click.echo(f"Documents:  {status.documents}")
    click.echo(f"Chunks:     {status.chunks}")
    click.echo(f"Vocabulary: {status.lexical['vocabulary_size']} terms "
               f"(avg doc length {status.lexical['average_document_length']:.1f})")
    if status.vector is not None:
        click.echo(f"Vectors:    {status.vector['node_count']} nodes, state={status.vector['state']}, "
                   f"max level={status.vector['max_level']}")
    if status.graph is not None:
        edges = ", ".join(f"{kind}={count}" for kind, count in status.graph["edges"].items())
        click.echo(f"Graph:      {status.graph['nodes']} nodes ({edges})")
    click.echo(f"Provider:   {status.provider['name'] if status.provider else 'none (lexical only)'}")
    if not restored:
        click.echo("Note: snapshot could not be restored as saved, indexes were rebuilt", err=True)


if __name__ == "__main__":
    cli()
