"""Command line interface for searchsync."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from searchsync.config import AppConfig
from searchsync.errors import SearchSyncError
from searchsync.index.catalog import build_catalog, parse_schema, text_index_spec
from searchsync.index.seeder import seed
from searchsync.models import Catalog
from searchsync.update.rewriter import NO_OP, rewrite
from searchsync.utils.text import search_text
from searchsync.web.app import app as web_app


console = Console()
app = typer.Typer(help="searchsync - keep derived search-token fields in sync")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _parse_json(raw: str, what: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"Invalid JSON for {what}: {exc}") from exc


def _load_catalog(schema: Optional[Path]) -> Catalog:
    config = AppConfig(schema_path=schema)
    resolved = config.resolve_schema_path(Path.cwd())
    if resolved is None:
        raise typer.BadParameter("No schema given. Use --schema or set SEARCHSYNC_SCHEMA.")
    if not resolved.exists():
        raise typer.BadParameter(f"Schema not found: {resolved}")
    data = _parse_json(resolved.read_text(encoding="utf-8"), str(resolved))
    try:
        return build_catalog(parse_schema(data), prefix=config.derived_prefix)
    except SearchSyncError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _print_json(data: Any) -> None:
    console.print_json(json.dumps(data, ensure_ascii=False))


@app.command()
def tokenize(text: str = typer.Argument(..., help="Text to turn into search tokens")) -> None:
    """Print the search tokens of a text."""
    tokens = search_text(text)
    if not tokens:
        console.print("[yellow]No tokens.[/yellow]")
        return
    console.print(tokens)


@app.command()
def catalog(
    schema: Path = typer.Option(None, "--schema", "-s", help="Schema description (JSON)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """List the tracked fields of a schema."""
    _setup_logging(verbose)
    fields = _load_catalog(schema)
    if not fields:
        console.print("[yellow]No tracked fields, search is disabled for this schema.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Path")
    table.add_column("Derived path")
    table.add_column("Arrays")
    table.add_column("Tracked")
    table.add_column("Weight")

    for field in fields:
        table.add_row(
            field.path,
            field.derived_path,
            ", ".join(field.array_segments) or "-",
            "yes" if field.track_changes else "no",
            f"{field.weight:g}",
        )
    console.print(table)


@app.command("index-spec")
def index_spec(
    schema: Path = typer.Option(None, "--schema", "-s", help="Schema description (JSON)"),
) -> None:
    """Print the weighted text index covering the tracked fields."""
    spec = text_index_spec(_load_catalog(schema), AppConfig().index_name)
    if spec is None:
        console.print("[yellow]No tracked fields, no index needed.[/yellow]")
        return
    _print_json(spec)


@app.command("rewrite")
def rewrite_update(
    update: str = typer.Argument(..., help="Update document or pipeline (JSON)"),
    schema: Path = typer.Option(None, "--schema", "-s", help="Schema description (JSON)"),
    filter_: str = typer.Option("{}", "--filter", help="Update filter (JSON)"),
    array_filters: Optional[str] = typer.Option(None, "--array-filters", help="Array filters (JSON list)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Rewrite an update so it recomputes the search fields it touches."""
    _setup_logging(verbose)
    fields = _load_catalog(schema)
    parsed_filters = _parse_json(array_filters, "--array-filters") if array_filters else None
    try:
        result = rewrite(
            fields,
            _parse_json(filter_, "--filter"),
            _parse_json(update, "update"),
            parsed_filters,
        )
    except SearchSyncError as exc:
        raise typer.BadParameter(str(exc)) from exc

    if result is NO_OP:
        console.print("[yellow]No tracked field touched, update unchanged.[/yellow]")
        return
    _print_json(result)


@app.command("seed")
def seed_document(
    document: str = typer.Argument(..., help="Document to insert (JSON)"),
    schema: Path = typer.Option(None, "--schema", "-s", help="Schema description (JSON)"),
) -> None:
    """Print a document with its derived search fields filled in."""
    fields = _load_catalog(schema)
    doc = _parse_json(document, "document")
    if not isinstance(doc, dict):
        raise typer.BadParameter("Document must be a JSON object")
    _print_json(seed(doc, fields))


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the HTTP rewriting service."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    console.print(f"Starting searchsync service on http://{host}:{port}")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
