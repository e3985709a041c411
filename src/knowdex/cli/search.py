"""knowdex search — semantic search over the indexed segments."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from knowdex.cli.session import DEFAULT_DB, open_session
from knowdex.db.models import SearchHit
from knowdex.db.vectors import VectorStoreError
from knowdex.embedding import EmbeddingError

console = Console()

_SNIPPET_CHARS = 160


def search_cmd(
    query: Annotated[str, typer.Argument(help="Natural-language query.")],
    k: Annotated[int, typer.Option("--top", "-k", help="Number of results.")] = 5,
    source_type: Annotated[
        str | None,
        typer.Option("--source-type", help="Restrict to folders, files, or urls."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .knowdex.db."),
    ] = DEFAULT_DB,
    project_dir: Annotated[
        Path,
        typer.Option("--project-dir", help="Directory holding knowdex.yaml."),
    ] = Path("."),
) -> None:
    """Find the segments closest to QUERY."""
    session = open_session(db, project_dir, must_exist=True)
    try:
        session.require_api_key()
        metadata_filter = {"project_id": session.project_id}
        if source_type:
            metadata_filter["source_type"] = source_type
        try:
            vector = session.embedding_model.embed(query)
            hits = session.embedding_store.search(vector, k=k, metadata_filter=metadata_filter)
        except (EmbeddingError, VectorStoreError) as exc:
            console.print(f"[red]Error:[/] {exc}")
            raise typer.Exit(1) from exc
    finally:
        session.close()

    if not hits:
        console.print("[yellow]No results.[/]  Run:  knowdex index")
        return

    table = Table(show_lines=True)
    table.add_column("#", justify="right")
    table.add_column("Distance", justify="right")
    table.add_column("Location")
    table.add_column("Text")
    for rank, hit in enumerate(hits, start=1):
        table.add_row(str(rank), f"{hit.distance:.4f}", location(hit), _snippet(hit.segment.text))
    console.print(table)


def location(hit: SearchHit) -> str:
    """``path:start-end`` for line-tracked segments, ``path [chunk i/n]`` otherwise."""
    segment = hit.segment
    start, end = segment.start_line, segment.end_line
    if start is not None and end is not None:
        return f"{segment.file_path}:{start}-{end}"
    return f"{segment.file_path} [chunk {segment.chunk_index + 1}/{segment.chunk_total}]"


def _snippet(text: str) -> str:
    flat = " ".join(text.split())
    if len(flat) <= _SNIPPET_CHARS:
        return flat
    return flat[: _SNIPPET_CHARS - 1] + "…"
