"""knowdex status — what is indexed, per source type."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from knowdex.cli.errors import warn_embedding_model_mismatch
from knowdex.cli.session import DEFAULT_DB, ProjectSession, open_session
from knowdex.sources import LocalFilesSource, LocalFoldersSource, UrlSource

console = Console()

_SOURCE_TYPES = (LocalFoldersSource.source_type, LocalFilesSource.source_type, UrlSource.source_type)


def status_cmd(
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .knowdex.db."),
    ] = DEFAULT_DB,
    project_dir: Annotated[
        Path,
        typer.Option("--project-dir", help="Directory holding knowdex.yaml."),
    ] = Path("."),
) -> None:
    """Show indexed resources and segments for the project."""
    session = open_session(db, project_dir, must_exist=True)
    try:
        _show_project_panel(session)
        _show_index_table(session)
        _show_sources(session)
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def _show_project_panel(session: ProjectSession) -> None:
    cfg = session.config
    size_mb = session.db_path.stat().st_size / (1024 * 1024)
    lines = [
        f"Project:   [bold]{cfg.project.name}[/] ({cfg.project.id})",
        f"Database:  {session.db_path} ({size_mb:.1f} MB)",
        f"Model:     {session.embedding_model.model_name} "
        f"({session.embedding_model.dimensions} dims)",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Project[/]", expand=False))


def _show_index_table(session: ProjectSession) -> None:
    table = Table(title="Index", show_lines=False)
    table.add_column("Source type")
    table.add_column("Resources", justify="right")
    table.add_column("Segments", justify="right")
    table.add_column("Last indexed")

    pid = session.project_id
    model = session.embedding_model.model_name
    stale: list[str] = []
    for source_type in _SOURCE_TYPES:
        states = []
        for state in session.state_store.get_file_states(pid, source_type):
            if state.embedding_model == model:
                states.append(state)
            else:
                stale.append(state.embedding_model)
        segments = session.embedding_store.count({"project_id": pid, "source_type": source_type})
        if not states and not segments:
            continue
        last = max((s.indexed_at or "" for s in states), default="")
        table.add_row(source_type, str(len(states)), f"{segments:,}", last[:19] or "—")

    if stale:
        console.print(warn_embedding_model_mismatch(sorted(set(stale)), model, len(stale)))
    if table.row_count == 0:
        console.print("[yellow]Nothing indexed yet.[/]\n  Run:  knowdex index --folder <path>")
        return
    console.print(table)


def _show_sources(session: ProjectSession) -> None:
    sources = session.sources()
    if not sources:
        return
    console.print("\n[bold]Configured sources[/]")
    for source in sources:
        marker = " [dim](watched)[/]" if source.watchable else ""
        console.print(f"  {source.kind}{marker}")
        for identifier in source.resource_identifiers:
            console.print(f"    {identifier}")
