"""knowdex clear — drop indexed segments and change-tracking state.

The next ``knowdex index`` re-embeds everything that was cleared.

Usage:
  knowdex clear --yes
  knowdex clear --source-type urls --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from knowdex.cli.session import DEFAULT_DB, open_session
from knowdex.sources import LocalFilesSource, LocalFoldersSource, UrlSource

console = Console()

_SOURCE_TYPES = (LocalFoldersSource.source_type, LocalFilesSource.source_type, UrlSource.source_type)


def clear_cmd(
    source_type: Annotated[
        str | None,
        typer.Option("--source-type", help="Only clear folders, files, or urls."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .knowdex.db."),
    ] = DEFAULT_DB,
    project_dir: Annotated[
        Path,
        typer.Option("--project-dir", help="Directory holding knowdex.yaml."),
    ] = Path("."),
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove indexed segments and state for the project."""
    if source_type is not None and source_type not in _SOURCE_TYPES:
        console.print(
            f"[red]Error:[/] Unknown source type '{source_type}'.\n"
            f"  Use one of: {', '.join(_SOURCE_TYPES)}"
        )
        raise typer.Exit(1)

    session = open_session(db, project_dir, must_exist=True)
    try:
        pid = session.project_id
        metadata_filter = {"project_id": pid}
        if source_type is not None:
            metadata_filter["source_type"] = source_type
        segments = session.embedding_store.count(metadata_filter)
        files = session.state_store.file_count(pid, source_type)
        scope = source_type or "all sources"

        console.print(f"\nClear [bold]{scope}[/] of project [bold]{pid}[/]")
        console.print(f"  Resources: {files}  |  Segments: {segments:,}")
        if not yes and not typer.confirm("Confirm?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        # State first: leftover segments without a state row are replaced
        # by the next pass, leftover rows without segments would not be.
        if source_type is None:
            session.state_store.clear_project(pid)
        else:
            session.state_store.clear_project_source(pid, source_type)
        removed = session.embedding_store.delete_where(metadata_filter)
    finally:
        session.close()

    console.print(f"[green]✓[/] Removed {removed:,} segments and {files} state rows.")
