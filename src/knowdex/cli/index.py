"""knowdex index — run a full incremental pass over every knowledge source.

Only new and changed resources are extracted and embedded; resources that
disappeared are removed from the index. Re-running on unchanged sources makes
no embedding calls.

Usage:
  knowdex index                          (sources from knowdex.yaml)
  knowdex index --folder docs --url https://example.com/guide
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

from knowdex.cli.errors import err_indexing_failed, err_no_sources, err_unsupported_source
from knowdex.cli.session import DEFAULT_DB, open_session
from knowdex.events import (
    EventBus,
    IndexingCompleted,
    IndexingEvent,
    IndexingInProgress,
    IndexingStarted,
)
from knowdex.indexing.coordinator import IndexingCoordinator
from knowdex.indexing.registry import default_registry

console = Console()


def index_cmd(
    folder: Annotated[
        list[str] | None,
        typer.Option("--folder", "-f", help="Folder to index recursively (repeatable)."),
    ] = None,
    file: Annotated[
        list[str] | None,
        typer.Option("--file", help="Single file to index (repeatable)."),
    ] = None,
    url: Annotated[
        list[str] | None,
        typer.Option("--url", "-u", help="Web page to index (repeatable)."),
    ] = None,
    exclude: Annotated[
        list[str] | None,
        typer.Option("--exclude", help="Exclude pattern, e.g. 'drafts/' or '*.csv' (repeatable)."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .knowdex.db (created if missing)."),
    ] = DEFAULT_DB,
    project_dir: Annotated[
        Path,
        typer.Option("--project-dir", help="Directory holding knowdex.yaml."),
    ] = Path("."),
) -> None:
    """Index knowledge sources; unchanged resources are skipped."""
    session = open_session(db, project_dir)
    failed = False
    try:
        sources = session.sources(folder, file, url)
        if not sources:
            console.print(err_no_sources())
            raise typer.Exit(1)
        session.require_api_key()

        registry = default_registry()
        for source in sources:
            if not registry.has_provider(source.kind):
                console.print(err_unsupported_source(source.kind, registry.kinds()))
                failed = True
                continue
            with registry.create(source, session.context(exclude or [])) as coordinator:
                if not run_index_pass(coordinator, session.event_bus):
                    console.print(
                        err_indexing_failed(
                            coordinator.source_type, coordinator.progress.error or "unknown error"
                        )
                    )
                    failed = True

        total = session.embedding_store.count({"project_id": session.project_id})
        files = session.state_store.file_count(session.project_id)
        console.print(f"\n[bold]{files}[/] resources · [bold]{total:,}[/] segments in {db}")
    finally:
        session.close()

    if failed:
        raise typer.Exit(1)


def run_index_pass(coordinator: IndexingCoordinator, event_bus: EventBus) -> bool:
    """Run ``start_indexing()`` with a progress bar driven by indexing events."""
    console.print(f"\n[bold]→ {coordinator.source_type}[/]")
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        transient=True,
        console=console,
    ) as prog:
        task = prog.add_task("Scanning…", total=None)

        def _on_event(event: IndexingEvent) -> None:
            if isinstance(event, IndexingStarted):
                prog.update(task, description="Indexing…", total=event.estimated_files)
            elif isinstance(event, IndexingInProgress):
                prog.update(task, completed=event.files_indexed, total=event.total_files)
            elif isinstance(event, IndexingCompleted):
                prog.update(task, completed=event.files_indexed + event.files_failed)

        event_bus.subscribe(IndexingEvent, _on_event)
        try:
            ok = coordinator.start_indexing()
        finally:
            event_bus.unsubscribe(IndexingEvent, _on_event)

    progress = coordinator.progress
    if ok:
        indexed = progress.processed_files - progress.failed_files
        line = f"  [green]✓[/] {indexed} resources up to date"
        if progress.failed_files:
            line += f" · [yellow]{progress.failed_files} skipped[/] (see log)"
        console.print(line)
    return ok
