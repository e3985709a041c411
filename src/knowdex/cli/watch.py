"""knowdex watch — index folder sources, then keep the index live.

The initial full pass must succeed before watching begins. Afterwards every
create, modify, or delete below a watched folder re-indexes exactly that
file. Ctrl+C stops watching.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from knowdex.cli.errors import err_indexing_failed, err_no_watchable_sources, warn_watch_stopped
from knowdex.cli.index import run_index_pass
from knowdex.cli.session import DEFAULT_DB, open_session
from knowdex.events import WatchingFailed
from knowdex.indexing.coordinator import IndexingCoordinator
from knowdex.indexing.registry import default_registry

console = Console()


def watch_cmd(
    folder: Annotated[
        list[str] | None,
        typer.Option("--folder", "-f", help="Folder to watch (repeatable)."),
    ] = None,
    exclude: Annotated[
        list[str] | None,
        typer.Option("--exclude", help="Exclude pattern (repeatable)."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .knowdex.db (created if missing)."),
    ] = DEFAULT_DB,
    project_dir: Annotated[
        Path,
        typer.Option("--project-dir", help="Directory holding knowdex.yaml."),
    ] = Path("."),
    duration: Annotated[
        float,
        typer.Option("--duration", hidden=True, help="Stop after N seconds (for testing)."),
    ] = 0.0,
) -> None:
    """Index folder sources and re-index files as they change."""
    session = open_session(db, project_dir)
    coordinators: list[IndexingCoordinator] = []
    watch_failed = threading.Event()

    def _on_watch_failed(event: WatchingFailed) -> None:
        console.print(warn_watch_stopped(event.error_message))
        watch_failed.set()

    session.event_bus.subscribe(WatchingFailed, _on_watch_failed)
    try:
        sources = [s for s in session.sources(folder) if s.watchable]
        if not sources:
            console.print(err_no_watchable_sources())
            raise typer.Exit(1)
        session.require_api_key()

        registry = default_registry()
        for source in sources:
            coordinator = registry.create(source, session.context(exclude or []))
            coordinators.append(coordinator)
            if not run_index_pass(coordinator, session.event_bus):
                console.print(
                    err_indexing_failed(
                        coordinator.source_type, coordinator.progress.error or "unknown error"
                    )
                )
                raise typer.Exit(1)
            if not coordinator.start_watching():
                raise typer.Exit(1)

        roots = [r for s in sources for r in s.resource_identifiers]
        console.print(f"\n[bold]Watching {len(roots)} folder(s).[/] Press Ctrl+C to stop.")
        for root in roots:
            console.print(f"  [dim]{root}[/]")

        deadline = time.monotonic() + duration if duration > 0 else None
        try:
            while not watch_failed.wait(timeout=0.2):
                if deadline is not None and time.monotonic() >= deadline:
                    break
        except KeyboardInterrupt:
            console.print("\n[dim]Stopping…[/]")
    finally:
        for coordinator in coordinators:
            coordinator.close()
        session.close()

    if watch_failed.is_set():
        raise typer.Exit(1)
    console.print("[green]✓[/] Stopped watching.")
