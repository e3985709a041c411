"""knowdex init — scaffold a project.

Creates:
  .knowdex.db              — empty index with schema
  knowdex.yaml             — project config (project:, embedding:, sources:)
  .gitignore               — ignores .knowdex.db*
  ~/.knowdex/config.yaml   — global model config (created once, mode 0o600)
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Annotated

import typer
import yaml
from rich.console import Console

from knowdex.cli.session import open_db
from knowdex.config import PROJECT_CONFIG_NAME, ensure_global_config

console = Console()

_DB_NAME = ".knowdex.db"
_GITIGNORE_ENTRY = ".knowdex.db*"


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = Path("."),
    name: Annotated[
        str | None,
        typer.Option("--name", help="Project name (defaults to the directory name)."),
    ] = None,
    folder: Annotated[
        list[str] | None,
        typer.Option("--folder", "-f", help="Folder source to add to knowdex.yaml (repeatable)."),
    ] = None,
) -> None:
    """Initialize a knowdex project."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)
    project_name = name or project_dir.name

    console.print(f"\n[bold]Creating scaffold in {project_dir} …[/]\n")

    db_path = project_dir / _DB_NAME
    existed = db_path.exists()
    open_db(db_path).close()
    console.print(f"  [green]✓[/] {_DB_NAME}" + (" (existing data kept)" if existed else ""))

    _create_project_yaml(project_dir, project_name, folder or [])
    _update_gitignore(project_dir)

    cfg_path = ensure_global_config()
    console.print(f"  [green]✓[/] {cfg_path} (global config)")

    console.print(f"\n[bold green]✓ Project '{project_name}' initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. export OPENAI_API_KEY=sk-...        (or set embedding.model)")
    console.print("  2. knowdex index --folder <path>        (build the index)")
    console.print("  3. knowdex watch                        (keep it up to date)")


def _project_id(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "project"


def _create_project_yaml(project_dir: Path, project_name: str, folders: list[str]) -> None:
    target = project_dir / PROJECT_CONFIG_NAME
    if target.exists():
        console.print(f"  [dim]↷ {PROJECT_CONFIG_NAME} exists — left unchanged[/]")
        return

    data: dict = {
        "project": {"id": _project_id(project_name), "name": project_name},
        "embedding": {"model": "openai/text-embedding-3-small"},
    }
    if folders:
        data["sources"] = [{"type": "local_folders", "paths": list(folders)}]

    header = (
        "# knowdex project configuration.\n"
        "# Sources: local_folders (watched), local_files, urls.\n"
        "#   sources:\n"
        "#     - type: local_folders\n"
        "#       paths: [docs]\n"
    )
    target.write_text(header + yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    console.print(f"  [green]✓[/] {PROJECT_CONFIG_NAME}")


def _update_gitignore(project_dir: Path) -> None:
    gitignore = project_dir / ".gitignore"
    existing = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
    if _GITIGNORE_ENTRY in existing.splitlines():
        return
    prefix = "" if not existing or existing.endswith("\n") else "\n"
    gitignore.write_text(existing + prefix + _GITIGNORE_ENTRY + "\n", encoding="utf-8")
    console.print("  [green]✓[/] .gitignore")
