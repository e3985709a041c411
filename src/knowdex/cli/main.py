"""knowdex CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from knowdex.cli.clear import clear_cmd
from knowdex.cli.index import index_cmd
from knowdex.cli.init import init_cmd
from knowdex.cli.search import search_cmd
from knowdex.cli.status import status_cmd
from knowdex.cli.watch import watch_cmd


def _version() -> str:
    try:
        return importlib.metadata.version("knowdex")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"knowdex {_version()}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(show_path=False, rich_tracebacks=verbose)],
        force=True,
    )
    # litellm and httpx are chatty at INFO.
    for name in ("LiteLLM", "litellm", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)


app = typer.Typer(
    name="knowdex",
    help=(
        "knowdex — incremental indexing for RAG knowledge sources.\n\n"
        "  knowdex index   Embed new and changed files, folders and web pages.\n"
        "  knowdex watch   Keep folder sources indexed as files change."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log per-file decisions."),
    ] = False,
) -> None:
    """knowdex — incremental indexing for RAG knowledge sources."""
    _configure_logging(verbose)


app.command("init")(init_cmd)
app.command("index")(index_cmd)
app.command("watch")(watch_cmd)
app.command("status")(status_cmd)
app.command("search")(search_cmd)
app.command("clear")(clear_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed knowdex version."""
    typer.echo(f"knowdex {_version()}")


if __name__ == "__main__":
    app()
