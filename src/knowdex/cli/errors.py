"""knowdex rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from knowdex.cli.errors import err_no_db
    console.print(err_no_db(str(db)))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "azure": "AZURE_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "voyage": "VOYAGE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".knowdex.db") -> str:
    """No .knowdex.db found."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  knowdex init"
    )


def err_no_sources() -> str:
    """Nothing to index: no CLI sources and no sources: in knowdex.yaml."""
    return (
        "[red]Error:[/] No knowledge sources to index.\n"
        "  Pass --folder, --file or --url, or add a sources: list to knowdex.yaml:\n"
        "    sources:\n"
        "      - type: local_folders\n"
        "        paths: [docs]"
    )


def err_no_watchable_sources() -> str:
    return (
        "[red]Error:[/] No folder sources to watch.\n"
        "  Only local folders are watched. Pass --folder PATH or add a\n"
        "  'local_folders' entry to the sources: list in knowdex.yaml."
    )


def err_config(message: str, config_path: str = "knowdex.yaml") -> str:
    """knowdex.yaml (or the global config) holds an invalid value."""
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        f"  Fix the value in {config_path} and retry."
    )


def err_indexing_failed(source_type: str, reason: str) -> str:
    """A full index pass aborted."""
    return (
        f"[red]Error:[/] Indexing {source_type} failed: {reason}\n"
        "  Unchanged and already-embedded resources are kept.\n"
        "  Fix the cause and run:  knowdex index"
    )


def err_unsupported_source(kind: str, known: list[str]) -> str:
    return (
        f"[red]Error:[/] No indexer available for source type '{kind}'.\n"
        f"  Known types: {', '.join(known) if known else '(none)'}"
    )


def warn_watch_stopped(reason: str) -> str:
    """Shown when the live watch ends on its own (root deleted, OS limit)."""
    return (
        f"[yellow]⚠[/] Watching stopped: {reason}\n"
        "  Restore the folder, then run:  knowdex watch"
    )


def warn_embedding_model_mismatch(db_models: list[str], config_model: str, count: int) -> str:
    """Some state rows were embedded with a model other than the configured one."""
    return (
        f"[yellow]⚠[/] Embedding model mismatch for {count} resources.\n"
        f"  Database has:  {', '.join(db_models) or '(unknown)'}\n"
        f"  Config has:    {config_model}\n"
        "  Their vectors are not searchable with the configured model.\n"
        "  Run:  knowdex index   (re-embeds them)"
    )
