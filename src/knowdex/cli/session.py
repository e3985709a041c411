"""Shared CLI plumbing: config, database connections, stores, model.

The state store and the vector store get separate connections to the same
database file, so a long vector transaction never holds the state store's
lock (and vice versa).
"""

from __future__ import annotations

import logging
import os
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path

import typer
from rich.console import Console

from knowdex.cli.errors import err_config, err_no_api_key, err_no_db
from knowdex.config import PROJECT_CONFIG_NAME, ConfigError, KnowdexConfig, load_config
from knowdex.db.connection import Database
from knowdex.db.state import IndexStateStore
from knowdex.db.vectors import SqliteVecEmbeddingStore, VectorStoreError
from knowdex.embedding import EmbeddingModel, LiteLLMEmbeddingModel, provider_of, validate_api_key
from knowdex.events import EventBus
from knowdex.indexing.coordinator import IndexingContext
from knowdex.sources import (
    KnowledgeSourceConfig,
    LocalFilesSource,
    LocalFoldersSource,
    UrlSource,
    make_source,
    merge_sources,
    source_from_dict,
)

console = Console()
logger = logging.getLogger(__name__)

DEFAULT_DB = Path(".knowdex.db")


def open_db(db_path: Path) -> sqlite3.Connection:
    """Open (or create) the project database and run migrations."""
    return Database(db_path).connect(migrate=True)


def load_project_config(project_dir: Path) -> KnowdexConfig:
    """load_config() for a command; prints an actionable error and exits on failure."""
    try:
        return load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc), str(project_dir / PROJECT_CONFIG_NAME)))
        raise typer.Exit(1) from exc


@dataclass
class ProjectSession:
    project_dir: Path
    db_path: Path
    config: KnowdexConfig
    state_conn: sqlite3.Connection
    vector_conn: sqlite3.Connection
    state_store: IndexStateStore
    embedding_store: SqliteVecEmbeddingStore
    embedding_model: EmbeddingModel
    event_bus: EventBus = field(default_factory=EventBus)

    @property
    def project_id(self) -> str:
        return self.config.project.id

    def context(self, extra_excludes: list[str] | tuple[str, ...] = ()) -> IndexingContext:
        return IndexingContext(
            project_id=self.config.project.id,
            project_name=self.config.project.name,
            embedding_model=self.embedding_model,
            embedding_store=self.embedding_store,
            state_store=self.state_store,
            config=self.config,
            event_bus=self.event_bus,
            extra_excludes=tuple(extra_excludes),
        )

    def sources(
        self,
        folders: list[str] | None = None,
        files: list[str] | None = None,
        urls: list[str] | None = None,
    ) -> list[KnowledgeSourceConfig]:
        """Sources from knowdex.yaml plus CLI flags, one config per kind.

        Relative paths in knowdex.yaml resolve against the project directory;
        relative CLI paths resolve against the working directory.
        """
        sources: list[KnowledgeSourceConfig] = []
        for raw in self.config.sources:
            try:
                source = source_from_dict(raw)
            except ConfigError as exc:
                console.print(err_config(str(exc), str(self.project_dir / PROJECT_CONFIG_NAME)))
                raise typer.Exit(1) from exc
            if isinstance(source, (LocalFoldersSource, LocalFilesSource)):
                source = make_source(
                    source.kind,
                    [os.path.abspath(self.project_dir / p) for p in source.resource_identifiers],
                    source.options,
                )
            sources.append(source)
        if folders:
            sources.append(
                make_source(LocalFoldersSource.kind, [os.path.abspath(p) for p in folders])
            )
        if files:
            sources.append(make_source(LocalFilesSource.kind, [os.path.abspath(p) for p in files]))
        if urls:
            sources.append(make_source(UrlSource.kind, urls))
        return merge_sources(sources)

    def require_api_key(self) -> None:
        """Exit with an actionable message if the embedding provider has no key."""
        model = self.config.embedding.model
        try:
            validate_api_key(model)
        except EnvironmentError as exc:
            console.print(err_no_api_key(provider_of(model)))
            raise typer.Exit(1) from exc

    def close(self) -> None:
        self.vector_conn.close()
        self.state_conn.close()


def open_session(
    db: Path,
    project_dir: Path,
    *,
    must_exist: bool = False,
) -> ProjectSession:
    """Load config and open both stores for *db*.

    Args:
        db: Database file; created unless *must_exist*.
        project_dir: Directory holding knowdex.yaml.
        must_exist: Exit with an error when *db* does not exist yet.
    """
    if must_exist and not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    cfg = load_project_config(project_dir)
    model = LiteLLMEmbeddingModel(cfg.embedding)

    state_conn = open_db(db)
    vector_conn = Database(db).connect()
    try:
        embedding_store = SqliteVecEmbeddingStore(vector_conn, model.model_name, model.dimensions)
    except VectorStoreError as exc:
        vector_conn.close()
        state_conn.close()
        console.print(f"[red]Error:[/] {exc}")
        raise typer.Exit(1) from exc

    logger.debug("Opened %s for project %s", db, cfg.project.id)
    return ProjectSession(
        project_dir=project_dir,
        db_path=db,
        config=cfg,
        state_conn=state_conn,
        vector_conn=vector_conn,
        state_store=IndexStateStore(state_conn),
        embedding_store=embedding_store,
        embedding_model=model,
    )
