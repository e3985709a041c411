"""knowdex configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (KNOWDEX_EMBEDDING_MODEL, KNOWDEX_MAX_FILE_BYTES)
  3. Per-project knowdex.yaml  (next to .knowdex.db)
  4. Global ~/.knowdex/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".knowdex"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
PROJECT_CONFIG_NAME: str = "knowdex.yaml"

# Fields that suggest an API key are forbidden in config files.
# Does NOT match legitimate config keys like max_chars_per_chunk or num_retries.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token, auth_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # my_secret, client_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["project", "embedding", "chunking", "indexing", "watching", "sources"]
)

DEFAULT_COMMON_EXCLUDES: tuple[str, ...] = (
    ".git/",
    ".svn/",
    ".hg/",
    ".idea/",
    ".vscode/",
    ".history/",
    ".DS_Store",
    "*.log",
    "*.tmp",
    "*.temp",
    "*.swp",
    "*.bak",
    ".knowdex.db*",
)

_FILTER_NAMES: tuple[str, ...] = (
    "gitignore",
    "hidden",
    "projecttype",
    "binary",
    "filesize",
    "custom",
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class ProjectCfg:
    """Project identity (knowdex.yaml: project:).

    Attributes:
        id: Stable project identifier used to scope state rows and segments.
            Defaults to the project directory name.
        name: Human-readable name shown in events and the CLI.
    """

    id: str = ""
    name: str = ""


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (knowdex.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int | None = None  # None → resolved from litellm model info
    timeout: float = 60.0  # seconds per embedding call
    num_retries: int = 3
    batch_size: int = 50


@dataclass
class ChunkingCfg:
    """Chunk sizing (knowdex.yaml: chunking:).

    The effective chunk size is derived from the embedding model's token
    limit and capped by *max_chars_per_chunk*.
    """

    max_chars_per_chunk: int = 4_000
    overlap: float = 0.05
    max_overlap_chars: int = 200


@dataclass
class FiltersCfg:
    """Exclusion filter toggles (knowdex.yaml: indexing.filters:)."""

    gitignore: bool = True
    hidden: bool = True
    projecttype: bool = True
    binary: bool = True
    filesize: bool = True
    custom: bool = True


@dataclass
class IndexingCfg:
    """Index pass configuration (knowdex.yaml: indexing:)."""

    max_file_bytes: int = 5_000_000
    checkpoint_interval: int = 100
    common_excludes: list[str] = field(default_factory=lambda: list(DEFAULT_COMMON_EXCLUDES))
    custom_excludes: list[str] = field(default_factory=list)
    filters: FiltersCfg = field(default_factory=FiltersCfg)


@dataclass
class WatchingCfg:
    """Live watch configuration (knowdex.yaml: watching:)."""

    queue_size: int = 1_000
    poll_interval: float = 0.5


@dataclass
class KnowdexConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    project: ProjectCfg = field(default_factory=ProjectCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    indexing: IndexingCfg = field(default_factory=IndexingCfg)
    watching: WatchingCfg = field(default_factory=WatchingCfg)
    sources: list[dict[str, Any]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names.

    Global config must never store credentials; they belong in env vars.
    """

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: KnowdexConfig) -> None:
    """Raise ConfigError for values the indexing engine cannot work with."""
    if not 0.0 <= cfg.chunking.overlap < 1.0:
        raise ConfigError(
            f"chunking.overlap must be in [0, 1), got {cfg.chunking.overlap}"
        )
    positives = {
        "chunking.max_chars_per_chunk": cfg.chunking.max_chars_per_chunk,
        "embedding.batch_size": cfg.embedding.batch_size,
        "embedding.timeout": cfg.embedding.timeout,
        "indexing.max_file_bytes": cfg.indexing.max_file_bytes,
        "indexing.checkpoint_interval": cfg.indexing.checkpoint_interval,
        "watching.queue_size": cfg.watching.queue_size,
    }
    for name, value in positives.items():
        if value <= 0:
            raise ConfigError(f"{name} must be > 0, got {value}")
    if cfg.chunking.max_overlap_chars < 0:
        raise ConfigError(
            f"chunking.max_overlap_chars must be >= 0, got {cfg.chunking.max_overlap_chars}"
        )
    if cfg.embedding.dimensions is not None and cfg.embedding.dimensions < 1:
        raise ConfigError(
            f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}"
        )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _parse_filters(raw: dict[str, Any]) -> FiltersCfg:
    defaults = FiltersCfg()
    values = {name: bool(raw.get(name, getattr(defaults, name))) for name in _FILTER_NAMES}
    return FiltersCfg(**values)


def _cfg_from_dict(data: dict[str, Any], project_dir: Path) -> KnowdexConfig:
    """Build a *KnowdexConfig* from a merged raw YAML dict."""
    cfg = KnowdexConfig()

    p = data.get("project") or {}
    cfg.project = ProjectCfg(
        id=str(p.get("id") or project_dir.resolve().name),
        name=str(p.get("name") or p.get("id") or project_dir.resolve().name),
    )

    if "embedding" in data:
        e = data["embedding"] or {}
        dims = e.get("dimensions", cfg.embedding.dimensions)
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(dims) if dims is not None else None,
            timeout=float(e.get("timeout", cfg.embedding.timeout)),
            num_retries=int(e.get("num_retries", cfg.embedding.num_retries)),
            batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
        )

    if "chunking" in data:
        c = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            max_chars_per_chunk=int(
                c.get("max_chars_per_chunk", cfg.chunking.max_chars_per_chunk)
            ),
            overlap=float(c.get("overlap", cfg.chunking.overlap)),
            max_overlap_chars=int(
                c.get("max_overlap_chars", cfg.chunking.max_overlap_chars)
            ),
        )

    if "indexing" in data:
        i = data["indexing"] or {}
        cfg.indexing = IndexingCfg(
            max_file_bytes=int(i.get("max_file_bytes", cfg.indexing.max_file_bytes)),
            checkpoint_interval=int(
                i.get("checkpoint_interval", cfg.indexing.checkpoint_interval)
            ),
            common_excludes=[
                str(x) for x in i.get("common_excludes", cfg.indexing.common_excludes)
            ],
            custom_excludes=[str(x) for x in i.get("custom_excludes", [])],
            filters=_parse_filters(i.get("filters") or {}),
        )

    if "watching" in data:
        w = data["watching"] or {}
        cfg.watching = WatchingCfg(
            queue_size=int(w.get("queue_size", cfg.watching.queue_size)),
            poll_interval=float(w.get("poll_interval", cfg.watching.poll_interval)),
        )

    if "sources" in data:
        raw_sources = data["sources"] or []
        if not isinstance(raw_sources, list):
            raise ConfigError("sources must be a list of {type: ..., paths/urls: [...]} entries")
        cfg.sources = [dict(s) for s in raw_sources]

    return cfg


def _apply_env_overrides(cfg: KnowdexConfig) -> KnowdexConfig:
    """Apply KNOWDEX_* environment variable overrides (layer 2)."""
    if model := os.environ.get("KNOWDEX_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if max_bytes := os.environ.get("KNOWDEX_MAX_FILE_BYTES"):
        try:
            cfg.indexing.max_file_bytes = int(max_bytes)
        except ValueError as exc:
            raise ConfigError(
                f"KNOWDEX_MAX_FILE_BYTES must be an integer, got '{max_bytes}'"
            ) from exc
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> KnowdexConfig:
    """Load and return a merged *KnowdexConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *knowdex.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *KnowdexConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or if a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged, search_dir)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.knowdex/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).

    Args:
        global_config_path: Override path (for testing).

    Returns:
        Path to the global config file.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# knowdex global configuration — model defaults only.\n"
            "# NEVER store API keys here — use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "\n"
            "chunking:\n"
            "  max_chars_per_chunk: 4000\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
