"""Knowledge source configurations.

A project declares its knowledge sources as a tagged union: every variant
carries the list of resource identifiers it indexes (paths or URLs) and a set
of string options. Variants are immutable; editing a source replaces it.

YAML form (knowdex.yaml)::

    sources:
      - type: local_folders
        paths: [docs, notes]
      - type: local_files
        paths: [README.md]
      - type: urls
        urls: [https://example.com/guide]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from knowdex.config import ConfigError


@dataclass(frozen=True)
class LocalFoldersSource:
    """Folder trees indexed recursively and watched for changes."""

    kind: ClassVar[str] = "local_folders"
    source_type: ClassVar[str] = "folders"
    watchable: ClassVar[bool] = True

    resource_identifiers: tuple[str, ...]
    options: dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    @property
    def resource_identifier(self) -> str:
        return _join_identifiers(self.kind, self.resource_identifiers)


@dataclass(frozen=True)
class LocalFilesSource:
    """Individual files, indexed on demand but not watched."""

    kind: ClassVar[str] = "local_files"
    source_type: ClassVar[str] = "files"
    watchable: ClassVar[bool] = False

    resource_identifiers: tuple[str, ...]
    options: dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    @property
    def resource_identifier(self) -> str:
        return _join_identifiers(self.kind, self.resource_identifiers)


@dataclass(frozen=True)
class UrlSource:
    """Web pages fetched over http(s)."""

    kind: ClassVar[str] = "urls"
    source_type: ClassVar[str] = "urls"
    watchable: ClassVar[bool] = False

    resource_identifiers: tuple[str, ...]
    options: dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    @property
    def resource_identifier(self) -> str:
        return _join_identifiers(self.kind, self.resource_identifiers)


KnowledgeSourceConfig = Union[LocalFoldersSource, LocalFilesSource, UrlSource]

_VARIANTS: dict[str, type] = {
    LocalFoldersSource.kind: LocalFoldersSource,
    LocalFilesSource.kind: LocalFilesSource,
    UrlSource.kind: UrlSource,
}

# YAML key holding the identifier list for each variant.
_LIST_KEYS: dict[str, str] = {
    LocalFoldersSource.kind: "paths",
    LocalFilesSource.kind: "paths",
    UrlSource.kind: "urls",
}


def _join_identifiers(kind: str, identifiers: tuple[str, ...]) -> str:
    return f"{kind}:" + "|".join(sorted(identifiers))


def source_kinds() -> list[str]:
    """Return the built-in source kinds."""
    return list(_VARIANTS)


def make_source(
    kind: str, identifiers: list[str] | tuple[str, ...], options: dict[str, str] | None = None
) -> KnowledgeSourceConfig:
    """Build a source of *kind*, de-duplicating identifiers while keeping order."""
    cls = _VARIANTS.get(kind)
    if cls is None:
        raise ConfigError(
            f"Unknown source type '{kind}'. Known types: {', '.join(sorted(_VARIANTS))}"
        )
    unique = tuple(dict.fromkeys(str(i) for i in identifiers))
    return cls(resource_identifiers=unique, options=dict(options or {}))


def source_from_dict(raw: dict[str, Any]) -> KnowledgeSourceConfig:
    """Parse one ``sources:`` entry.

    Raises:
        ConfigError: If the type is unknown or the identifier list is missing.
    """
    kind = str(raw.get("type", ""))
    if kind not in _VARIANTS:
        raise ConfigError(
            f"Unknown source type '{kind}'. Known types: {', '.join(sorted(_VARIANTS))}"
        )
    list_key = _LIST_KEYS[kind]
    identifiers = raw.get(list_key)
    if not isinstance(identifiers, list) or not identifiers:
        raise ConfigError(f"Source of type '{kind}' needs a non-empty '{list_key}' list.")
    options = {str(k): str(v) for k, v in (raw.get("options") or {}).items()}
    return make_source(kind, identifiers, options)


def source_to_dict(source: KnowledgeSourceConfig) -> dict[str, Any]:
    data: dict[str, Any] = {
        "type": source.kind,
        _LIST_KEYS[source.kind]: list(source.resource_identifiers),
    }
    if source.options:
        data["options"] = dict(source.options)
    return data


def merge_sources(sources: list[KnowledgeSourceConfig]) -> list[KnowledgeSourceConfig]:
    """Merge sources of the same kind into one config per kind.

    Index state rows are keyed by ``(project, source_type)``, so a project may
    carry at most one config per source type; two ``local_folders`` entries
    would otherwise replace each other's rows on every pass.
    """
    merged: dict[str, KnowledgeSourceConfig] = {}
    for source in sources:
        existing = merged.get(source.kind)
        if existing is None:
            merged[source.kind] = source
            continue
        merged[source.kind] = make_source(
            source.kind,
            existing.resource_identifiers + source.resource_identifiers,
            {**existing.options, **source.options},
        )
    return list(merged.values())
