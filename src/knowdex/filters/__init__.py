"""Exclusion policy for local indexing and watching."""

from __future__ import annotations

from collections.abc import Iterable

from knowdex.config import IndexingCfg
from knowdex.filters.builtin import (
    PROJECT_TYPES,
    BinaryFileFilter,
    CustomPatternFilter,
    FileSizeFilter,
    GitignoreFilter,
    HiddenPathFilter,
    ProjectTypeFilter,
)
from knowdex.filters.chain import FilterChain, FilterContext, IndexingFilter, ProjectType


def build_filter_chain(cfg: IndexingCfg, extra_excludes: Iterable[str] = ()) -> FilterChain:
    """Build the filter chain enabled by *cfg*.

    Args:
        cfg: Indexing configuration (toggles, excludes, size cap).
        extra_excludes: Additional patterns, e.g. from ``--exclude``.
    """
    toggles = cfg.filters
    filters: list[IndexingFilter] = []
    if toggles.gitignore:
        filters.append(GitignoreFilter())
    if toggles.hidden:
        filters.append(HiddenPathFilter())
    if toggles.projecttype:
        filters.append(ProjectTypeFilter(cfg.common_excludes))
    if toggles.binary:
        filters.append(BinaryFileFilter())
    if toggles.filesize:
        filters.append(FileSizeFilter(cfg.max_file_bytes))
    patterns = [*cfg.custom_excludes, *extra_excludes]
    if toggles.custom and patterns:
        filters.append(CustomPatternFilter(patterns))
    return FilterChain(filters, project_types=PROJECT_TYPES if toggles.projecttype else ())


__all__ = [
    "BinaryFileFilter",
    "CustomPatternFilter",
    "FileSizeFilter",
    "FilterChain",
    "FilterContext",
    "GitignoreFilter",
    "HiddenPathFilter",
    "IndexingFilter",
    "ProjectType",
    "ProjectTypeFilter",
    "build_filter_chain",
]
