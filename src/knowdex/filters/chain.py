"""Filter contract and the priority-ordered filter chain."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectType:
    """A project convention detected by marker files in the root folder."""

    name: str
    markers: frozenset[str]
    exclude_paths: frozenset[str]


@dataclass(frozen=True)
class FilterContext:
    """Everything a filter needs to decide about one path."""

    root_path: Path
    relative_path: str  # forward slashes, relative to root_path
    file_name: str
    extension: str  # lower-case, without the dot
    project_types: tuple[ProjectType, ...] = field(default=())


class IndexingFilter(ABC):
    """Decide whether a path should be left out of the index.

    Lower ``priority`` runs first.
    """

    name: str = ""
    priority: int = 100

    @abstractmethod
    def should_exclude(self, path: Path, is_dir: bool, context: FilterContext) -> bool: ...


class FilterChain:
    """Apply filters in priority order, stopping at the first exclusion.

    Args:
        filters: Filters to apply.
        project_types: Known project conventions; the ones whose markers are
            present in a root are passed to filters through the context.
    """

    def __init__(
        self,
        filters: list[IndexingFilter],
        project_types: tuple[ProjectType, ...] = (),
    ) -> None:
        self.filters = sorted(filters, key=lambda f: f.priority)
        self.project_types = project_types
        self._detected: dict[Path, tuple[ProjectType, ...]] = {}

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def excludes(self, path: Path, is_dir: bool, root: Path) -> bool:
        """Evaluate *path* alone; ancestors are assumed already accepted."""
        return self._first_match(path, is_dir, root) is not None

    def should_exclude(self, path: Path | str, root: Path | str | None = None) -> bool:
        """Return True if *path* or any directory between *root* and it is excluded."""
        return self.exclusion_reason(path, root) is not None

    def exclusion_reason(self, path: Path | str, root: Path | str | None = None) -> str | None:
        """Return ``"<filter>: <relative path>"`` for the first exclusion, or None."""
        p = Path(os.path.abspath(path))
        base = Path(os.path.abspath(root)) if root is not None else p.parent
        try:
            rel_parts = p.relative_to(base).parts
        except ValueError:
            base = p.parent
            rel_parts = (p.name,)
        if not rel_parts:
            return None

        current = base
        for part in rel_parts[:-1]:
            current = current / part
            name = self._first_match(current, True, base)
            if name is not None:
                return f"{name}: {self._relative(current, base)}"

        is_dir = p.is_dir()
        name = self._first_match(p, is_dir, base)
        if name is not None:
            return f"{name}: {self._relative(p, base)}"
        return None

    def invalidate(self) -> None:
        """Drop cached per-root state (project types, ignore files)."""
        self._detected.clear()
        for f in self.filters:
            reset = getattr(f, "invalidate", None)
            if reset is not None:
                reset()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _first_match(self, path: Path, is_dir: bool, root: Path) -> str | None:
        context = self._context(path, root)
        for f in self.filters:
            if f.should_exclude(path, is_dir, context):
                logger.debug("Path excluded by %s filter: %s", f.name, context.relative_path)
                return f.name
        return None

    def _context(self, path: Path, root: Path) -> FilterContext:
        return FilterContext(
            root_path=root,
            relative_path=self._relative(path, root),
            file_name=path.name,
            extension=path.suffix.lower().lstrip("."),
            project_types=self._project_types_for(root),
        )

    @staticmethod
    def _relative(path: Path, root: Path) -> str:
        try:
            return path.relative_to(root).as_posix()
        except ValueError:
            return path.name

    def _project_types_for(self, root: Path) -> tuple[ProjectType, ...]:
        detected = self._detected.get(root)
        if detected is None:
            detected = tuple(pt for pt in self.project_types if _has_marker(root, pt))
            self._detected[root] = detected
        return detected


def _has_marker(root: Path, project_type: ProjectType) -> bool:
    for marker in project_type.markers:
        if "*" in marker:
            if any(root.glob(marker)):
                return True
        elif (root / marker).exists():
            return True
    return False
