"""Built-in exclusion filters."""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path

import pathspec

from knowdex.extract.local import RICH_EXTENSIONS, TEXT_EXTENSIONS
from knowdex.filters.chain import FilterContext, IndexingFilter, ProjectType

logger = logging.getLogger(__name__)

_SNIFF_BYTES = 8192

BINARY_EXTENSIONS: frozenset[str] = frozenset(
    [
        # images
        "png", "jpg", "jpeg", "gif", "ico", "webp", "bmp", "tiff", "tif",
        # video / audio
        "mp4", "avi", "mov", "mkv", "webm", "flv", "wmv", "m4v",
        "mp3", "wav", "ogg", "flac", "aac", "m4a", "wma",
        # archives
        "zip", "tar", "gz", "bz2", "7z", "rar", "xz", "tgz",
        # executables and objects
        "exe", "dll", "so", "dylib", "bin", "obj", "o", "a", "lib",
        "class", "jar", "war", "ear", "pyc", "pyo",
        # databases
        "db", "sqlite", "sqlite3", "mdb", "accdb",
        # office formats we cannot decode
        "doc", "xls", "xlsx", "ppt", "pptx",
        # fonts
        "ttf", "otf", "woff", "woff2", "eot",
    ]
)

PROJECT_TYPES: tuple[ProjectType, ...] = (
    ProjectType(
        "Gradle",
        frozenset(["build.gradle", "build.gradle.kts", "settings.gradle", "settings.gradle.kts", "gradlew"]),
        frozenset(["build/", ".gradle/", "out/", "bin/", ".kotlin/"]),
    ),
    ProjectType(
        "Maven",
        frozenset(["pom.xml", "mvnw"]),
        frozenset(["target/", ".mvn/", "out/", "bin/"]),
    ),
    ProjectType(
        "Node.js",
        frozenset(["package.json", "package-lock.json", "yarn.lock", "pnpm-lock.yaml"]),
        frozenset(
            [
                "node_modules/", "dist/", "build/", ".next/", ".nuxt/", "out/",
                "coverage/", ".cache/", ".parcel-cache/", ".turbo/", ".vite/",
                "package-lock.json", "yarn.lock", "pnpm-lock.yaml",
            ]
        ),
    ),
    ProjectType(
        "Python",
        frozenset(["requirements.txt", "setup.py", "pyproject.toml", "Pipfile", "poetry.lock"]),
        frozenset(
            [
                "__pycache__/", "*.pyc", "*.pyo", "*.pyd", ".pytest_cache/",
                ".mypy_cache/", ".tox/", "venv/", ".venv/", "env/", "dist/",
                "build/", "*.egg-info/", ".eggs/", "poetry.lock",
            ]
        ),
    ),
    ProjectType("Go", frozenset(["go.mod", "go.sum"]), frozenset(["vendor/", "bin/", "pkg/"])),
    ProjectType("Rust", frozenset(["Cargo.toml", "Cargo.lock"]), frozenset(["target/", "Cargo.lock"])),
    ProjectType(
        "Ruby",
        frozenset(["Gemfile", "Gemfile.lock", "Rakefile"]),
        frozenset(["vendor/", ".bundle/", "tmp/", "log/", "Gemfile.lock"]),
    ),
    ProjectType(
        ".NET",
        frozenset(["*.csproj", "*.sln", "*.fsproj", "*.vbproj"]),
        frozenset(["bin/", "obj/", "packages/", ".vs/", "Debug/", "Release/"]),
    ),
)


def matches_pattern(relative_path: str, file_name: str, pattern: str, is_dir: bool) -> bool:
    """Match a simple exclude pattern against a path.

    ``name/`` matches a directory of that name at any depth; patterns with
    ``*`` are globbed against the relative path and the file name; any other
    pattern matches a path component or the file name exactly.
    """
    if pattern.endswith("/"):
        if not is_dir:
            return False
        dir_pattern = pattern.rstrip("/")
        last = relative_path.rsplit("/", 1)[-1]
        if "*" in dir_pattern:
            return fnmatch.fnmatchcase(last, dir_pattern)
        return last == dir_pattern
    if "*" in pattern or "?" in pattern:
        return fnmatch.fnmatchcase(file_name, pattern) or fnmatch.fnmatchcase(
            relative_path, pattern
        )
    return file_name == pattern or relative_path == pattern


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


class GitignoreFilter(IndexingFilter):
    """Honour every ``.gitignore`` inside the git repository holding a path.

    Paths outside a git repository are never excluded by this filter.
    """

    name = "gitignore"
    priority = 10

    def __init__(self) -> None:
        self._repo_roots: dict[Path, Path | None] = {}
        self._specs: dict[Path, list[tuple[Path, pathspec.PathSpec]]] = {}

    def invalidate(self) -> None:
        self._repo_roots.clear()
        self._specs.clear()

    def should_exclude(self, path: Path, is_dir: bool, context: FilterContext) -> bool:
        repo = self._repo_root(path.parent if not is_dir else path)
        if repo is None:
            return False
        for spec_dir, spec in self._specs_for(repo):
            try:
                rel = path.relative_to(spec_dir).as_posix()
            except ValueError:
                continue
            if rel == ".":
                continue
            if spec.match_file(rel + "/" if is_dir else rel):
                return True
        return False

    def _repo_root(self, start: Path) -> Path | None:
        if start in self._repo_roots:
            return self._repo_roots[start]
        found: Path | None = None
        for candidate in (start, *start.parents):
            if (candidate / ".git").exists():
                found = candidate
                break
        self._repo_roots[start] = found
        return found

    def _specs_for(self, repo: Path) -> list[tuple[Path, pathspec.PathSpec]]:
        specs = self._specs.get(repo)
        if specs is not None:
            return specs
        specs = []
        for dirpath, dirnames, filenames in os.walk(repo):
            dirnames[:] = [d for d in dirnames if d not in (".git", "node_modules")]
            if ".gitignore" in filenames:
                ignore_file = Path(dirpath) / ".gitignore"
                try:
                    lines = ignore_file.read_text(encoding="utf-8").splitlines()
                except OSError as exc:
                    logger.warning("Failed to read %s: %s", ignore_file, exc)
                    continue
                specs.append((Path(dirpath), pathspec.PathSpec.from_lines("gitignore", lines)))
        self._specs[repo] = specs
        return specs


class HiddenPathFilter(IndexingFilter):
    """Exclude dot-files and dot-directories below the root."""

    name = "hidden"
    priority = 20

    def should_exclude(self, path: Path, is_dir: bool, context: FilterContext) -> bool:
        return context.file_name.startswith(".") and context.relative_path not in ("", ".")


class ProjectTypeFilter(IndexingFilter):
    """Exclude common noise plus build output of detected project types."""

    name = "projecttype"
    priority = 50

    def __init__(self, common_excludes: list[str] | tuple[str, ...]) -> None:
        self.common_excludes = tuple(common_excludes)

    def should_exclude(self, path: Path, is_dir: bool, context: FilterContext) -> bool:
        for project_type in context.project_types:
            for pattern in project_type.exclude_paths:
                if matches_pattern(context.relative_path, context.file_name, pattern, is_dir):
                    return True
        return any(
            matches_pattern(context.relative_path, context.file_name, pattern, is_dir)
            for pattern in self.common_excludes
        )


class BinaryFileFilter(IndexingFilter):
    """Exclude binary files by extension or by a NUL byte in the first 8 KiB.

    PDF and DOCX are extractable and never treated as binary noise.
    """

    name = "binary"
    priority = 60

    def should_exclude(self, path: Path, is_dir: bool, context: FilterContext) -> bool:
        if is_dir:
            return False
        ext = context.extension
        if f".{ext}" in RICH_EXTENSIONS or f".{ext}" in TEXT_EXTENSIONS:
            return False
        if ext in BINARY_EXTENSIONS:
            return True
        try:
            with open(path, "rb") as fh:
                return b"\x00" in fh.read(_SNIFF_BYTES)
        except OSError:
            return False


class FileSizeFilter(IndexingFilter):
    """Exclude files larger than ``max_file_bytes``."""

    name = "filesize"
    priority = 70

    def __init__(self, max_file_bytes: int) -> None:
        self.max_file_bytes = max_file_bytes

    def should_exclude(self, path: Path, is_dir: bool, context: FilterContext) -> bool:
        if is_dir:
            return False
        try:
            return path.stat().st_size > self.max_file_bytes
        except OSError:
            return False


class CustomPatternFilter(IndexingFilter):
    """Exclude paths matching user-supplied patterns."""

    name = "custom"
    priority = 80

    def __init__(self, patterns: list[str] | tuple[str, ...]) -> None:
        self.patterns = tuple(p for p in patterns if p)

    def should_exclude(self, path: Path, is_dir: bool, context: FilterContext) -> bool:
        return any(
            matches_pattern(context.relative_path, context.file_name, pattern, is_dir)
            for pattern in self.patterns
        )
