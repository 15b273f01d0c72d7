"""Discovery of documentable source files."""

from __future__ import annotations

import os
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath
from typing import List, Sequence

from .config import CascadeDocsConfig
from .stores.documents import normalize_path

_MARKUP_SUFFIXES = {".vue", ".html", ".blade", ".twig", ".svelte", ".md"}

_LANGUAGE_BY_SUFFIX = {
    ".py": "python",
    ".php": "php",
    ".js": "javascript",
    ".jsx": "jsx",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".vue": "vue",
    ".rb": "ruby",
    ".go": "go",
    ".java": "java",
    ".rs": "rust",
}

_ALWAYS_SKIPPED_DIRS = {".git", ".hg", ".svn", ".venv", "__pycache__", "node_modules"}


@dataclass(frozen=True)
class SourceFile:
    """A repository-relative source path and its detected kind."""

    path: str
    kind: str

    @property
    def language(self) -> str:
        return code_language(self.path)

    @property
    def component_name(self) -> str:
        name = PurePosixPath(self.path).name
        return name.split(".", 1)[0] or name


def detect_kind(path: str) -> str:
    suffixes = PurePosixPath(path).suffixes
    if any(suffix.lower() in _MARKUP_SUFFIXES for suffix in suffixes):
        return "markup"
    return "code"


def code_language(path: str) -> str:
    return _LANGUAGE_BY_SUFFIX.get(PurePosixPath(path).suffix.lower(), "text")


class SourceScanner:
    """Applies the configured source roots, file types and exclusions."""

    def __init__(self, config: CascadeDocsConfig) -> None:
        self.config = config

    def source_file(self, path: str) -> SourceFile:
        normalized = normalize_path(path)
        return SourceFile(path=normalized, kind=detect_kind(normalized))

    def is_documentable(self, path: str) -> bool:
        normalized = normalize_path(path)
        suffix = PurePosixPath(normalized).suffix.lower().lstrip(".")
        if suffix not in self.config.file_types:
            return False
        if not any(normalized.startswith(prefix) for prefix in self._source_prefixes()):
            return False
        return not self.is_excluded(normalized)

    def is_excluded(self, path: str) -> bool:
        normalized = normalize_path(path)
        exclude = self.config.exclude
        parts = PurePosixPath(normalized).parts
        for directory in exclude.directories:
            directory = directory.strip("/")
            if not directory:
                continue
            if "/" in directory:
                if normalized.startswith(f"{directory}/") or f"/{directory}/" in f"/{normalized}":
                    return True
            elif directory in parts[:-1]:
                return True
        name = parts[-1] if parts else normalized
        if normalized in exclude.files or name in exclude.files:
            return True
        return any(
            fnmatchcase(normalized, pattern) or fnmatchcase(name, pattern)
            for pattern in exclude.patterns
        )

    def scan(self, paths: Sequence[str] | None = None) -> List[SourceFile]:
        """Walk the source roots (or `paths`) and return documentable files, sorted."""
        root = self.config.root
        targets = list(paths) if paths else list(self.config.paths.source)
        found: set[str] = set()
        for target in targets:
            base = root / normalize_path(target)
            if base.is_file():
                relative = base.relative_to(root).as_posix()
                if self.is_documentable(relative):
                    found.add(relative)
                continue
            if not base.is_dir():
                continue
            for dirpath, dirnames, filenames in os.walk(base):
                dirnames[:] = sorted(d for d in dirnames if d not in _ALWAYS_SKIPPED_DIRS)
                for filename in filenames:
                    relative = (Path(dirpath) / filename).relative_to(root).as_posix()
                    if self.is_documentable(relative):
                        found.add(relative)
        return [self.source_file(path) for path in sorted(found)]

    def _source_prefixes(self) -> List[str]:
        prefixes = [normalize_path(prefix) for prefix in self.config.paths.source]
        return [prefix if prefix.endswith("/") or not prefix else f"{prefix}/" for prefix in prefixes]


__all__ = ["SourceFile", "SourceScanner", "code_language", "detect_kind"]
