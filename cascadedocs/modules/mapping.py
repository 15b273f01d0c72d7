"""File-to-module lookups derived from module metadata records."""

from __future__ import annotations

import re
from collections import Counter
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Sequence, Tuple

from ..logging import get_logger
from ..models import ModuleRecord
from ..stores.documents import normalize_path
from ..stores.modules import ModuleMetadataStore, slugify

# Path segments too generic to say anything about a module.
GENERIC_SEGMENTS = {"app", "src", "lib", "resources", "js", "ts", "php", "components", "source"}

_CAMEL_SPLIT = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def directory_signature(paths: Sequence[str]) -> Optional[Tuple[str, ...]]:
    """Deepest directory prefix shared by a strict majority of `paths`."""
    directories = [PurePosixPath(path).parent.parts for path in paths]
    if not directories:
        return None
    majority = len(directories) / 2
    depth = max(len(parts) for parts in directories)
    while depth > 0:
        counts = Counter(parts[:depth] for parts in directories if len(parts) >= depth)
        if counts:
            prefix, count = counts.most_common(1)[0]
            if count > majority:
                return prefix
        depth -= 1
    return None


def namespace_terms(path: str) -> List[str]:
    """Meaningful lowercase words from a path's directories and file stem."""
    posix = PurePosixPath(path)
    segments = list(posix.parent.parts) + [posix.name.split(".", 1)[0]]
    terms: List[str] = []
    for segment in segments:
        if segment.lower() in GENERIC_SEGMENTS:
            continue
        for word in _CAMEL_SPLIT.sub(" ", segment).replace("_", " ").replace("-", " ").split():
            lowered = word.lower()
            if len(lowered) >= 4 and lowered not in GENERIC_SEGMENTS and lowered not in terms:
                terms.append(lowered)
    return terms


class ModuleMappingService:
    """Caches path → slug from every module record and rebuilds when metadata changes."""

    def __init__(self, metadata_store: ModuleMetadataStore) -> None:
        self.metadata_store = metadata_store
        self.logger = get_logger("modules.mapping")
        self._file_to_module: Dict[str, str] = {}
        self._modules: Dict[str, ModuleRecord] = {}
        self._signature: Optional[Tuple[Tuple[str, int, int], ...]] = None

    def refresh(self) -> None:
        self._signature = self._metadata_signature()
        modules: Dict[str, ModuleRecord] = {}
        mapping: Dict[str, str] = {}
        for record in self.metadata_store.load_all():
            modules[record.slug] = record
            for path in record.member_paths():
                owner = mapping.get(path)
                if owner is not None and owner != record.slug:
                    self.logger.warning(
                        "File %s is listed in modules %s and %s; keeping %s",
                        path,
                        owner,
                        record.slug,
                        owner,
                    )
                    continue
                mapping[path] = record.slug
        self._modules = modules
        self._file_to_module = mapping
        self.logger.debug("Mapped %d file(s) across %d module(s)", len(mapping), len(modules))

    def get_module_for_file(self, path: str) -> Optional[str]:
        self._ensure_fresh()
        return self._file_to_module.get(normalize_path(path))

    def get_files_for_module(self, slug: str) -> List[str]:
        self._ensure_fresh()
        record = self._modules.get(slug)
        return record.member_paths() if record else []

    def get_module(self, slug: str) -> Optional[ModuleRecord]:
        self._ensure_fresh()
        return self._modules.get(slug)

    def all_modules(self) -> List[ModuleRecord]:
        self._ensure_fresh()
        return [self._modules[slug] for slug in sorted(self._modules)]

    def mapped_files(self) -> Dict[str, str]:
        self._ensure_fresh()
        return dict(self._file_to_module)

    def suggest_module_for_new_file(self, path: str) -> Optional[str]:
        """Cheap directory/namespace match against existing modules; None when unsure."""
        normalized = normalize_path(path)
        if any(part.lower() == "documentation" for part in PurePosixPath(normalized).parts):
            return None
        owner = self.get_module_for_file(normalized)
        if owner is not None:
            return owner

        modules = self.all_modules()
        if not modules:
            return None

        directory = PurePosixPath(normalized).parent.parts

        sibling_counts: List[Tuple[int, str]] = []
        for record in modules:
            siblings = sum(
                1 for member in record.member_paths() if PurePosixPath(member).parent.parts == directory
            )
            if siblings >= 2:
                sibling_counts.append((siblings, record.slug))
        if sibling_counts:
            sibling_counts.sort(key=lambda item: (-item[0], item[1]))
            return sibling_counts[0][1]

        signature_matches: List[Tuple[int, str]] = []
        for record in modules:
            signature = directory_signature(record.member_paths())
            if not signature or all(part.lower() in GENERIC_SEGMENTS for part in signature):
                continue
            if directory[: len(signature)] == signature:
                signature_matches.append((len(signature), record.slug))
        if signature_matches:
            signature_matches.sort(key=lambda item: (-item[0], item[1]))
            return signature_matches[0][1]

        for term in namespace_terms(normalized):
            term_slug = slugify(term)
            for record in modules:
                if term_slug and term_slug in record.slug.split("-"):
                    return record.slug
        return None

    # ------------------------------------------------------------------
    # Internals

    def _ensure_fresh(self) -> None:
        if self._signature is None or self._signature != self._metadata_signature():
            self.refresh()

    def _metadata_signature(self) -> Tuple[Tuple[str, int, int], ...]:
        directory = self.metadata_store.metadata_dir
        if not directory.is_dir():
            return ()
        entries: List[Tuple[str, int, int]] = []
        for path in sorted(directory.glob("*.json")):
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            entries.append((path.name, stat.st_mtime_ns, stat.st_size))
        return tuple(entries)


__all__ = [
    "GENERIC_SEGMENTS",
    "ModuleMappingService",
    "directory_signature",
    "namespace_terms",
]
