"""Module metadata records (`<slug>.json`) and module content files (`<slug>.md`)."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Callable, Iterable, List, Mapping, Optional

from ..config import CascadeDocsConfig
from ..errors import MalformedState, NotFound
from ..logging import get_logger
from ..models import ModuleFile, ModuleRecord, utc_timestamp
from .files import FileLock, atomic_write_json, atomic_write_text

_SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def slugify(value: str) -> str:
    """Lowercase, hyphen-separated slug for a module name."""
    spaced = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", " ", value.strip())
    slug = re.sub(r"[^a-z0-9]+", "-", spaced.lower()).strip("-")
    return re.sub(r"-{2,}", "-", slug)


def is_valid_slug(value: str) -> bool:
    return bool(_SLUG_PATTERN.match(value))


def placeholder_content(name: str, description: str = "") -> str:
    overview = description.strip() or "[To be documented]"
    return (
        f"# {name} Module\n\n## Overview\n\n{overview}\n\n"
        "## How This Module Works\n\n[To be documented]\n"
    )


class ModuleMetadataStore:
    """Loads, validates and atomically persists module records."""

    def __init__(self, config: CascadeDocsConfig) -> None:
        self.config = config
        self.metadata_dir = config.modules_metadata_dir
        self.content_dir = config.modules_content_dir
        self.logger = get_logger("stores.modules")

    def metadata_path(self, slug: str) -> Path:
        return self.metadata_dir / f"{slug}.json"

    def content_path(self, slug: str) -> Path:
        return self.content_dir / f"{slug}.md"

    def load(self, slug: str) -> Optional[ModuleRecord]:
        """Return the record for `slug`, or None when missing or malformed."""
        path = self.metadata_path(slug)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            self.logger.warning("Ignoring unreadable module metadata %s: %s", path, exc)
            return None
        try:
            return ModuleRecord.from_dict(payload)
        except MalformedState as exc:
            self.logger.warning("Ignoring malformed module metadata %s: %s", path, exc)
            return None

    def require(self, slug: str) -> ModuleRecord:
        record = self.load(slug)
        if record is None:
            raise NotFound(f"Module not found: {slug}")
        return record

    def save(self, record: ModuleRecord) -> None:
        if not is_valid_slug(record.slug):
            raise MalformedState(f"Invalid module slug: {record.slug!r}")
        now = utc_timestamp()
        record.generated_at = record.generated_at or now
        record.last_updated = now
        payload = record.to_dict()
        ModuleRecord.from_dict(payload)
        atomic_write_json(self.metadata_path(record.slug), payload)

    def list_all(self) -> List[str]:
        if not self.metadata_dir.is_dir():
            return []
        return [record.slug for record in self.load_all()]

    def load_all(self) -> List[ModuleRecord]:
        if not self.metadata_dir.is_dir():
            return []
        records: List[ModuleRecord] = []
        for path in sorted(self.metadata_dir.glob("*.json")):
            record = self.load(path.stem)
            if record is not None:
                records.append(record)
        return records

    def exists(self, slug: str) -> bool:
        return self.load(slug) is not None

    def create_module(
        self,
        slug: str,
        name: str,
        *,
        description: str = "",
        files: Iterable[str] = (),
    ) -> ModuleRecord:
        """Create a record whose members start undocumented, plus placeholder content."""
        if not is_valid_slug(slug):
            raise ValueError(f"Invalid module slug: {slug!r}")
        with self._lock(slug):
            if self.exists(slug):
                raise FileExistsError(f"Module already exists: {slug}")
            record = ModuleRecord(slug=slug, name=name, summary=description.strip())
            for path in files:
                if path not in record.undocumented_files:
                    record.undocumented_files.append(path)
            self.save(record)
            if not self.content_path(slug).exists():
                atomic_write_text(self.content_path(slug), placeholder_content(name, description))
        self.logger.info("Created module %s with %d file(s)", slug, len(record.undocumented_files))
        return record

    def add_files(
        self, slug: str, paths: Iterable[str], *, documented: bool = False
    ) -> ModuleRecord:
        incoming = list(paths)

        def _apply(record: ModuleRecord) -> None:
            now = utc_timestamp()
            for path in incoming:
                if record.contains(path):
                    continue
                if documented:
                    record.files.append(ModuleFile(path=path, added_date=now))
                else:
                    record.undocumented_files.append(path)

        return self._mutate(slug, _apply)

    def remove_files(self, slug: str, paths: Iterable[str]) -> ModuleRecord:
        drop = set(paths)

        def _apply(record: ModuleRecord) -> None:
            record.files = [entry for entry in record.files if entry.path not in drop]
            record.undocumented_files = [p for p in record.undocumented_files if p not in drop]

        return self._mutate(slug, _apply)

    def mark_files_documented(
        self,
        slug: str,
        paths: Iterable[str],
        *,
        tiers: Mapping[str, str] | None = None,
        sha: str | None = None,
    ) -> ModuleRecord:
        """Move `paths` from undocumented to documented; optionally set `last_synced`."""
        marked = list(paths)
        tier_map = dict(tiers or {})

        def _apply(record: ModuleRecord) -> None:
            now = utc_timestamp()
            for path in marked:
                if path in record.undocumented_files:
                    record.undocumented_files.remove(path)
                existing = next((entry for entry in record.files if entry.path == path), None)
                if existing is None:
                    record.files.append(
                        ModuleFile(path=path, documentation_tier=tier_map.get(path), added_date=now)
                    )
                elif path in tier_map:
                    existing.documentation_tier = tier_map[path]
            if sha is not None:
                record.last_synced = sha

        return self._mutate(slug, _apply)

    def move_file_to_undocumented(self, slug: str, path: str) -> ModuleRecord:
        def _apply(record: ModuleRecord) -> None:
            record.files = [entry for entry in record.files if entry.path != path]
            if path not in record.undocumented_files:
                record.undocumented_files.append(path)

        return self._mutate(slug, _apply)

    def update_summary(self, slug: str, summary: str) -> ModuleRecord:
        def _apply(record: ModuleRecord) -> None:
            record.summary = summary

        return self._mutate(slug, _apply)

    def read_content(self, slug: str) -> Optional[str]:
        try:
            return self.content_path(slug).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def write_content(self, slug: str, content: str) -> Path:
        path = self.content_path(slug)
        atomic_write_text(path, content)
        return path

    def ensure_content(self, record: ModuleRecord) -> str:
        content = self.read_content(record.slug)
        if content is None:
            content = placeholder_content(record.name, record.summary)
            self.write_content(record.slug, content)
        return content

    # ------------------------------------------------------------------
    # Internals

    def _lock(self, slug: str):
        return FileLock(self.config.locks_dir, f"module:{self.metadata_path(slug)}").acquire()

    def _mutate(self, slug: str, apply: Callable[[ModuleRecord], None]) -> ModuleRecord:
        with self._lock(slug):
            record = self.require(slug)
            apply(record)
            self.save(record)
            return record


__all__ = [
    "ModuleMetadataStore",
    "is_valid_slug",
    "placeholder_content",
    "slugify",
]
