"""Per-file documentation storage across the micro, standard and expansive tiers."""

from __future__ import annotations

import re
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from ..config import TIER_NAMES, CascadeDocsConfig
from ..logging import get_logger
from .files import atomic_write_text

# Highest detail first; used when any single document will do.
PREFERENCE_ORDER: Tuple[str, ...] = ("expansive", "standard", "micro")

_DASH_FRONT_MATTER = re.compile(r"\A\s*---[ \t]*\n(.*?)\n---[ \t]*(?:\n|\Z)", re.DOTALL)
_FENCED_FRONT_MATTER = re.compile(r"\A\s*```ya?ml[ \t]*\n(.*?)\n```[ \t]*(?:\n|\Z)", re.DOTALL)
_COMMIT_SHA_LINE = re.compile(r"^([ \t]*commit_sha:[ \t]*).*$", re.MULTILINE)
_COMMIT_SHA_VALUE = re.compile(r"^[ \t]*commit_sha:[ \t]*(\S*)[ \t]*$", re.MULTILINE)


def normalize_path(path: str) -> str:
    """Return a repository-relative POSIX path without leading './'."""
    normalized = path.replace("\\", "/").strip()
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.lstrip("/")


def strip_extension(path: str) -> str:
    posix = PurePosixPath(normalize_path(path))
    if not posix.suffix:
        return str(posix)
    return str(posix.with_suffix(""))


def parse_front_matter(text: str) -> Dict[str, Any]:
    """Parse a leading `---` or ```yaml front-matter block; empty when absent."""
    span = _front_matter_span(text)
    if span is None:
        return {}
    start, end = span
    try:
        loaded = yaml.safe_load(text[start:end])
    except yaml.YAMLError:
        return {}
    return loaded if isinstance(loaded, dict) else {}


def extract_commit_sha(text: str) -> Optional[str]:
    # Read the raw value; YAML would turn an all-digit sha into an int.
    span = _front_matter_span(text)
    if span is None:
        return None
    match = _COMMIT_SHA_VALUE.search(text[span[0] : span[1]])
    if match is None:
        return None
    return match.group(1).strip("\"'") or None


def set_commit_sha(text: str, sha: str) -> str:
    """Rewrite the front-matter `commit_sha` to `sha`, inserting the field or block if needed."""
    span = _front_matter_span(text)
    if span is None:
        return f"---\ncommit_sha: {sha}\n---\n\n{text}"
    start, end = span
    block = text[start:end]
    if _COMMIT_SHA_LINE.search(block):
        block = _COMMIT_SHA_LINE.sub(lambda match: f"{match.group(1)}{sha}", block, count=1)
    else:
        block = f"{block.rstrip()}\ncommit_sha: {sha}" if block.strip() else f"commit_sha: {sha}"
    return f"{text[:start]}{block}{text[end:]}"


def _front_matter_span(text: str) -> Optional[Tuple[int, int]]:
    for pattern in (_DASH_FRONT_MATTER, _FENCED_FRONT_MATTER):
        match = pattern.match(text)
        if match:
            return match.start(1), match.end(1)
    return None


class DocumentStore:
    """Reads and writes tier documents at `<output>/<tier-dir>/<path-without-ext>.md`."""

    def __init__(self, config: CascadeDocsConfig) -> None:
        self.config = config
        self.logger = get_logger("stores.documents")

    def tier_path(self, source_path: str, tier: str) -> Path:
        directory = self.config.tiers.directory(tier)
        return self.config.output_dir / directory / f"{strip_extension(source_path)}.md"

    def exists(self, source_path: str, tier: str) -> bool:
        return self.tier_path(source_path, tier).is_file()

    def existing_tiers(self, source_path: str) -> List[str]:
        return [tier for tier in TIER_NAMES if self.exists(source_path, tier)]

    def read(self, source_path: str, tier: str) -> Optional[str]:
        path = self.tier_path(source_path, tier)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def load_all(self, source_path: str) -> Dict[str, str]:
        documents: Dict[str, str] = {}
        for tier in TIER_NAMES:
            content = self.read(source_path, tier)
            if content is not None:
                documents[tier] = content
        return documents

    def best_available(self, source_path: str) -> Optional[Tuple[str, str]]:
        for tier in PREFERENCE_ORDER:
            content = self.read(source_path, tier)
            if content is not None:
                return tier, content
        return None

    def write(self, source_path: str, tier: str, content: str) -> Path:
        path = self.tier_path(source_path, tier)
        atomic_write_text(path, content)
        return path

    def write_tiers(self, source_path: str, documents: Mapping[str, str]) -> List[Path]:
        """Write several tiers, restoring the previous state if any write fails."""
        previous: Dict[str, Optional[str]] = {}
        written: List[Path] = []
        try:
            for tier in TIER_NAMES:
                if tier not in documents:
                    continue
                previous[tier] = self.read(source_path, tier)
                written.append(self.write(source_path, tier, documents[tier]))
        except OSError:
            self.logger.error("Rolling back documentation for %s after a write failure", source_path)
            for tier, content in previous.items():
                path = self.tier_path(source_path, tier)
                if content is None:
                    path.unlink(missing_ok=True)
                else:
                    atomic_write_text(path, content)
            raise
        return written

    def delete_all(self, source_path: str) -> List[str]:
        removed: List[str] = []
        for tier in TIER_NAMES:
            path = self.tier_path(source_path, tier)
            if path.is_file():
                path.unlink()
                removed.append(tier)
        if removed:
            self.logger.info("Deleted %s documentation for %s", ", ".join(removed), source_path)
        return removed

    def documented_files(self) -> List[str]:
        """Return source paths that have at least a micro-tier document."""
        micro_root = self.config.output_dir / self.config.tiers.directory("micro")
        if not micro_root.is_dir():
            return []
        documented: List[str] = []
        for doc_path in sorted(micro_root.rglob("*.md")):
            stem = doc_path.relative_to(micro_root).with_suffix("").as_posix()
            source = self.resolve_source(stem)
            if source is None:
                self.logger.debug("Skipping orphan documentation %s", doc_path)
                continue
            documented.append(source)
        return sorted(set(documented))

    def resolve_source(self, stem: str) -> Optional[str]:
        """Map a document stem back to its source path."""
        for extension in self.config.file_types:
            candidate = f"{stem}.{extension}"
            if (self.config.root / candidate).is_file():
                return candidate
        expansive = self.read(f"{stem}.md", "expansive")
        if expansive:
            source_path = parse_front_matter(expansive).get("source_path")
            if isinstance(source_path, str) and strip_extension(source_path) == stem:
                return normalize_path(source_path)
        return None


__all__ = [
    "DocumentStore",
    "PREFERENCE_ORDER",
    "extract_commit_sha",
    "normalize_path",
    "parse_front_matter",
    "set_commit_sha",
    "strip_extension",
]
