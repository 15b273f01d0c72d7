"""Core data models shared across cascadedocs components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from .errors import MalformedState

DOC_VERSION = "1.0"


def utc_timestamp() -> str:
    """Return the current UTC time in ISO-8601 form with a trailing Z."""
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass
class ModuleFile:
    """A documented member of a module."""

    path: str
    documented: bool = True
    documentation_tier: Optional[str] = None
    added_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "documented": self.documented,
            "documentation_tier": self.documentation_tier,
            "added_date": self.added_date,
        }


@dataclass
class ModuleRecord:
    """Metadata for one conceptual module (persisted as `<slug>.json`)."""

    slug: str
    name: str
    summary: str = ""
    files: List[ModuleFile] = field(default_factory=list)
    undocumented_files: List[str] = field(default_factory=list)
    last_synced: Optional[str] = None
    doc_version: str = DOC_VERSION
    generated_at: Optional[str] = None
    last_updated: Optional[str] = None

    def member_paths(self) -> List[str]:
        seen: Set[str] = set()
        ordered: List[str] = []
        for path in [entry.path for entry in self.files] + list(self.undocumented_files):
            if path not in seen:
                seen.add(path)
                ordered.append(path)
        return ordered

    def contains(self, path: str) -> bool:
        return path in self.undocumented_files or any(entry.path == path for entry in self.files)

    def statistics(self) -> Dict[str, int]:
        documented = len(self.files)
        undocumented = len(self.undocumented_files)
        return {
            "total_files": documented + undocumented,
            "documented_files": documented,
            "undocumented_files": undocumented,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module_name": self.name,
            "module_slug": self.slug,
            "module_summary": self.summary,
            "doc_version": self.doc_version,
            "generated_at": self.generated_at,
            "last_updated": self.last_updated,
            "git_commit_sha": self.last_synced,
            "files": [entry.to_dict() for entry in self.files],
            "undocumented_files": list(self.undocumented_files),
            "statistics": self.statistics(),
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "ModuleRecord":
        if not isinstance(payload, dict):
            raise MalformedState("module metadata must be a JSON object")
        slug = payload.get("module_slug")
        name = payload.get("module_name")
        if not isinstance(slug, str) or not slug:
            raise MalformedState("module metadata is missing 'module_slug'")
        if not isinstance(name, str) or not name:
            raise MalformedState(f"module metadata for '{slug}' is missing 'module_name'")

        files: List[ModuleFile] = []
        raw_files = payload.get("files")
        if raw_files is None:
            raw_files = []
        if not isinstance(raw_files, list):
            raise MalformedState(f"module metadata for '{slug}' has a non-list 'files'")
        for raw in raw_files:
            if isinstance(raw, str):
                files.append(ModuleFile(path=raw))
                continue
            if not isinstance(raw, dict) or not isinstance(raw.get("path"), str):
                raise MalformedState(f"module metadata for '{slug}' has an invalid file entry")
            files.append(
                ModuleFile(
                    path=raw["path"],
                    documented=bool(raw.get("documented", True)),
                    documentation_tier=_optional_str(raw.get("documentation_tier")),
                    added_date=_optional_str(raw.get("added_date")),
                )
            )

        undocumented = payload.get("undocumented_files")
        if undocumented is None:
            undocumented = []
        if not isinstance(undocumented, list):
            raise MalformedState(f"module metadata for '{slug}' has a non-list 'undocumented_files'")

        return cls(
            slug=slug,
            name=name,
            summary=_optional_str(payload.get("module_summary")) or "",
            files=files,
            undocumented_files=[str(item) for item in undocumented if isinstance(item, str)],
            last_synced=_optional_str(payload.get("git_commit_sha")),
            doc_version=_optional_str(payload.get("doc_version")) or DOC_VERSION,
            generated_at=_optional_str(payload.get("generated_at")),
            last_updated=_optional_str(payload.get("last_updated")),
        )


@dataclass
class AssignmentLog:
    """Partition of documented files into assigned, unassigned and do-not-document."""

    last_analysis: Optional[str] = None
    assigned_files: Dict[str, List[str]] = field(default_factory=dict)
    unassigned_files: List[str] = field(default_factory=list)
    do_not_document: List[str] = field(default_factory=list)
    potential_modules: List[Dict[str, Any]] = field(default_factory=list)
    ai_created_modules: List[Dict[str, Any]] = field(default_factory=list)
    last_ai_assignment: Optional[str] = None
    ai_reviewed_files: List[str] = field(default_factory=list)

    def assigned_paths(self) -> Set[str]:
        paths: Set[str] = set()
        for files in self.assigned_files.values():
            paths.update(files)
        return paths

    def module_for(self, path: str) -> Optional[str]:
        for slug, files in self.assigned_files.items():
            if path in files:
                return slug
        return None

    def all_paths(self) -> Set[str]:
        return self.assigned_paths() | set(self.unassigned_files) | set(self.do_not_document)

    def assign(self, slug: str, paths: Iterable[str]) -> None:
        bucket = self.assigned_files.setdefault(slug, [])
        for path in paths:
            if path not in bucket:
                bucket.append(path)
        moved = set(bucket)
        self.unassigned_files = [path for path in self.unassigned_files if path not in moved]

    def forget(self, paths: Iterable[str]) -> None:
        drop = set(paths)
        for slug in list(self.assigned_files):
            self.assigned_files[slug] = [p for p in self.assigned_files[slug] if p not in drop]
        self.unassigned_files = [p for p in self.unassigned_files if p not in drop]
        self.do_not_document = [p for p in self.do_not_document if p not in drop]
        self.ai_reviewed_files = [p for p in self.ai_reviewed_files if p not in drop]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_analysis": self.last_analysis,
            "assigned_files": {slug: list(files) for slug, files in self.assigned_files.items()},
            "unassigned_files": list(self.unassigned_files),
            "do_not_document": list(self.do_not_document),
            "potential_modules": list(self.potential_modules),
            "ai_created_modules": list(self.ai_created_modules),
            "last_ai_assignment": self.last_ai_assignment,
            "ai_reviewed_files": list(self.ai_reviewed_files),
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "AssignmentLog":
        if not isinstance(payload, dict):
            raise MalformedState("assignment log must be a JSON object")
        assigned = payload.get("assigned_files")
        if assigned is None:
            assigned = {}
        if not isinstance(assigned, dict):
            raise MalformedState("assignment log 'assigned_files' must be an object")
        assigned_files: Dict[str, List[str]] = {}
        for slug, files in assigned.items():
            if not isinstance(files, list):
                raise MalformedState(f"assignment log entry for '{slug}' must be a list")
            assigned_files[str(slug)] = [str(path) for path in files if isinstance(path, str)]
        return cls(
            last_analysis=_optional_str(payload.get("last_analysis")),
            assigned_files=assigned_files,
            unassigned_files=_str_list(payload.get("unassigned_files"), "unassigned_files"),
            do_not_document=_str_list(payload.get("do_not_document"), "do_not_document"),
            potential_modules=_dict_list(payload.get("potential_modules")),
            ai_created_modules=_dict_list(payload.get("ai_created_modules")),
            last_ai_assignment=_optional_str(payload.get("last_ai_assignment")),
            ai_reviewed_files=_str_list(payload.get("ai_reviewed_files"), "ai_reviewed_files"),
        )


@dataclass
class RevisionEntry:
    """Revision a file or module was last documented against."""

    sha: str
    last_updated: str

    def to_dict(self) -> Dict[str, str]:
        return {"sha": self.sha, "last_updated": self.last_updated}


@dataclass
class UpdateLog:
    """Per-file and per-module revision bookkeeping."""

    last_update_sha: Optional[str] = None
    last_update_timestamp: Optional[str] = None
    files: Dict[str, RevisionEntry] = field(default_factory=dict)
    modules: Dict[str, RevisionEntry] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_update_sha": self.last_update_sha,
            "last_update_timestamp": self.last_update_timestamp,
            "files": {path: entry.to_dict() for path, entry in self.files.items()},
            "modules": {slug: entry.to_dict() for slug, entry in self.modules.items()},
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "UpdateLog":
        if not isinstance(payload, dict):
            raise MalformedState("update log must be a JSON object")
        return cls(
            last_update_sha=_optional_str(payload.get("last_update_sha")),
            last_update_timestamp=_optional_str(payload.get("last_update_timestamp")),
            files=_revision_map(payload.get("files"), "files"),
            modules=_revision_map(payload.get("modules"), "modules"),
        )


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _str_list(value: Any, name: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedState(f"'{name}' must be a list")
    return [item for item in value if isinstance(item, str)]


def _dict_list(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _revision_map(value: Any, name: str) -> Dict[str, RevisionEntry]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedState(f"update log '{name}' must be an object")
    entries: Dict[str, RevisionEntry] = {}
    for key, raw in value.items():
        if not isinstance(raw, dict) or not isinstance(raw.get("sha"), str):
            continue
        entries[str(key)] = RevisionEntry(
            sha=raw["sha"], last_updated=_optional_str(raw.get("last_updated")) or ""
        )
    return entries


__all__ = [
    "AssignmentLog",
    "DOC_VERSION",
    "ModuleFile",
    "ModuleRecord",
    "RevisionEntry",
    "UpdateLog",
    "utc_timestamp",
]
