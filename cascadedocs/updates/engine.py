"""Per-file change handling between two revisions.

For one path and a `from_sha`/`to_sha` pair the engine either deletes the
file's documentation, regenerates it from scratch, refreshes only the revision
marker, or asks the AI to patch the tiers the diff affects. Files whose
documentation changed are queued back into their module as undocumented so
the module narrative catches up.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..config import TIER_NAMES, CascadeDocsConfig
from ..errors import InvalidResponse
from ..git.diff import DiffService
from ..llm.responses import parse_json_object
from ..llm.runner import TextGenerator
from ..logging import get_logger
from ..modules.assignment import ModuleAssignmentEngine
from ..modules.mapping import ModuleMappingService
from ..prompting.builder import DOCUMENTATION_SYSTEM_PROMPT, PromptBuilder
from ..stores.documents import DocumentStore, extract_commit_sha, normalize_path, set_commit_sha
from ..stores.logs import UpdateLogStore
from ..stores.modules import ModuleMetadataStore
from .generator import DocumentationGenerator

ACTION_DELETED = "deleted"
ACTION_GENERATED = "generated"
ACTION_UPDATED = "updated"
ACTION_TRIVIAL = "trivial"
ACTION_UNCHANGED = "unchanged"


@dataclass
class FileUpdateResult:
    """What happened to one file's documentation."""

    path: str
    action: str
    to_sha: str
    changed_tiers: List[str] = field(default_factory=list)
    module: Optional[str] = None
    module_to_update: Optional[str] = None


def merge_tier_updates(
    existing: Dict[str, str], response: Dict[str, object], to_sha: str
) -> tuple[Dict[str, str], List[str]]:
    """Apply a per-tier update response to `existing`.

    Returns the documents to write and the tiers whose body text changed. A
    `null` tier is left alone, except that an existing expansive tier always
    has its `commit_sha` moved to `to_sha`.
    """
    writes: Dict[str, str] = {}
    changed: List[str] = []
    for tier in TIER_NAMES:
        value = response.get(tier)
        if value is not None and not isinstance(value, str):
            raise InvalidResponse(f"Update for the {tier} tier must be a string or null")
        previous = existing.get(tier)
        if isinstance(value, str) and value.strip():
            candidate = value.strip() + "\n"
            if tier == "expansive":
                candidate = set_commit_sha(candidate, to_sha)
            if previous is not None and _same_body(previous, candidate, to_sha, tier):
                candidate = set_commit_sha(previous, to_sha) if tier == "expansive" else previous
            else:
                changed.append(tier)
            if candidate != previous:
                writes[tier] = candidate
        elif tier == "expansive" and previous is not None:
            refreshed = set_commit_sha(previous, to_sha)
            if refreshed != previous:
                writes[tier] = refreshed
    return writes, changed


def _same_body(previous: str, candidate: str, to_sha: str, tier: str) -> bool:
    if tier == "expansive":
        previous = set_commit_sha(previous, to_sha)
    return previous.strip() == candidate.strip()


class ChangeUpdateEngine:
    """Brings one file's tier documents up to `to_sha`."""

    def __init__(
        self,
        config: CascadeDocsConfig,
        *,
        documents: DocumentStore,
        diff: DiffService,
        generator: TextGenerator,
        doc_generator: DocumentationGenerator,
        metadata: ModuleMetadataStore,
        mapping: ModuleMappingService,
        assignment: ModuleAssignmentEngine,
        update_log: UpdateLogStore,
        builder: PromptBuilder | None = None,
        model: str | None = None,
    ) -> None:
        self.config = config
        self.documents = documents
        self.diff = diff
        self.generator = generator
        self.doc_generator = doc_generator
        self.metadata = metadata
        self.mapping = mapping
        self.assignment = assignment
        self.update_log = update_log
        self.builder = builder or PromptBuilder()
        self.model = model or config.ai.model
        self.logger = get_logger("updates.engine")

    def update_file(
        self, path: str, from_sha: str, to_sha: str, *, timeout: float | None = None
    ) -> FileUpdateResult:
        path = normalize_path(path)
        if not self.diff.file_exists(to_sha, path):
            return self.delete_file(path, to_sha)
        if self._is_current(path, to_sha):
            return self._current_result(path, to_sha)

        existing = self.documents.load_all(path)
        diff_text = self.diff.diff(from_sha, to_sha, path)
        if not existing or not diff_text.strip():
            if existing and self.diff.file_exists(from_sha, path):
                self.logger.debug("No changes to %s between %s and %s", path, from_sha, to_sha)
                return FileUpdateResult(path=path, action=ACTION_UNCHANGED, to_sha=to_sha)
            return self.generate_fresh(path, to_sha, timeout=timeout)

        if not self.diff.diff(from_sha, to_sha, path, ignore_whitespace=True).strip():
            self.logger.info("Whitespace-only change to %s; refreshing revision marker", path)
            writes, _ = merge_tier_updates(existing, {}, to_sha)
            if writes:
                self.documents.write_tiers(path, writes)
            self.update_log.record_file(path, to_sha)
            return FileUpdateResult(
                path=path,
                action=ACTION_TRIVIAL,
                to_sha=to_sha,
                module=self.mapping.get_module_for_file(path),
            )

        source = self.doc_generator.scanner.source_file(path)
        prompt = self.builder.render(
            "file_update.md.j2",
            source_path=path,
            component_name=source.component_name,
            language=source.language,
            file_contents=self.doc_generator.read_source(path, to_sha),
            from_sha=from_sha,
            to_sha=to_sha,
            diff=diff_text.strip(),
            existing={tier: content.strip() for tier, content in existing.items()},
        )
        self.logger.info("Updating documentation for %s (%s..%s)", path, from_sha[:8], to_sha[:8])
        self.logger.debug("Update prompt for %s is %d characters", path, len(prompt))
        response = self.generator.generate(
            prompt,
            self.model,
            system=DOCUMENTATION_SYSTEM_PROMPT,
            json_mode=True,
            timeout=timeout,
        )
        payload = parse_json_object(response, required=TIER_NAMES)
        writes, changed = merge_tier_updates(existing, payload, to_sha)
        if writes:
            self.documents.write_tiers(path, writes)

        if changed:
            self.logger.info("Updated %s tier(s) for %s", ", ".join(changed), path)
        else:
            self.logger.info("No documentation changes needed for %s", path)
        module, module_to_update = self._track_module_change(path, changed=bool(changed))
        self.update_log.record_file(path, to_sha)
        return FileUpdateResult(
            path=path,
            action=ACTION_UPDATED,
            to_sha=to_sha,
            changed_tiers=changed,
            module=module,
            module_to_update=module_to_update,
        )

    def generate_fresh(
        self, path: str, to_sha: str, *, timeout: float | None = None
    ) -> FileUpdateResult:
        """Regenerate every tier, record the baseline and place the file in a module."""
        path = normalize_path(path)
        if self._is_current(path, to_sha):
            return self._current_result(path, to_sha)
        result = self.doc_generator.generate(path, to_sha, force=True, timeout=timeout)

        if self.mapping.get_module_for_file(path) is None and self.config.modules.auto_assign:
            suggestion = self.mapping.suggest_module_for_new_file(path)
            if suggestion is not None:
                self.logger.info("Assigning %s to module %s", path, suggestion)
                self.assignment.assign_file_to_module(path, suggestion)

        module, module_to_update = self._track_module_change(path, changed=True)
        self.update_log.record_file(path, to_sha)
        return FileUpdateResult(
            path=path,
            action=ACTION_GENERATED,
            to_sha=to_sha,
            changed_tiers=list(result.tiers),
            module=module,
            module_to_update=module_to_update,
        )

    def delete_file(self, path: str, to_sha: str) -> FileUpdateResult:
        """Remove every tier for a file that no longer exists; no AI call."""
        path = normalize_path(path)
        module = self.mapping.get_module_for_file(path)
        removed = self.documents.delete_all(path)
        self.update_log.forget_file(path)
        self.assignment.forget_files([path])
        self.logger.info("Removed documentation for deleted file %s", path)
        return FileUpdateResult(
            path=path, action=ACTION_DELETED, to_sha=to_sha, changed_tiers=removed, module=module
        )

    def revision_of(self, path: str) -> Optional[str]:
        """Revision the file's documentation was last produced against."""
        recorded = self.update_log.file_revision(normalize_path(path))
        if recorded:
            return recorded
        expansive = self.documents.read(normalize_path(path), "expansive")
        return extract_commit_sha(expansive) if expansive else None

    # ------------------------------------------------------------------
    # Internals

    def _is_current(self, path: str, to_sha: str) -> bool:
        # The update log entry is written last, so it marks a finished job.
        if self.update_log.file_revision(path) != to_sha:
            return False
        return all(self.documents.exists(path, tier) for tier in TIER_NAMES)

    def _current_result(self, path: str, to_sha: str) -> FileUpdateResult:
        self.logger.debug("Documentation for %s is already at %s; skipping", path, to_sha)
        slug = self.mapping.get_module_for_file(path)
        module_to_update = None
        if slug is not None:
            record = self.metadata.load(slug)
            if (
                record is not None
                and path in record.undocumented_files
                and len(record.undocumented_files) >= self.config.modules.update_threshold
            ):
                module_to_update = slug
        return FileUpdateResult(
            path=path, action=ACTION_UNCHANGED, to_sha=to_sha, module=slug, module_to_update=module_to_update
        )

    def _track_module_change(self, path: str, *, changed: bool) -> tuple[Optional[str], Optional[str]]:
        slug = self.mapping.get_module_for_file(path)
        if slug is None or not changed:
            return slug, None
        record = self.metadata.move_file_to_undocumented(slug, path)
        self.mapping.refresh()
        if len(record.undocumented_files) >= self.config.modules.update_threshold:
            return slug, slug
        return slug, None


__all__ = [
    "ACTION_DELETED",
    "ACTION_GENERATED",
    "ACTION_TRIVIAL",
    "ACTION_UNCHANGED",
    "ACTION_UPDATED",
    "ChangeUpdateEngine",
    "FileUpdateResult",
    "merge_tier_updates",
]
