"""Module assignment: the one-time full analysis and incremental reconciliation.

The engine moves the assignment log through two states. With no log on disk
(`no_log`) the first reconciliation asks the AI to partition every documented
file into modules. Once a log exists (`analyzed`) only files missing from the
log's buckets are sent to the AI, and only when at least one of them has not
been reviewed before.

Prompt construction, response parsing and merging are plain functions so they
can be exercised without a provider or a filesystem.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from pathlib import PurePosixPath
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from ..config import CascadeDocsConfig
from ..errors import InvalidResponse
from ..llm.responses import parse_json_object
from ..llm.runner import TextGenerator
from ..logging import get_logger
from ..models import AssignmentLog, ModuleRecord, utc_timestamp
from ..prompting.builder import ASSIGNMENT_SYSTEM_PROMPT, PromptBuilder
from ..stores.documents import DocumentStore, normalize_path
from ..stores.files import FileLock
from ..stores.logs import AssignmentLogStore
from ..stores.modules import ModuleMetadataStore, slugify
from .heuristics import suggest_potential_modules
from .mapping import ModuleMappingService

ASSIGN_TO_EXISTING = "assign_to_existing"
CREATE_NEW_MODULE = "create_new_module"
DO_NOT_DOCUMENT = "do_not_document"
ACTIONS = (ASSIGN_TO_EXISTING, CREATE_NEW_MODULE, DO_NOT_DOCUMENT)

STATE_NO_LOG = "no_log"
STATE_ANALYZED = "analyzed"

RELATED_FILES_LIMIT = 5
ANALYSIS_LOCK_MARGIN_SECONDS = 60.0


@dataclass
class ProposedModule:
    """A module the AI wants to create."""

    slug: str
    name: str
    description: str
    files: List[str]
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "files": list(self.files),
        }
        if self.confidence is not None:
            payload["confidence"] = self.confidence
        return payload


@dataclass
class AssignmentDecision:
    """One entry of the AI's `assignments` list."""

    action: str
    files: List[str]
    module: Optional[str] = None
    module_name: Optional[str] = None
    module_slug: Optional[str] = None
    description: str = ""
    confidence: Optional[float] = None
    reasoning: str = ""


@dataclass
class AssignmentPlan:
    """The effect a set of decisions would have on the log and module records."""

    assign_existing: Dict[str, List[str]] = field(default_factory=dict)
    new_modules: List[ProposedModule] = field(default_factory=list)
    do_not_document: List[str] = field(default_factory=list)
    unassigned: List[str] = field(default_factory=list)
    rejected_modules: List[ProposedModule] = field(default_factory=list)
    low_confidence: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def claimed(self) -> Set[str]:
        paths: Set[str] = set(self.do_not_document)
        for files in self.assign_existing.values():
            paths.update(files)
        for module in self.new_modules:
            paths.update(module.files)
        return paths

    @property
    def has_changes(self) -> bool:
        return bool(self.assign_existing or self.new_modules or self.do_not_document)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assign_existing": {slug: list(files) for slug, files in self.assign_existing.items()},
            "new_modules": [module.to_dict() for module in self.new_modules],
            "do_not_document": list(self.do_not_document),
            "unassigned": list(self.unassigned),
            "rejected_modules": [module.to_dict() for module in self.rejected_modules],
            "low_confidence": list(self.low_confidence),
            "errors": list(self.errors),
        }


@dataclass
class AssignmentResult:
    """Outcome of one reconciliation pass."""

    plan: AssignmentPlan
    dry_run: bool
    ai_called: bool
    analysis_performed: bool = False
    prompt: Optional[str] = None


# ----------------------------------------------------------------------
# Prompt construction


def related_files(path: str, universe: Iterable[str], *, limit: int = RELATED_FILES_LIMIT) -> List[str]:
    """Files in the same directory or with a similar name (ratio above 0.7)."""
    posix = PurePosixPath(path)
    stem = posix.name.split(".", 1)[0]
    related: List[str] = []
    for other in universe:
        if other == path:
            continue
        other_posix = PurePosixPath(other)
        same_directory = other_posix.parent == posix.parent
        similar = SequenceMatcher(None, stem, other_posix.name.split(".", 1)[0]).ratio() > 0.7
        if same_directory or similar:
            related.append(other)
            if len(related) >= limit:
                break
    return related


def _file_context(path: str, summary: Optional[str]) -> Dict[str, Any]:
    posix = PurePosixPath(path)
    return {
        "path": path,
        "directory": str(posix.parent),
        "filename": posix.name,
        "summary": (summary or "").strip(),
        "related": [],
    }


def build_initial_analysis_prompt(
    file_docs: Mapping[str, Optional[str]],
    *,
    granularity: str,
    min_files: int,
    builder: PromptBuilder | None = None,
) -> str:
    """Prompt asking the AI to partition every documented file into modules."""
    builder = builder or PromptBuilder()
    files = [_file_context(path, summary) for path, summary in file_docs.items()]
    return builder.render(
        "initial_analysis.md.j2",
        files=files,
        granularity=granularity,
        min_files=min_files,
    )


def build_assignment_prompt(
    unassigned_docs: Mapping[str, Optional[str]],
    modules: Sequence[ModuleRecord],
    *,
    granularity: str,
    min_files: int,
    builder: PromptBuilder | None = None,
) -> str:
    """Prompt asking the AI to route unassigned files into existing or new modules."""
    builder = builder or PromptBuilder()
    universe = list(unassigned_docs)
    for module in modules:
        universe.extend(module.member_paths())
    files = []
    for path, summary in unassigned_docs.items():
        context = _file_context(path, summary)
        context["related"] = related_files(path, universe)
        files.append(context)
    module_contexts = [
        {
            "slug": module.slug,
            "name": module.name,
            "summary": module.summary.strip(),
            "file_count": len(module.member_paths()),
        }
        for module in modules
    ]
    return builder.render(
        "module_assignment.md.j2",
        files=files,
        modules=module_contexts,
        granularity=granularity,
        min_files=min_files,
    )


# ----------------------------------------------------------------------
# Response parsing


def parse_analysis_response(text: str) -> Tuple[List[ProposedModule], List[str]]:
    """Parse `{"modules": [...], "unassigned_files": [...]}`."""
    payload = parse_json_object(text, required=("modules",))
    raw_modules = payload["modules"]
    if not isinstance(raw_modules, list):
        raise InvalidResponse("'modules' must be a list")
    modules: List[ProposedModule] = []
    for index, raw in enumerate(raw_modules):
        if not isinstance(raw, dict):
            raise InvalidResponse(f"modules[{index}] must be an object")
        name = _required_str(raw, "module_name", f"modules[{index}]")
        slug = _required_str(raw, "module_slug", f"modules[{index}]")
        modules.append(
            ProposedModule(
                slug=slug,
                name=name,
                description=_optional_text(raw.get("description")),
                files=_required_paths(raw, f"modules[{index}]"),
            )
        )
    residual = payload.get("unassigned_files") or []
    if not isinstance(residual, list):
        raise InvalidResponse("'unassigned_files' must be a list")
    return modules, [normalize_path(str(path)) for path in residual if isinstance(path, str)]


def parse_assignment_response(text: str) -> List[AssignmentDecision]:
    """Parse `{"assignments": [...]}` into validated decisions."""
    payload = parse_json_object(text, required=("assignments",))
    raw_assignments = payload["assignments"]
    if not isinstance(raw_assignments, list):
        raise InvalidResponse("'assignments' must be a list")
    decisions: List[AssignmentDecision] = []
    for index, raw in enumerate(raw_assignments):
        where = f"assignments[{index}]"
        if not isinstance(raw, dict):
            raise InvalidResponse(f"{where} must be an object")
        action = raw.get("action")
        if action not in ACTIONS:
            raise InvalidResponse(f"{where} has unknown action {action!r}")
        decision = AssignmentDecision(
            action=action,
            files=_required_paths(raw, where),
            confidence=_optional_confidence(raw.get("confidence"), where),
            reasoning=_optional_text(raw.get("reasoning")),
        )
        if action == ASSIGN_TO_EXISTING:
            decision.module = _required_str(raw, "module", where)
        elif action == CREATE_NEW_MODULE:
            decision.module_name = _required_str(raw, "module_name", where)
            decision.module_slug = _required_str(raw, "module_slug", where)
            decision.description = _required_str(raw, "description", where)
        decisions.append(decision)
    return decisions


def _required_str(raw: Mapping[str, Any], key: str, where: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise InvalidResponse(f"{where} is missing required field '{key}'")
    return value.strip()


def _required_paths(raw: Mapping[str, Any], where: str) -> List[str]:
    files = raw.get("files")
    if not isinstance(files, list):
        raise InvalidResponse(f"{where} is missing required field 'files'")
    return [normalize_path(path) for path in files if isinstance(path, str) and path.strip()]


def _optional_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _optional_confidence(value: Any, where: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidResponse(f"{where} has a non-numeric confidence")
    return float(value)


# ----------------------------------------------------------------------
# Merge logic


def unique_slug(candidate: str, taken: Iterable[str]) -> str:
    """Slugify `candidate` and suffix -2, -3, ... until it collides with nothing in `taken`."""
    taken_set = set(taken)
    base = slugify(candidate) or "module"
    if base not in taken_set:
        return base
    counter = 2
    while f"{base}-{counter}" in taken_set:
        counter += 1
    return f"{base}-{counter}"


def plan_initial_partition(
    proposals: Sequence[ProposedModule],
    candidates: Sequence[str],
    *,
    existing_slugs: Iterable[str],
    min_files: int,
) -> AssignmentPlan:
    """Turn a full-analysis proposal into a plan over `candidates`."""
    plan = AssignmentPlan()
    candidate_set = set(candidates)
    claimed: Set[str] = set()
    taken = set(existing_slugs)
    for proposal in proposals:
        files = _claimable(proposal.files, candidate_set, claimed, plan)
        if len(files) < min_files:
            plan.rejected_modules.append(
                ProposedModule(proposal.slug, proposal.name, proposal.description, files)
            )
            continue
        slug = unique_slug(proposal.slug, taken)
        taken.add(slug)
        claimed.update(files)
        plan.new_modules.append(ProposedModule(slug, proposal.name, proposal.description, files))
    plan.unassigned = [path for path in candidates if path not in claimed]
    return plan


def plan_assignments(
    decisions: Sequence[AssignmentDecision],
    candidates: Sequence[str],
    *,
    existing_slugs: Iterable[str],
    min_files: int,
    confidence_threshold: float = 0.0,
) -> AssignmentPlan:
    """Merge AI decisions over `candidates`; the first decision to claim a path wins."""
    plan = AssignmentPlan()
    candidate_set = set(candidates)
    existing = set(existing_slugs)
    claimed: Set[str] = set()
    planned: Dict[str, ProposedModule] = {}
    low_confidence: List[str] = []

    for decision in decisions:
        files = _claimable(decision.files, candidate_set, claimed, plan)
        if not files:
            continue
        if decision.confidence is not None and decision.confidence < confidence_threshold:
            low_confidence.extend(files)
            continue

        if decision.action == ASSIGN_TO_EXISTING:
            slug = decision.module or ""
            if slug in existing:
                bucket = plan.assign_existing.setdefault(slug, [])
                bucket.extend(files)
                claimed.update(files)
            elif slug in planned:
                planned[slug].files.extend(files)
                claimed.update(files)
            else:
                plan.errors.append(f"Unknown module '{slug}' for {', '.join(files)}")
        elif decision.action == CREATE_NEW_MODULE:
            name = decision.module_name or decision.module_slug or "Module"
            if len(files) < min_files:
                plan.rejected_modules.append(
                    ProposedModule(
                        decision.module_slug or slugify(name),
                        name,
                        decision.description,
                        files,
                        decision.confidence,
                    )
                )
                continue
            slug = unique_slug(decision.module_slug or name, existing | set(planned))
            module = ProposedModule(slug, name, decision.description, list(files), decision.confidence)
            planned[slug] = module
            plan.new_modules.append(module)
            claimed.update(files)
        else:
            plan.do_not_document.extend(files)
            claimed.update(files)

    plan.low_confidence = [path for path in low_confidence if path not in claimed]
    plan.unassigned = [path for path in candidates if path not in claimed]
    return plan


def _claimable(
    files: Iterable[str], candidates: Set[str], claimed: Set[str], plan: AssignmentPlan
) -> List[str]:
    result: List[str] = []
    for path in files:
        if path not in candidates:
            plan.errors.append(f"Ignoring unknown or already assigned file '{path}'")
            continue
        if path in claimed or path in result:
            continue
        result.append(path)
    return result


def restrict_plan(plan: AssignmentPlan, available: Set[str], *, min_files: int) -> AssignmentPlan:
    """Drop paths no longer available; demote new modules that fall below `min_files`."""
    restricted = AssignmentPlan(
        errors=list(plan.errors),
        low_confidence=[path for path in plan.low_confidence if path in available],
        rejected_modules=list(plan.rejected_modules),
    )
    for slug, files in plan.assign_existing.items():
        kept = [path for path in files if path in available]
        if kept:
            restricted.assign_existing[slug] = kept
    for module in plan.new_modules:
        kept = [path for path in module.files if path in available]
        target = restricted.new_modules if len(kept) >= min_files else restricted.rejected_modules
        target.append(ProposedModule(module.slug, module.name, module.description, kept, module.confidence))
    restricted.do_not_document = [path for path in plan.do_not_document if path in available]
    claimed = restricted.claimed()
    restricted.unassigned = [path for path in plan.unassigned if path in available] + [
        path
        for path in sorted(plan.claimed() - claimed)
        if path in available and path not in plan.unassigned
    ]
    return restricted


def reconcile_log(log: AssignmentLog, documented: Iterable[str], owned: Mapping[str, str]) -> None:
    """Make the log an exact, duplicate-free partition of `documented` (in place).

    Precedence: do-not-document, then the log's own assignments, then module
    membership from metadata, then unassigned.
    """
    documented_set = set(documented)
    claimed: Set[str] = set()

    do_not_document: List[str] = []
    for path in log.do_not_document:
        if path in documented_set and path not in claimed:
            do_not_document.append(path)
            claimed.add(path)

    assigned: Dict[str, List[str]] = {}
    for slug, files in log.assigned_files.items():
        for path in files:
            if path in documented_set and path not in claimed:
                assigned.setdefault(slug, []).append(path)
                claimed.add(path)
    for path in sorted(owned):
        if path in documented_set and path not in claimed:
            assigned.setdefault(owned[path], []).append(path)
            claimed.add(path)

    unassigned: List[str] = []
    for path in log.unassigned_files:
        if path in documented_set and path not in claimed:
            unassigned.append(path)
            claimed.add(path)
    for path in sorted(documented_set - claimed):
        unassigned.append(path)

    log.do_not_document = do_not_document
    log.assigned_files = assigned
    log.unassigned_files = unassigned
    log.ai_reviewed_files = [path for path in dict.fromkeys(log.ai_reviewed_files) if path in unassigned]


def apply_plan_to_log(
    log: AssignmentLog,
    plan: AssignmentPlan,
    *,
    timestamp: str,
    reviewed: Iterable[str],
) -> None:
    """Record `plan` in `log` (in place)."""
    for slug, files in plan.assign_existing.items():
        log.assign(slug, files)
    for module in plan.new_modules:
        log.assign(module.slug, module.files)
    for path in plan.do_not_document:
        if path not in log.do_not_document:
            log.do_not_document.append(path)
    dropped = set(plan.do_not_document)
    log.unassigned_files = [path for path in log.unassigned_files if path not in dropped]
    for path in plan.unassigned:
        if path not in log.unassigned_files and path not in log.all_paths():
            log.unassigned_files.append(path)

    log.ai_created_modules = [module.to_dict() for module in plan.new_modules]
    log.potential_modules = [
        dict(module.to_dict(), source="ai", reason="Below the minimum module size")
        for module in plan.rejected_modules
        if module.files
    ] + [dict(item, source="heuristic") for item in suggest_potential_modules(log.unassigned_files)]
    log.last_ai_assignment = timestamp
    still_unassigned = set(log.unassigned_files)
    log.ai_reviewed_files = [
        path for path in dict.fromkeys(list(log.ai_reviewed_files) + list(reviewed))
        if path in still_unassigned
    ]


# ----------------------------------------------------------------------
# Engine


class ModuleAssignmentEngine:
    """Keeps the assignment log and module records in step with documented files."""

    def __init__(
        self,
        config: CascadeDocsConfig,
        *,
        documents: DocumentStore,
        metadata: ModuleMetadataStore,
        mapping: ModuleMappingService,
        log_store: AssignmentLogStore,
        generator: TextGenerator,
        builder: PromptBuilder | None = None,
        model: str | None = None,
    ) -> None:
        self.config = config
        self.documents = documents
        self.metadata = metadata
        self.mapping = mapping
        self.log_store = log_store
        self.generator = generator
        self.builder = builder or PromptBuilder()
        self.model = model or config.ai.model
        self.logger = get_logger("modules.assignment")
        self.analysis_lock = FileLock(
            config.locks_dir,
            f"analysis:{config.assignment_log_path}",
            timeout=config.ai.request_timeout + ANALYSIS_LOCK_MARGIN_SECONDS,
        )

    @property
    def state(self) -> str:
        return STATE_ANALYZED if self.log_store.exists() else STATE_NO_LOG

    def reconcile(self, *, dry_run: bool = False, force: bool = False) -> AssignmentResult:
        """Run the full analysis once if needed, then assign whatever is still unassigned."""
        analysis = self.ensure_analysis(dry_run=dry_run)
        if analysis is not None and dry_run:
            return analysis
        result = self.assign_unassigned(dry_run=dry_run, force=force)
        result.analysis_performed = analysis is not None
        return result

    def ensure_analysis(self, *, dry_run: bool = False) -> Optional[AssignmentResult]:
        """Partition every documented file when no log exists; None when already analyzed.

        The AI call runs under the analysis lock only, so other writers of the
        assignment log are not held up behind it. The log lock is taken for
        the final write, and a log that appeared in the meantime wins.
        """
        with self.analysis_lock.acquire():
            if self.log_store.exists():
                return None

            documented = self.documents.documented_files()
            owned = self.mapping.mapped_files()
            candidates = [path for path in documented if path not in owned]
            self.logger.info(
                "No assignment log found; analyzing %d documented file(s)", len(candidates)
            )

            prompt: Optional[str] = None
            plan = AssignmentPlan(unassigned=list(candidates))
            if candidates:
                docs = {path: self.documents.read(path, "micro") for path in candidates}
                prompt = build_initial_analysis_prompt(
                    docs,
                    granularity=self.config.modules.granularity,
                    min_files=self.config.modules.min_files_per_module,
                    builder=self.builder,
                )
                response = self.generator.generate(
                    prompt,
                    self.model,
                    system=ASSIGNMENT_SYSTEM_PROMPT,
                    json_mode=True,
                )
                proposals, _ = parse_analysis_response(response)
                plan = plan_initial_partition(
                    proposals,
                    candidates,
                    existing_slugs=self.metadata.list_all(),
                    min_files=self.config.modules.min_files_per_module,
                )

            result = AssignmentResult(
                plan=plan, dry_run=dry_run, ai_called=bool(candidates), analysis_performed=True, prompt=prompt
            )
            if dry_run:
                return result

            with self.log_store.locked():
                if self.log_store.exists():
                    self.logger.warning(
                        "Assignment log was written during analysis; discarding the proposed partition"
                    )
                    return None
                self._create_modules(plan)
                self.mapping.refresh()
                log = AssignmentLog()
                reconcile_log(log, documented, self.mapping.mapped_files())
                timestamp = utc_timestamp()
                log.last_analysis = timestamp
                apply_plan_to_log(log, plan, timestamp=timestamp, reviewed=candidates)
                self.log_store.write(log)
            self.logger.info(
                "Initial analysis created %d module(s); %d file(s) left unassigned",
                len(plan.new_modules),
                len(log.unassigned_files),
            )
            return result

    def find_unassigned_with_docs(self) -> Dict[str, str]:
        """Documented files absent from the log's assigned and do-not-document buckets."""
        log = self.log_store.load()
        excluded = log.assigned_paths() | set(log.do_not_document) | set(self.mapping.mapped_files())
        unassigned: Dict[str, str] = {}
        for path in self.documents.documented_files():
            if path in excluded:
                continue
            micro = self.documents.read(path, "micro")
            if micro is not None:
                unassigned[path] = micro
        return unassigned

    def assign_unassigned(
        self, *, dry_run: bool = False, force: bool = False, limit: int | None = None
    ) -> AssignmentResult:
        """Ask the AI where unassigned files belong and merge the answer into the log.

        Files the AI has already reviewed and left unassigned are only resent
        alongside at least one new file, or when `force` is set.
        """
        documented = self.documents.documented_files()
        owned = self.mapping.mapped_files()

        if dry_run:
            log = copy.deepcopy(self.log_store.load())
            reconcile_log(log, documented, owned)
        else:
            def _reconcile(current: AssignmentLog) -> AssignmentLog:
                reconcile_log(current, documented, owned)
                return copy.deepcopy(current)

            log = self.log_store.update(_reconcile)

        candidates = list(log.unassigned_files)
        if limit:
            candidates = candidates[:limit]
        reviewed = set(log.ai_reviewed_files)
        fresh = [path for path in candidates if path not in reviewed]
        if not candidates or (not fresh and not force):
            self.logger.info("No new unassigned files; skipping AI assignment")
            return AssignmentResult(
                plan=AssignmentPlan(unassigned=list(log.unassigned_files)),
                dry_run=dry_run,
                ai_called=False,
            )

        docs = {path: self.documents.read(path, "micro") for path in candidates}
        modules = self.mapping.all_modules()
        prompt = build_assignment_prompt(
            docs,
            modules,
            granularity=self.config.modules.granularity,
            min_files=self.config.modules.min_files_per_module,
            builder=self.builder,
        )
        self.logger.info(
            "Requesting assignments for %d file(s) (%d new) across %d module(s)",
            len(candidates),
            len(fresh),
            len(modules),
        )
        self.logger.debug("Assignment prompt is %d characters", len(prompt))
        response = self.generator.generate(
            prompt, self.model, system=ASSIGNMENT_SYSTEM_PROMPT, json_mode=True
        )
        decisions = parse_assignment_response(response)
        plan = plan_assignments(
            decisions,
            candidates,
            existing_slugs=[module.slug for module in modules],
            min_files=self.config.modules.min_files_per_module,
            confidence_threshold=self.config.modules.confidence_threshold,
        )
        for error in plan.errors:
            self.logger.warning(error)

        if dry_run:
            return AssignmentResult(plan=plan, dry_run=True, ai_called=True, prompt=prompt)

        applied = self.apply_plan(plan, reviewed=candidates)
        return AssignmentResult(plan=applied, dry_run=False, ai_called=True, prompt=prompt)

    def apply_plan(self, plan: AssignmentPlan, *, reviewed: Sequence[str]) -> AssignmentPlan:
        """Apply `plan` against the latest log; paths claimed meanwhile are skipped."""

        def _apply(log: AssignmentLog) -> AssignmentPlan:
            available = set(log.unassigned_files)
            effective = restrict_plan(
                plan, available, min_files=self.config.modules.min_files_per_module
            )
            self._create_modules(effective)
            for slug, files in effective.assign_existing.items():
                self.metadata.add_files(slug, files, documented=False)
            apply_plan_to_log(log, effective, timestamp=utc_timestamp(), reviewed=reviewed)
            return effective

        effective = self.log_store.update(_apply)
        self.mapping.refresh()
        self.logger.info(
            "Assigned %d file(s) to existing modules, created %d module(s), excluded %d file(s)",
            sum(len(files) for files in effective.assign_existing.values()),
            len(effective.new_modules),
            len(effective.do_not_document),
        )
        return effective

    def assign_file_to_module(self, path: str, slug: str) -> None:
        """Place one documented file into `slug` without asking the AI."""
        path = normalize_path(path)

        def _apply(log: AssignmentLog) -> None:
            if path in log.do_not_document or log.module_for(path) is not None:
                return
            self.metadata.add_files(slug, [path], documented=False)
            log.assign(slug, [path])

        with self.log_store.locked():
            if self.log_store.exists():
                self.log_store.update(_apply)
            else:
                # Membership alone; the first analysis picks it up from module records.
                self.metadata.add_files(slug, [path], documented=False)
        self.mapping.refresh()

    def forget_files(self, paths: Sequence[str]) -> None:
        """Drop deleted files from module records and every log bucket."""
        drop = [normalize_path(path) for path in paths]
        if not drop:
            return

        def _apply(log: AssignmentLog) -> None:
            for path in drop:
                slug = self.mapping.get_module_for_file(path)
                if slug is not None:
                    self.metadata.remove_files(slug, [path])
            log.forget(drop)

        with self.log_store.locked():
            if self.log_store.exists():
                self.log_store.update(_apply)
            else:
                _apply(AssignmentLog())
        self.mapping.refresh()

    def sync_module_assignments(self, *, dry_run: bool = False) -> Dict[str, Any]:
        """Rebuild assigned buckets from module records and file references in module content."""
        documented = self.documents.documented_files()
        documented_set = set(documented)
        modules = self.mapping.all_modules()
        owned = self.mapping.mapped_files()

        referenced: Dict[str, List[str]] = {}
        for module in modules:
            content = self.metadata.read_content(module.slug) or ""
            for path in _referenced_paths(content, documented_set):
                if path not in owned:
                    referenced.setdefault(module.slug, []).append(path)
                    owned[path] = module.slug

        def _rebuild(log: AssignmentLog) -> Dict[str, Any]:
            before = log.to_dict()
            log.assigned_files = {}
            log.unassigned_files = []
            reconcile_log(log, documented, owned)
            return {
                "assigned_files": {slug: len(files) for slug, files in log.assigned_files.items()},
                "unassigned": len(log.unassigned_files),
                "do_not_document": len(log.do_not_document),
                "referenced_in_content": {slug: list(paths) for slug, paths in referenced.items()},
                "changed": before != log.to_dict(),
            }

        if dry_run:
            return _rebuild(copy.deepcopy(self.log_store.load()))

        for slug, paths in referenced.items():
            self.metadata.add_files(slug, paths, documented=True)
        summary = self.log_store.update(_rebuild)
        self.mapping.refresh()
        return summary

    # ------------------------------------------------------------------
    # Internals

    def _create_modules(self, plan: AssignmentPlan) -> None:
        for module in plan.new_modules:
            if self.metadata.exists(module.slug):
                module.slug = unique_slug(module.slug, self.metadata.list_all())
            self.metadata.create_module(
                module.slug,
                module.name,
                description=module.description,
                files=module.files,
            )


def _referenced_paths(content: str, documented: Set[str]) -> List[str]:
    found: List[str] = []
    for path in sorted(documented):
        if re.search(rf"(?<![\w/.-]){re.escape(path)}(?![\w/-])", content):
            found.append(path)
    return found


__all__ = [
    "ACTIONS",
    "ASSIGN_TO_EXISTING",
    "AssignmentDecision",
    "AssignmentPlan",
    "AssignmentResult",
    "CREATE_NEW_MODULE",
    "DO_NOT_DOCUMENT",
    "ModuleAssignmentEngine",
    "ProposedModule",
    "STATE_ANALYZED",
    "STATE_NO_LOG",
    "apply_plan_to_log",
    "build_assignment_prompt",
    "build_initial_analysis_prompt",
    "parse_analysis_response",
    "parse_assignment_response",
    "plan_assignments",
    "plan_initial_partition",
    "reconcile_log",
    "related_files",
    "restrict_plan",
    "unique_slug",
]
