"""Workflow composition for the CLI and service entry points."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from .config import CONFIG_FILENAME, CascadeDocsConfig, load_config
from .errors import CascadeDocsError
from .git.diff import ChangeSet, DiffService, summarize_changes
from .git.publisher import Publisher
from .jobs.queue import Job, JobFailure, WorkQueue
from .jobs.tasks import (
    GenerateAndTrackDocumentationJob,
    GenerateDocumentationJob,
    JobContext,
    UpdateDocumentationJob,
    UpdateModuleDocumentationJob,
)
from .llm.runner import LLMRunner, TextGenerator
from .logging import get_logger
from .models import AssignmentLog, ModuleRecord
from .modules.assignment import AssignmentResult, ModuleAssignmentEngine, reconcile_log
from .modules.mapping import ModuleMappingService
from .modules.reports import generate_module_index, module_status
from .modules.updater import ModuleUpdateEngine, ModuleUpdateResult
from .prompting.builder import PromptBuilder
from .sources import SourceScanner
from .stores.documents import DocumentStore, normalize_path
from .stores.logs import AssignmentLogStore, UpdateLogStore
from .stores.modules import ModuleMetadataStore, slugify
from .updates.engine import ChangeUpdateEngine, FileUpdateResult
from .updates.generator import DocumentationGenerator, GenerationResult


@dataclass
class RunSummary:
    """Outcome of a batch of documentation jobs."""

    from_sha: Optional[str] = None
    to_sha: Optional[str] = None
    up_to_date: bool = False
    dry_run: bool = False
    changes: Dict[str, Any] = field(default_factory=dict)
    files: List[FileUpdateResult] = field(default_factory=list)
    generated: List[GenerationResult] = field(default_factory=list)
    modules: List[ModuleUpdateResult] = field(default_factory=list)
    failures: List[JobFailure] = field(default_factory=list)
    assignment: Optional[AssignmentResult] = None
    committed: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_sha": self.from_sha,
            "to_sha": self.to_sha,
            "up_to_date": self.up_to_date,
            "dry_run": self.dry_run,
            "changes": self.changes,
            "files": [
                {"path": item.path, "action": item.action, "tiers": item.changed_tiers, "module": item.module}
                for item in self.files
            ],
            "generated": [
                {"path": item.path, "status": item.status, "tiers": item.tiers} for item in self.generated
            ],
            "modules": [
                {"slug": item.slug, "status": item.status, "files": item.documented_files}
                for item in self.modules
            ],
            "failures": [
                {"job": item.job, "error": item.error, "attempts": item.attempts} for item in self.failures
            ],
            "committed": self.committed,
        }


class Orchestrator:
    """Builds every collaborator from one configuration and runs the workflows."""

    def __init__(
        self,
        config: CascadeDocsConfig,
        *,
        generator: TextGenerator | None = None,
        git_runner: Callable[..., str] | None = None,
        publisher: Publisher | None = None,
        builder: PromptBuilder | None = None,
        workers: int | None = None,
    ) -> None:
        self.config = config
        self.logger = get_logger("orchestrator")
        self.text_generator = generator or LLMRunner.from_config(config.ai)
        self.diff = DiffService(config.root, runner=git_runner)
        self.publisher = publisher or Publisher(runner=git_runner)
        self.builder = builder or PromptBuilder()
        self.workers = config.queue.workers if workers is None else workers

        self.scanner = SourceScanner(config)
        self.documents = DocumentStore(config)
        self.metadata = ModuleMetadataStore(config)
        self.mapping = ModuleMappingService(self.metadata)
        self.assignment_log = AssignmentLogStore(config)
        self.update_log = UpdateLogStore(config)

        self.doc_generator = DocumentationGenerator(
            config,
            documents=self.documents,
            diff=self.diff,
            generator=self.text_generator,
            scanner=self.scanner,
            builder=self.builder,
        )
        self.assignment = ModuleAssignmentEngine(
            config,
            documents=self.documents,
            metadata=self.metadata,
            mapping=self.mapping,
            log_store=self.assignment_log,
            generator=self.text_generator,
            builder=self.builder,
        )
        self.module_updater = ModuleUpdateEngine(
            config,
            documents=self.documents,
            metadata=self.metadata,
            update_log=self.update_log,
            generator=self.text_generator,
            builder=self.builder,
        )
        self.updates = ChangeUpdateEngine(
            config,
            documents=self.documents,
            diff=self.diff,
            generator=self.text_generator,
            doc_generator=self.doc_generator,
            metadata=self.metadata,
            mapping=self.mapping,
            assignment=self.assignment,
            update_log=self.update_log,
            builder=self.builder,
        )

    @classmethod
    def from_path(cls, path: Path | str = ".", **kwargs: Any) -> "Orchestrator":
        """Load `.cascadedocs.yml` from a repository root (or an explicit config file)."""
        target = Path(path)
        config_path = target if target.suffix in {".yml", ".yaml"} else target / CONFIG_FILENAME
        return cls(load_config(config_path), **kwargs)

    # ------------------------------------------------------------------
    # Module assignment

    def analyze_modules(self, *, dry_run: bool = False, update: bool = False) -> Dict[str, Any]:
        """Report assignment state; with `dry_run` or `update`, reconcile as well."""
        state = self.assignment.state
        result: Optional[AssignmentResult] = None
        if dry_run or update:
            result = self.assignment.reconcile(dry_run=dry_run)
        report = self.module_status()
        report["state"] = state
        if result is not None:
            report["plan"] = result.plan.to_dict()
            report["ai_called"] = result.ai_called
            report["analysis_performed"] = result.analysis_performed
            report["dry_run"] = result.dry_run
        return report

    def assign_files(self, *, dry_run: bool = False, force: bool = False) -> AssignmentResult:
        return self.assignment.reconcile(dry_run=dry_run, force=force)

    def sync_modules(self, *, dry_run: bool = False) -> Dict[str, Any]:
        return self.assignment.sync_module_assignments(dry_run=dry_run)

    def create_module(
        self,
        name: str,
        *,
        files: Sequence[str] = (),
        title: str | None = None,
        description: str = "",
    ) -> ModuleRecord:
        """Create a module by hand; files owned by another module are left where they are."""
        slug = slugify(name)
        if not slug:
            raise CascadeDocsError(f"Cannot derive a module slug from {name!r}")
        owned = self.mapping.mapped_files()
        members: List[str] = []
        for raw in files:
            path = normalize_path(raw)
            if not (self.config.root / path).is_file():
                self.logger.warning("Skipping %s: file does not exist", path)
                continue
            if path in owned:
                self.logger.warning("Skipping %s: already in module %s", path, owned[path])
                continue
            if path not in members:
                members.append(path)
        display_name = title or name.replace("-", " ").replace("_", " ").title()
        record = self.metadata.create_module(slug, display_name, description=description, files=members)
        self.mapping.refresh()
        if self.assignment_log.exists():
            documented = self.documents.documented_files()
            mapped = self.mapping.mapped_files()

            def _apply(log: AssignmentLog) -> None:
                for path in members:
                    if path in log.do_not_document:
                        log.do_not_document.remove(path)
                log.unassigned_files = [path for path in log.unassigned_files if path not in members]
                reconcile_log(log, documented, mapped)

            self.assignment_log.update(_apply)
        return record

    # ------------------------------------------------------------------
    # Reporting

    def module_status(self, slug: str | None = None) -> Dict[str, Any]:
        return module_status(
            self.mapping.all_modules(),
            self.assignment_log.load(),
            slug=slug,
            content_dir=self.config.modules_content_dir,
        )

    def list_modules(self) -> List[ModuleRecord]:
        return self.mapping.all_modules()

    def get_module(self, slug: str) -> ModuleRecord:
        return self.metadata.require(slug)

    def generate_module_index(self, output: Path | None = None) -> Path:
        target = output or self.config.module_index_path
        path = generate_module_index(self.mapping.all_modules(), target, self.config.modules_content_dir)
        self.logger.info("Wrote module index to %s", path)
        return path

    def analyze_changes(self, from_sha: str, to_sha: str) -> Dict[str, Any]:
        change_set = self.diff.changed_files(from_sha, to_sha).filtered(self.scanner.is_documentable)
        return summarize_changes(change_set, self.mapping.get_module_for_file)

    # ------------------------------------------------------------------
    # Documentation workflows

    def generate_docs(
        self,
        *,
        paths: Sequence[str] | None = None,
        tier: str | None = None,
        force: bool = False,
    ) -> RunSummary:
        to_sha = self.diff.current_head()
        sources = self.scanner.scan(paths)
        summary = RunSummary(to_sha=to_sha)
        with self._job_queue() as (queue, context):
            for source in sources:
                queue.enqueue(
                    GenerateDocumentationJob(
                        source.path,
                        to_sha,
                        tiers=[tier] if tier else None,
                        force=force,
                        **context.file_job_options(),
                    )
                )
            queue.join()
            self._collect(queue, summary)
        self.logger.info(
            "Generated documentation for %d of %d file(s)",
            sum(1 for item in summary.generated if item.status == "generated"),
            len(sources),
        )
        return summary

    def update_changed(
        self,
        *,
        from_sha: str | None = None,
        to_sha: str | None = None,
        auto_commit: bool = False,
    ) -> RunSummary:
        """Update documentation for files changed between two revisions."""
        to_resolved = self.diff.resolve(to_sha or "HEAD")
        from_resolved = self._resolve_from(from_sha, to_resolved)
        summary = RunSummary(from_sha=from_resolved, to_sha=to_resolved)
        if from_resolved == to_resolved:
            summary.up_to_date = True
            self.logger.info("Documentation is already up to date at %s", to_resolved)
            return summary

        change_set = self._documentable_changes(from_resolved, to_resolved)
        summary.changes = summarize_changes(change_set, self.mapping.get_module_for_file)
        with self._job_queue() as (queue, context):
            self._enqueue_changes(queue, context, change_set)
            queue.join()
            self._collect(queue, summary)

        if summary.ok:
            self.update_log.record_run(to_resolved)
        if auto_commit and summary.ok:
            summary.committed = self._commit(f"docs: update documentation for {to_resolved[:8]}")
        return summary

    def update_after_merge(self, *, since: str | None = None, dry_run: bool = False) -> RunSummary:
        """Catch documentation up with everything merged since the last recorded run."""
        to_resolved = self.diff.current_head()
        from_resolved = self._resolve_from(since, to_resolved)
        summary = RunSummary(from_sha=from_resolved, to_sha=to_resolved, dry_run=dry_run)
        if from_resolved == to_resolved:
            summary.up_to_date = True
            self.logger.info("Documentation is already up to date at %s", to_resolved)
            return summary

        change_set = self._documentable_changes(from_resolved, to_resolved)
        summary.changes = summarize_changes(change_set, self.mapping.get_module_for_file)
        if dry_run:
            return summary

        with self._job_queue() as (queue, context):
            self._enqueue_changes(queue, context, change_set)
            queue.join()
            summary.assignment = self.assignment.reconcile()
            for slug in self._modules_with_pending_files():
                context.enqueue_module_update(slug, to_resolved)
            queue.join()
            self._collect(queue, summary)

        if summary.ok:
            self.update_log.record_run(to_resolved)
        return summary

    def update_modules(
        self,
        *,
        module: str | None = None,
        limit: int | None = None,
        dry_run: bool = False,
        to_sha: str | None = None,
    ) -> RunSummary:
        """Regenerate narratives for modules that have undocumented members."""
        if module is not None:
            record = self.metadata.require(module)
            slugs = [record.slug] if record.undocumented_files else []
        else:
            slugs = self._modules_with_pending_files()
        if limit:
            slugs = slugs[:limit]
        target = to_sha or self.diff.current_head()
        summary = RunSummary(to_sha=target, dry_run=dry_run)
        summary.changes = {"modules": list(slugs)}
        if dry_run or not slugs:
            return summary
        with self._job_queue() as (queue, context):
            for slug in slugs:
                queue.enqueue(UpdateModuleDocumentationJob(slug, target, **context.module_job_options()))
            queue.join()
            self._collect(queue, summary)
        return summary

    # ------------------------------------------------------------------
    # Internals

    @contextmanager
    def _job_queue(self) -> Iterator[tuple[WorkQueue, JobContext]]:
        context = JobContext(
            config=self.config,
            generator=self.doc_generator,
            updates=self.updates,
            modules=self.module_updater,
        )
        queue = WorkQueue(context, workers=self.workers, retry_backoff=self.config.queue.retry_backoff)
        context.queue = queue
        try:
            yield queue, context
        finally:
            queue.shutdown(cancel_pending=True)

    def _resolve_from(self, from_sha: str | None, to_sha: str) -> str:
        if from_sha:
            return self.diff.resolve(from_sha)
        recorded = self.update_log.load().last_update_sha
        if recorded:
            return recorded
        return self.diff.resolve(f"{to_sha}~1")

    def _documentable_changes(self, from_sha: str, to_sha: str) -> ChangeSet:
        change_set = self.diff.changed_files(from_sha, to_sha)
        # Deleted files are kept when they still have documentation to remove.
        return change_set.filtered(
            lambda path: self.scanner.is_documentable(path) or bool(self.documents.existing_tiers(path))
        )

    def _enqueue_changes(self, queue: WorkQueue, context: JobContext, change_set: ChangeSet) -> None:
        options = context.file_job_options()
        jobs: List[Job] = []
        for path in change_set.added:
            jobs.append(GenerateAndTrackDocumentationJob(path, change_set.to_sha, **options))
        for path in change_set.modified + change_set.deleted:
            jobs.append(UpdateDocumentationJob(path, change_set.from_sha, change_set.to_sha, **options))
        self.logger.info(
            "Queued %d file job(s) for %s..%s", len(jobs), change_set.from_sha[:8], change_set.to_sha[:8]
        )
        for job in jobs:
            queue.enqueue(job)

    def _modules_with_pending_files(self) -> List[str]:
        return [record.slug for record in self.mapping.all_modules() if record.undocumented_files]

    def _collect(self, queue: WorkQueue, summary: RunSummary) -> None:
        for result in queue.results:
            if isinstance(result, FileUpdateResult):
                summary.files.append(result)
            elif isinstance(result, ModuleUpdateResult):
                summary.modules.append(result)
            elif isinstance(result, GenerationResult):
                summary.generated.append(result)
        summary.failures.extend(queue.failures)

    def _commit(self, message: str) -> bool:
        paths = [
            self.config.output_dir,
            self.config.assignment_log_path,
            self.config.update_log_path,
        ]
        return self.publisher.commit(self.config.root, [path for path in paths if path.exists()], message=message)


__all__ = ["Orchestrator", "RunSummary"]
