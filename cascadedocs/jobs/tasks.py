"""Background jobs for file generation, file updates and module updates."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Set, Tuple

from ..config import CascadeDocsConfig
from ..modules.updater import ModuleUpdateEngine, ModuleUpdateResult
from ..updates.engine import ChangeUpdateEngine, FileUpdateResult
from ..updates.generator import DocumentationGenerator, GenerationResult
from .queue import Job, WorkQueue


@dataclass
class JobContext:
    """Collaborators shared by every job a queue runs."""

    config: CascadeDocsConfig
    generator: DocumentationGenerator
    updates: ChangeUpdateEngine
    modules: ModuleUpdateEngine
    queue: Optional[WorkQueue] = None
    _scheduled_modules: Set[Tuple[str, str]] = field(default_factory=set, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def file_job_options(self) -> Dict[str, Any]:
        queue = self.config.queue
        return {"tries": queue.retry_attempts, "timeout": queue.timeout, "rate_limit_delay": queue.rate_limit_delay}

    def module_job_options(self) -> Dict[str, Any]:
        queue = self.config.queue
        return {
            "tries": queue.retry_attempts,
            "timeout": queue.module_timeout,
            "rate_limit_delay": queue.module_rate_limit_delay,
        }

    def enqueue_module_update(self, slug: str, to_sha: str) -> bool:
        """Queue one module update per (slug, revision) until that job starts."""
        if self.queue is None:
            raise RuntimeError("JobContext has no work queue attached")
        key = (slug, to_sha)
        with self._lock:
            if key in self._scheduled_modules:
                return False
            self._scheduled_modules.add(key)
        self.queue.enqueue(UpdateModuleDocumentationJob(slug, to_sha, **self.module_job_options()))
        return True

    def module_update_started(self, slug: str, to_sha: str) -> None:
        with self._lock:
            self._scheduled_modules.discard((slug, to_sha))


class GenerateDocumentationJob(Job):
    """Generate tier documents for one file; existing tiers are kept unless forced."""

    def __init__(
        self,
        path: str,
        to_sha: str,
        *,
        tiers: Sequence[str] | None = None,
        force: bool = False,
        **options: Any,
    ) -> None:
        super().__init__(**options)
        self.path = path
        self.to_sha = to_sha
        self.tiers = list(tiers) if tiers else None
        self.force = force

    def describe(self) -> str:
        return f"GenerateDocumentation({self.path})"

    def handle(self, context: JobContext) -> GenerationResult:
        return context.generator.generate(
            self.path, self.to_sha, tiers=self.tiers, force=self.force, timeout=self.timeout
        )


class GenerateAndTrackDocumentationJob(Job):
    """Fresh generation for a new file, recorded in the update log and placed in a module."""

    def __init__(self, path: str, to_sha: str, **options: Any) -> None:
        super().__init__(**options)
        self.path = path
        self.to_sha = to_sha

    def describe(self) -> str:
        return f"GenerateAndTrackDocumentation({self.path})"

    def handle(self, context: JobContext) -> FileUpdateResult:
        result = context.updates.generate_fresh(self.path, self.to_sha, timeout=self.timeout)
        if result.module_to_update:
            context.enqueue_module_update(result.module_to_update, self.to_sha)
        return result


class UpdateDocumentationJob(Job):
    """Run the change update engine for one file."""

    def __init__(self, path: str, from_sha: str, to_sha: str, **options: Any) -> None:
        super().__init__(**options)
        self.path = path
        self.from_sha = from_sha
        self.to_sha = to_sha

    def describe(self) -> str:
        return f"UpdateDocumentation({self.path})"

    def handle(self, context: JobContext) -> FileUpdateResult:
        result = context.updates.update_file(
            self.path, self.from_sha, self.to_sha, timeout=self.timeout
        )
        if result.module_to_update:
            context.enqueue_module_update(result.module_to_update, self.to_sha)
        return result


class UpdateModuleDocumentationJob(Job):
    """Fold pending member documentation into a module narrative."""

    timeout = 600.0
    rate_limit_delay = 120.0

    def __init__(self, slug: str, to_sha: str, **options: Any) -> None:
        super().__init__(**options)
        self.slug = slug
        self.to_sha = to_sha

    def describe(self) -> str:
        return f"UpdateModuleDocumentation({self.slug})"

    def handle(self, context: JobContext) -> ModuleUpdateResult:
        context.module_update_started(self.slug, self.to_sha)
        return context.modules.update(self.slug, self.to_sha, timeout=self.timeout)


__all__ = [
    "GenerateAndTrackDocumentationJob",
    "GenerateDocumentationJob",
    "JobContext",
    "UpdateDocumentationJob",
    "UpdateModuleDocumentationJob",
]
