"""Regenerates a module's narrative once member files are waiting to be covered."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..config import CascadeDocsConfig
from ..errors import CascadeDocsError, InvalidResponse
from ..llm.runner import TextGenerator
from ..logging import get_logger
from ..models import ModuleRecord
from ..prompting.builder import MODULE_SYSTEM_PROMPT, PromptBuilder
from ..stores.documents import DocumentStore
from ..stores.logs import UpdateLogStore
from ..stores.modules import ModuleMetadataStore

SUMMARY_MAX_WORDS = 200

PLACEHOLDER_PATTERNS = (
    re.compile(r"\[\s*to be (?:documented|added|determined)\s*\]", re.IGNORECASE),
    re.compile(r"\[\s*insert [^\]]*\]", re.IGNORECASE),
    re.compile(r"\[\s*(?:details|description|content) here\s*\]", re.IGNORECASE),
    re.compile(r"\[\s*placeholder[^\]]*\]", re.IGNORECASE),
)

_MARKDOWN_FENCE = re.compile(r"\A\s*```(?:markdown|md)?[ \t]*\n(.*?)\n?```\s*\Z", re.DOTALL)
_OVERVIEW = re.compile(r"^##\s+Overview\s*$(.*?)(?=^##\s|\Z)", re.MULTILINE | re.DOTALL | re.IGNORECASE)
_SENTENCE_END = re.compile(r"[.!?](?=\s|$)")

STATUS_UPDATED = "updated"
STATUS_SKIPPED = "skipped"


@dataclass
class ModuleUpdateResult:
    slug: str
    status: str
    to_sha: str
    documented_files: List[str] = field(default_factory=list)
    content_path: Optional[Path] = None
    summary: Optional[str] = None


def find_placeholders(content: str) -> List[str]:
    """Return placeholder markers (e.g. "[To be documented]") found in `content`."""
    found: List[str] = []
    for pattern in PLACEHOLDER_PATTERNS:
        found.extend(match.group(0) for match in pattern.finditer(content))
    return found


def extract_module_summary(content: str, *, max_words: int = SUMMARY_MAX_WORDS) -> str:
    """Summary for the metadata record: the Overview section, else the first paragraph."""
    match = _OVERVIEW.search(content)
    if match and match.group(1).strip():
        text = match.group(1)
    else:
        text = _first_paragraph(content)
    words = " ".join(text.split()).split(" ")
    if len(words) <= max_words:
        return " ".join(words).strip()
    clipped = " ".join(words[:max_words])
    ends = list(_SENTENCE_END.finditer(clipped))
    if ends:
        return clipped[: ends[-1].end()].strip()
    return clipped.strip()


def _first_paragraph(content: str) -> str:
    for block in re.split(r"\n\s*\n", content):
        stripped = block.strip()
        if stripped and not stripped.startswith("#"):
            return stripped
    return ""


def _strip_markdown_fence(text: str) -> str:
    match = _MARKDOWN_FENCE.match(text)
    return match.group(1) if match else text


class ModuleUpdateEngine:
    """Folds pending member documentation into `<modules-content>/<slug>.md`."""

    def __init__(
        self,
        config: CascadeDocsConfig,
        *,
        documents: DocumentStore,
        metadata: ModuleMetadataStore,
        update_log: UpdateLogStore,
        generator: TextGenerator,
        builder: PromptBuilder | None = None,
        model: str | None = None,
    ) -> None:
        self.config = config
        self.documents = documents
        self.metadata = metadata
        self.update_log = update_log
        self.generator = generator
        self.builder = builder or PromptBuilder()
        self.model = model or config.ai.model
        self.logger = get_logger("modules.updater")

    def pending_files(self, record: ModuleRecord) -> List[str]:
        """Undocumented members that already have tier documentation to fold in."""
        return [
            path for path in record.undocumented_files if self.documents.best_available(path) is not None
        ]

    def update(self, slug: str, to_sha: str, *, timeout: float | None = None) -> ModuleUpdateResult:
        record = self.metadata.require(slug)
        original = self.metadata.read_content(slug)
        current = self.metadata.ensure_content(record)
        content_path = self.metadata.content_path(slug)

        pending = self.pending_files(record)
        if not pending:
            self.logger.info("Module %s has no pending documented files; nothing to update", slug)
            return ModuleUpdateResult(slug=slug, status=STATUS_SKIPPED, to_sha=to_sha, content_path=content_path)

        pending_docs = self._documentation_for(pending)
        covered_docs = self._documentation_for(
            [entry.path for entry in record.files if entry.path not in pending]
        )
        prompt = self.builder.render(
            "module_update.md.j2",
            module_name=record.name,
            module_slug=slug,
            current_content=current.strip(),
            pending=pending_docs,
            covered=covered_docs,
        )
        self.logger.info("Updating module %s with %d pending file(s)", slug, len(pending_docs))
        self.logger.debug("Module prompt for %s is %d characters", slug, len(prompt))
        response = self.generator.generate(
            prompt, self.model, system=MODULE_SYSTEM_PROMPT, timeout=timeout
        )

        content = _strip_markdown_fence(response or "").strip()
        if not content:
            raise InvalidResponse(f"AI returned empty documentation for module {slug}")
        placeholders = find_placeholders(content)
        if placeholders:
            raise InvalidResponse(
                f"AI documentation for module {slug} still contains placeholders: {', '.join(placeholders[:3])}"
            )

        summary = extract_module_summary(content)
        tiers: Dict[str, str] = {item["path"]: item["tier"] for item in pending_docs}
        self.metadata.write_content(slug, content + "\n")
        try:
            self.metadata.mark_files_documented(slug, pending, tiers=tiers, sha=to_sha)
            if summary:
                self.metadata.update_summary(slug, summary)
        except (OSError, CascadeDocsError):
            self.logger.error("Restoring previous content for module %s after a metadata failure", slug)
            self.metadata.write_content(slug, original if original is not None else current)
            raise
        self.update_log.record_module(slug, to_sha)

        self.logger.info("Module %s now covers %d additional file(s)", slug, len(pending))
        return ModuleUpdateResult(
            slug=slug,
            status=STATUS_UPDATED,
            to_sha=to_sha,
            documented_files=list(pending),
            content_path=content_path,
            summary=summary,
        )

    # ------------------------------------------------------------------
    # Internals

    def _documentation_for(self, paths: List[str]) -> List[Dict[str, str]]:
        items: List[Dict[str, str]] = []
        for path in paths:
            best = self.documents.best_available(path)
            if best is None:
                continue
            tier, content = best
            items.append({"path": path, "tier": tier, "documentation": content.strip()})
        return items


__all__ = [
    "ModuleUpdateEngine",
    "ModuleUpdateResult",
    "PLACEHOLDER_PATTERNS",
    "STATUS_SKIPPED",
    "STATUS_UPDATED",
    "extract_module_summary",
    "find_placeholders",
]
