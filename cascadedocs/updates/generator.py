"""Full three-tier generation for a single source file."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Dict, List, Optional, Sequence

from ..config import TIER_NAMES, CascadeDocsConfig
from ..errors import InvalidResponse, NotFound
from ..git.diff import DiffService
from ..llm.responses import parse_json_object
from ..llm.runner import TextGenerator
from ..logging import get_logger
from ..prompting.builder import DOCUMENTATION_SYSTEM_PROMPT, PromptBuilder
from ..sources import SourceFile, SourceScanner
from ..stores.documents import DocumentStore, normalize_path, set_commit_sha

SHRINK_WARNING_RATIO = 0.05

STATUS_GENERATED = "generated"
STATUS_SKIPPED = "skipped"


@dataclass
class GenerationResult:
    path: str
    to_sha: str
    status: str
    tiers: List[str] = field(default_factory=list)


def shrinkage(previous: str, current: str) -> float:
    """Fraction by which `current` is shorter than `previous` (0 when it grew)."""
    if not previous:
        return 0.0
    return max(0.0, (len(previous) - len(current)) / len(previous))


class DocumentationGenerator:
    """Produces micro, standard and expansive documents from one AI call."""

    def __init__(
        self,
        config: CascadeDocsConfig,
        *,
        documents: DocumentStore,
        diff: DiffService,
        generator: TextGenerator,
        scanner: SourceScanner | None = None,
        builder: PromptBuilder | None = None,
        model: str | None = None,
    ) -> None:
        self.config = config
        self.documents = documents
        self.diff = diff
        self.generator = generator
        self.scanner = scanner or SourceScanner(config)
        self.builder = builder or PromptBuilder()
        self.model = model or config.ai.model
        self.logger = get_logger("updates.generator")

    def read_source(self, path: str, sha: str | None = None) -> str:
        """Working-tree contents of `path`, falling back to the blob at `sha`."""
        location = self.config.root / path
        if location.is_file():
            return location.read_text(encoding="utf-8", errors="replace")
        if sha:
            contents = self.diff.show(sha, path)
            if contents is not None:
                return contents
        raise NotFound(f"Source file not found: {path}")

    def build_prompt(self, source: SourceFile, contents: str, commit_sha: str) -> str:
        return self.builder.render(
            "file_generation.md.j2",
            source_path=source.path,
            commit_sha=commit_sha,
            generated_on=datetime.now(UTC).strftime("%Y-%m-%d"),
            language=source.language,
            file_contents=contents,
            component_name=source.component_name,
        )

    def generate(
        self,
        path: str,
        to_sha: str,
        *,
        tiers: Sequence[str] | None = None,
        force: bool = False,
        timeout: float | None = None,
    ) -> GenerationResult:
        """Generate `tiers` (default: all three) for `path` at revision `to_sha`."""
        path = normalize_path(path)
        requested = [tier for tier in TIER_NAMES if tiers is None or tier in tiers]
        if not requested:
            raise ValueError(f"No known documentation tiers in {list(tiers or [])}")
        if not force and all(self.documents.exists(path, tier) for tier in requested):
            self.logger.debug("Documentation for %s already exists; skipping", path)
            return GenerationResult(path=path, to_sha=to_sha, status=STATUS_SKIPPED)

        source = self.scanner.source_file(path)
        contents = self.read_source(path, to_sha)
        prompt = self.build_prompt(source, contents, to_sha)
        self.logger.info("Generating documentation for %s", path)
        self.logger.debug("Generation prompt for %s is %d characters", path, len(prompt))
        response = self.generator.generate(
            prompt,
            self.model,
            system=DOCUMENTATION_SYSTEM_PROMPT,
            json_mode=True,
            timeout=timeout,
        )
        payload = parse_json_object(response, required=TIER_NAMES)

        documents: Dict[str, str] = {}
        for tier in requested:
            value = payload.get(tier)
            if not isinstance(value, str) or not value.strip():
                raise InvalidResponse(f"AI response has no {tier} documentation for {path}")
            text = value.strip() + "\n"
            if tier == "expansive":
                text = set_commit_sha(text, to_sha)
            self._warn_on_shrink(path, tier, text)
            documents[tier] = text

        self.documents.write_tiers(path, documents)
        return GenerationResult(path=path, to_sha=to_sha, status=STATUS_GENERATED, tiers=list(documents))

    def _warn_on_shrink(self, path: str, tier: str, text: str) -> Optional[float]:
        previous = self.documents.read(path, tier)
        if previous is None:
            return None
        ratio = shrinkage(previous, text)
        if ratio > SHRINK_WARNING_RATIO:
            self.logger.warning(
                "%s documentation for %s shrank by %.0f%%", tier.capitalize(), path, ratio * 100
            )
        return ratio


__all__ = [
    "DocumentationGenerator",
    "GenerationResult",
    "STATUS_GENERATED",
    "STATUS_SKIPPED",
    "shrinkage",
]
