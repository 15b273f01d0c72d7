"""Per-file documentation generation and change-driven updates."""

from .engine import ChangeUpdateEngine, FileUpdateResult, merge_tier_updates
from .generator import DocumentationGenerator, GenerationResult

__all__ = [
    "ChangeUpdateEngine",
    "DocumentationGenerator",
    "FileUpdateResult",
    "GenerationResult",
    "merge_tier_updates",
]
