"""Prompt templates for file, assignment and module documentation."""

from .builder import (
    ASSIGNMENT_SYSTEM_PROMPT,
    DOCUMENTATION_SYSTEM_PROMPT,
    MODULE_SYSTEM_PROMPT,
    PromptBuilder,
)

__all__ = [
    "ASSIGNMENT_SYSTEM_PROMPT",
    "DOCUMENTATION_SYSTEM_PROMPT",
    "MODULE_SYSTEM_PROMPT",
    "PromptBuilder",
]
