"""Renders AI prompts from Jinja2 templates."""

from __future__ import annotations

from pathlib import Path
from typing import Any, List

from jinja2 import Environment, FileSystemLoader, StrictUndefined

ASSIGNMENT_SYSTEM_PROMPT = (
    "You are a module organization assistant for a software documentation system. "
    "You analyze files and create logical module groupings based on their functionality "
    "and relationships. Always respond with valid JSON only, no markdown code blocks or extra text."
)

DOCUMENTATION_SYSTEM_PROMPT = (
    "You are an expert technical writer. Respond with valid JSON only, "
    "no markdown code blocks or extra text."
)

MODULE_SYSTEM_PROMPT = (
    "You are an expert technical writer maintaining module-level documentation. "
    "Respond with the complete Markdown document only."
)

_DEFAULT_TEMPLATES_DIR = Path(__file__).with_name("templates")


class PromptBuilder:
    """Looks templates up in an optional override directory, then the bundled set."""

    def __init__(self, templates_dir: Path | None = None) -> None:
        self.templates_dir = templates_dir
        self._env = self._create_env(templates_dir)

    def render(self, template_name: str, **context: Any) -> str:
        template = self._env.get_template(template_name)
        return template.render(**context).strip() + "\n"

    @staticmethod
    def _create_env(templates_dir: Path | None) -> Environment:
        directories: List[str] = []
        if templates_dir:
            directories.append(str(templates_dir))
        directories.append(str(_DEFAULT_TEMPLATES_DIR))
        return Environment(
            loader=FileSystemLoader(directories),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            undefined=StrictUndefined,
        )


__all__ = [
    "ASSIGNMENT_SYSTEM_PROMPT",
    "DOCUMENTATION_SYSTEM_PROMPT",
    "MODULE_SYSTEM_PROMPT",
    "PromptBuilder",
]
