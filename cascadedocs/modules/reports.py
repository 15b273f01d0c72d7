"""Module index page and status reporting."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..errors import NotFound
from ..models import AssignmentLog, ModuleRecord, utc_timestamp
from ..stores.files import atomic_write_text

SUMMARY_PREVIEW_CHARS = 150


def truncate_summary(text: str, limit: int = SUMMARY_PREVIEW_CHARS) -> str:
    """Collapse whitespace and cut at a word boundary, appending an ellipsis."""
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    cut = flat[:limit].rsplit(" ", 1)[0].rstrip(",;:.")
    return f"{cut}..."


def render_module_index(
    modules: Sequence[ModuleRecord],
    *,
    content_link: str = "content",
    generated_at: str | None = None,
) -> str:
    lines: List[str] = [
        "# Module Documentation Index",
        "",
        f"Total modules: {len(modules)}",
        f"Generated: {generated_at or utc_timestamp()}",
        "",
        "## Table of Contents",
        "",
    ]
    if not modules:
        lines.append("*No modules have been created yet.*")
    for record in modules:
        lines.append(f"- [{record.name}]({content_link}/{record.slug}.md)")

    lines.extend(["", "## Modules", "", "| Module | Files | Documented | Summary |", "|---|---|---|---|"])
    for record in modules:
        stats = record.statistics()
        summary = truncate_summary(record.summary).replace("|", "\\|") or "-"
        lines.append(
            f"| [{record.name}]({content_link}/{record.slug}.md) | {stats['total_files']} "
            f"| {stats['documented_files']} | {summary} |"
        )

    lines.extend(["", "## Module Details"])
    for record in modules:
        stats = record.statistics()
        lines.extend(
            [
                "",
                f"### {record.name}",
                "",
                f"- Slug: `{record.slug}`",
                f"- Files: {stats['total_files']} ({stats['documented_files']} documented, "
                f"{stats['undocumented_files']} undocumented)",
                f"- Last synced: {record.last_synced or 'never'}",
                f"- Last updated: {record.last_updated or 'unknown'}",
            ]
        )
        if record.summary.strip():
            lines.extend(["", record.summary.strip()])
    return "\n".join(lines) + "\n"


def generate_module_index(
    modules: Sequence[ModuleRecord], output_path: Path, content_dir: Path
) -> Path:
    """Write the index page to `output_path` with links relative to it."""
    link = os.path.relpath(content_dir, output_path.parent).replace(os.sep, "/")
    atomic_write_text(output_path, render_module_index(modules, content_link=link))
    return output_path


def module_status(
    modules: Sequence[ModuleRecord],
    log: AssignmentLog,
    *,
    slug: str | None = None,
    content_dir: Path | None = None,
) -> Dict[str, Any]:
    """Assignment coverage overall, or the details of one module when `slug` is given."""
    if slug is not None:
        record = next((module for module in modules if module.slug == slug), None)
        if record is None:
            raise NotFound(f"Module not found: {slug}")
        details = _module_details(record)
        details["logged_files"] = list(log.assigned_files.get(slug, []))
        if content_dir is not None:
            details["content_exists"] = (content_dir / f"{slug}.md").is_file()
        return details

    assigned = len(log.assigned_paths())
    unassigned = len(log.unassigned_files)
    excluded = len(log.do_not_document)
    total = assigned + unassigned + excluded
    return {
        "last_analysis": log.last_analysis,
        "last_ai_assignment": log.last_ai_assignment,
        "totals": {
            "modules": len(modules),
            "documented_files": total,
            "assigned": assigned,
            "unassigned": unassigned,
            "do_not_document": excluded,
            "assigned_percentage": _percentage(assigned, total),
            "unassigned_percentage": _percentage(unassigned, total),
        },
        "modules": [_module_details(record) for record in modules],
        "unassigned_files": list(log.unassigned_files),
        "suggestions": list(log.potential_modules),
    }


def format_module_status(report: Dict[str, Any]) -> str:
    """Plain-text rendering of `module_status` output for the CLI."""
    if "totals" not in report:
        lines = [
            f"Module: {report['name']} ({report['slug']})",
            f"Files: {report['total_files']} ({report['documented_files']} documented, "
            f"{report['undocumented_files']} undocumented)",
            f"Last synced: {report['last_synced'] or 'never'}",
        ]
        lines.extend(f"  - {path}" for path in report["files"])
        if report["undocumented"]:
            lines.append("Pending:")
            lines.extend(f"  - {path}" for path in report["undocumented"])
        return "\n".join(lines)

    totals = report["totals"]
    lines = [
        f"Modules: {totals['modules']}",
        f"Documented files: {totals['documented_files']}",
        f"Assigned: {totals['assigned']} ({totals['assigned_percentage']}%)",
        f"Unassigned: {totals['unassigned']} ({totals['unassigned_percentage']}%)",
        f"Do not document: {totals['do_not_document']}",
    ]
    for module in report["modules"]:
        lines.append(
            f"  {module['slug']}: {module['total_files']} file(s), "
            f"{module['undocumented_files']} pending"
        )
    if report["unassigned_files"]:
        lines.append("Unassigned files:")
        lines.extend(f"  - {path}" for path in report["unassigned_files"])
    if report["suggestions"]:
        lines.append("Suggested modules:")
        for suggestion in report["suggestions"]:
            name = suggestion.get("suggested_name") or suggestion.get("slug") or "?"
            lines.append(f"  - {name} ({len(suggestion.get('files', []))} file(s))")
    return "\n".join(lines)


def _module_details(record: ModuleRecord) -> Dict[str, Any]:
    stats = record.statistics()
    return {
        "slug": record.slug,
        "name": record.name,
        "summary": record.summary,
        "last_synced": record.last_synced,
        "last_updated": record.last_updated,
        "files": [entry.path for entry in record.files],
        "undocumented": list(record.undocumented_files),
        **stats,
    }


def _percentage(part: int, total: int) -> float:
    return round(part / total * 100, 1) if total else 0.0


__all__ = [
    "format_module_status",
    "generate_module_index",
    "module_status",
    "render_module_index",
    "truncate_summary",
]
