"""Tests for the module index page and status reports."""

from __future__ import annotations

import pytest

from cascadedocs.errors import NotFound
from cascadedocs.models import AssignmentLog, ModuleFile, ModuleRecord
from cascadedocs.modules.reports import (
    format_module_status,
    generate_module_index,
    module_status,
    render_module_index,
    truncate_summary,
)


def _records() -> list[ModuleRecord]:
    return [
        ModuleRecord(
            slug="billing",
            name="Billing",
            summary="Invoices | refunds",
            files=[ModuleFile(path="app/Billing/Invoice.php")],
            undocumented_files=["app/Billing/Refund.php"],
            last_synced="abc1234",
        ),
        ModuleRecord(slug="users", name="Users"),
    ]


def test_truncate_summary_cuts_at_word_boundary() -> None:
    text = "alpha beta gamma delta"

    assert truncate_summary(text, limit=100) == text
    assert truncate_summary(text, limit=13) == "alpha beta..."
    assert truncate_summary("one,  two\nthree", limit=100) == "one, two three"


def test_index_lists_every_module() -> None:
    page = render_module_index(_records(), generated_at="2024-01-01T00:00:00Z")

    assert page.startswith("# Module Documentation Index\n")
    assert "Total modules: 2" in page
    assert "- [Billing](content/billing.md)" in page
    assert "| [Billing](content/billing.md) | 2 | 1 | Invoices \\| refunds |" in page
    assert "| [Users](content/users.md) | 0 | 0 | - |" in page
    assert "- Last synced: abc1234" in page
    assert "## Module Details" in page


def test_empty_index_says_so() -> None:
    page = render_module_index([], generated_at="2024-01-01T00:00:00Z")

    assert "Total modules: 0" in page
    assert "*No modules have been created yet.*" in page


def test_generate_index_links_relative_to_output(tmp_path) -> None:
    output = tmp_path / "docs" / "modules" / "index.md"
    content_dir = tmp_path / "docs" / "modules" / "content"

    generate_module_index(_records(), output, content_dir)

    assert "(content/billing.md)" in output.read_text(encoding="utf-8")


def test_status_totals_cover_the_log() -> None:
    log = AssignmentLog(
        assigned_files={"billing": ["a.php", "b.php"]},
        unassigned_files=["c.php"],
        do_not_document=["d.php"],
        potential_modules=[{"suggested_name": "misc", "files": ["c.php"]}],
    )

    report = module_status(_records(), log)

    assert report["totals"] == {
        "modules": 2,
        "documented_files": 4,
        "assigned": 2,
        "unassigned": 1,
        "do_not_document": 1,
        "assigned_percentage": 50.0,
        "unassigned_percentage": 25.0,
    }
    text = format_module_status(report)
    assert "Assigned: 2 (50.0%)" in text
    assert "  billing: 2 file(s), 1 pending" in text
    assert "  - misc (1 file(s))" in text


def test_status_for_one_module(tmp_path) -> None:
    (tmp_path / "billing.md").write_text("# Billing\n", encoding="utf-8")
    log = AssignmentLog(assigned_files={"billing": ["app/Billing/Invoice.php"]})

    report = module_status(_records(), log, slug="billing", content_dir=tmp_path)

    assert report["files"] == ["app/Billing/Invoice.php"]
    assert report["undocumented"] == ["app/Billing/Refund.php"]
    assert report["logged_files"] == ["app/Billing/Invoice.php"]
    assert report["content_exists"] is True
    assert format_module_status(report).startswith("Module: Billing (billing)")


def test_status_for_unknown_module_raises() -> None:
    with pytest.raises(NotFound):
        module_status(_records(), AssignmentLog(), slug="missing")


def test_status_with_empty_log_reports_zero_percentages() -> None:
    report = module_status([], AssignmentLog())

    assert report["totals"]["assigned_percentage"] == 0.0
    assert report["modules"] == []
