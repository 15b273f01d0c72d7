"""End-to-end workflow tests over an in-memory git history and a scripted AI."""

from __future__ import annotations

import pytest

from cascadedocs.config import CascadeDocsConfig
from cascadedocs.errors import CascadeDocsError
from cascadedocs.models import AssignmentLog
from cascadedocs.orchestrator import Orchestrator
from cascadedocs.stores.documents import extract_commit_sha
from tests._fixtures.workspace import FakeGenerator, FakeGit, Workspace, tier_documents

INVOICE = "app/Billing/Invoice.php"
REFUND = "app/Billing/Refund.php"
CREDIT = "app/Billing/Credit.php"

NARRATIVE = "# Billing Module\n\n## Overview\n\nInvoices, refunds and credits.\n"


def _orchestrator(workspace: Workspace, ai: FakeGenerator, git: FakeGit) -> Orchestrator:
    return Orchestrator(workspace.config, generator=ai, git_runner=git, workers=0)


def _billing_history(workspace: Workspace, git: FakeGit) -> None:
    git.commit("a1", {INVOICE: "<?php\nclass Invoice {}\n", REFUND: "<?php\nclass Refund {}\n"})
    git.commit("b2", {INVOICE: "<?php\nclass Invoice { public $total; }\n", CREDIT: "<?php\nclass Credit {}\n"})
    workspace.document(INVOICE, sha="a1")
    workspace.document(REFUND, sha="a1")
    workspace.add_module("billing", "Billing", files=[INVOICE, REFUND])


def _scripted_ai() -> FakeGenerator:
    return FakeGenerator(
        [
            tier_documents(CREDIT),
            {"micro": "## Invoice · Micro-blurb\n\nInvoices carry totals.", "standard": None, "expansive": None},
            NARRATIVE,
        ]
    )


def test_update_changed_processes_added_and_modified_files(workspace, fake_git) -> None:
    _billing_history(workspace, fake_git)
    ai = _scripted_ai()

    summary = _orchestrator(workspace, ai, fake_git).update_changed(from_sha="a1")

    assert summary.ok
    assert [(item.path, item.action) for item in summary.files] == [
        (CREDIT, "generated"),
        (INVOICE, "updated"),
    ]
    assert [item.slug for item in summary.modules] == ["billing"]
    assert sorted(summary.modules[0].documented_files) == [CREDIT, INVOICE]
    assert summary.changes["by_status"] == {"added": 1, "modified": 1, "deleted": 0}
    assert len(ai.calls) == 3

    record = workspace.metadata.require("billing")
    assert CREDIT in record.member_paths()
    assert record.undocumented_files == []
    assert workspace.metadata.read_content("billing") == NARRATIVE
    assert extract_commit_sha(workspace.documents.read(INVOICE, "expansive")) == "b2"
    assert workspace.update_log.load().last_update_sha == "b2"


def test_update_changed_is_a_no_op_at_the_recorded_revision(workspace, fake_git) -> None:
    _billing_history(workspace, fake_git)
    workspace.update_log.record_run("b2")
    ai = FakeGenerator()

    summary = _orchestrator(workspace, ai, fake_git).update_changed()

    assert summary.up_to_date is True
    assert summary.from_sha == summary.to_sha == "b2"
    assert ai.calls == []


def test_update_after_merge_dry_run_lists_changes_only(workspace, fake_git) -> None:
    _billing_history(workspace, fake_git)
    ai = FakeGenerator()

    summary = _orchestrator(workspace, ai, fake_git).update_after_merge(dry_run=True)

    assert summary.dry_run is True
    assert summary.from_sha == "a1"
    assert summary.changes["total"] == 2
    assert summary.changes["affected_modules"] == ["billing"]
    assert summary.files == []
    assert ai.calls == []


def test_update_after_merge_updates_files_modules_and_log(workspace, fake_git) -> None:
    _billing_history(workspace, fake_git)
    ai = _scripted_ai()

    summary = _orchestrator(workspace, ai, fake_git).update_after_merge()

    assert summary.ok
    assert summary.assignment is not None
    assert summary.assignment.analysis_performed is True
    assert [item.slug for item in summary.modules] == ["billing"]
    assert len(ai.calls) == 3
    log = workspace.assignment_log.load()
    assert sorted(log.assigned_files["billing"]) == [CREDIT, INVOICE, REFUND]
    assert log.unassigned_files == []
    assert workspace.update_log.load().last_update_sha == "b2"


def test_failed_jobs_do_not_advance_the_recorded_revision(workspace, fake_git) -> None:
    _billing_history(workspace, fake_git)
    ai = FakeGenerator(responder=lambda prompt: "not json")

    summary = _orchestrator(workspace, ai, fake_git).update_changed(from_sha="a1")

    assert not summary.ok
    assert {failure.job for failure in summary.failures} == {
        f"GenerateAndTrackDocumentation({CREDIT})",
        f"UpdateDocumentation({INVOICE})",
    }
    assert workspace.update_log.load().last_update_sha is None


def test_analyze_modules_reports_state_and_totals(workspace, fake_git) -> None:
    _billing_history(workspace, fake_git)
    orchestrator = _orchestrator(workspace, FakeGenerator(), fake_git)

    before = orchestrator.analyze_modules()
    applied = orchestrator.analyze_modules(update=True)
    after = orchestrator.analyze_modules()

    assert before["state"] == "no_log"
    assert "plan" not in before
    assert applied["analysis_performed"] is True
    assert applied["ai_called"] is False
    assert after["state"] == "analyzed"
    assert after["totals"]["assigned"] == 2


def test_create_module_skips_missing_and_owned_files(workspace, fake_git) -> None:
    workspace.document("app/Pay/Gateway.php")
    workspace.document("app/Pay/Charge.php")
    workspace.add_module("charges", files=["app/Pay/Charge.php"])
    workspace.assignment_log.write(AssignmentLog(unassigned_files=["app/Pay/Gateway.php"]))
    orchestrator = _orchestrator(workspace, FakeGenerator(), fake_git)

    record = orchestrator.create_module(
        "Payment Gateway",
        files=["app/Pay/Gateway.php", "app/Pay/Charge.php", "app/Pay/Missing.php"],
    )

    assert record.slug == "payment-gateway"
    assert record.name == "Payment Gateway"
    assert record.member_paths() == ["app/Pay/Gateway.php"]
    log = workspace.assignment_log.load()
    assert log.unassigned_files == []
    assert log.assigned_files["payment-gateway"] == ["app/Pay/Gateway.php"]
    assert orchestrator.get_module("payment-gateway").undocumented_files == ["app/Pay/Gateway.php"]


def test_create_module_rejects_unsluggable_names(workspace, fake_git) -> None:
    with pytest.raises(CascadeDocsError):
        _orchestrator(workspace, FakeGenerator(), fake_git).create_module("!!!")


def test_generate_docs_skips_documented_files(workspace, fake_git) -> None:
    fake_git.commit("c3", {})
    workspace.write_source("app/Services/Report.php", "<?php\nclass Report {}\n")
    workspace.write_source("app/vendor/Lib.php")
    workspace.document("app/Services/Export.php")
    ai = FakeGenerator([tier_documents("app/Services/Report.php")])

    summary = _orchestrator(workspace, ai, fake_git).generate_docs()

    assert {(item.path, item.status) for item in summary.generated} == {
        ("app/Services/Export.php", "skipped"),
        ("app/Services/Report.php", "generated"),
    }
    assert len(ai.calls) == 1
    assert extract_commit_sha(workspace.documents.read("app/Services/Report.php", "expansive")) == "c3"


def test_update_modules_dry_run_lists_pending_modules(workspace, fake_git) -> None:
    fake_git.commit("c3", {})
    workspace.add_module("billing", files=[INVOICE], undocumented=[REFUND])
    workspace.add_module("users", files=["app/Users/User.php"])
    ai = FakeGenerator()

    summary = _orchestrator(workspace, ai, fake_git).update_modules(dry_run=True)

    assert summary.changes == {"modules": ["billing"]}
    assert ai.calls == []


def test_from_path_loads_configuration(tmp_path) -> None:
    orchestrator = Orchestrator.from_path(tmp_path, generator=FakeGenerator(), git_runner=FakeGit())

    assert orchestrator.config == CascadeDocsConfig(root=tmp_path.resolve())
