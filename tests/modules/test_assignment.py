"""Tests for module assignment: full analysis, incremental merge and reconciliation."""

from __future__ import annotations

import threading

import pytest

from cascadedocs.errors import InvalidResponse
from cascadedocs.models import AssignmentLog
from cascadedocs.modules.assignment import (
    ASSIGN_TO_EXISTING,
    CREATE_NEW_MODULE,
    DO_NOT_DOCUMENT,
    STATE_ANALYZED,
    STATE_NO_LOG,
    AssignmentDecision,
    AssignmentPlan,
    ProposedModule,
    apply_plan_to_log,
    build_assignment_prompt,
    parse_analysis_response,
    parse_assignment_response,
    plan_assignments,
    plan_initial_partition,
    reconcile_log,
    related_files,
    restrict_plan,
    unique_slug,
)
from cascadedocs.prompting.builder import ASSIGNMENT_SYSTEM_PROMPT
from cascadedocs.stores.files import FileLock
from tests._fixtures.workspace import FakeGenerator

INVOICE = "app/Services/Billing/InvoiceService.php"
PAYMENT = "app/Services/Billing/PaymentGateway.php"
HELPER = "app/Helpers/ViteHelper.php"


def _analysis(*modules: dict, unassigned: list[str] | None = None) -> dict:
    return {"modules": list(modules), "unassigned_files": unassigned or []}


def _module(slug: str, files: list[str], name: str | None = None) -> dict:
    return {
        "module_name": name or slug.title(),
        "module_slug": slug,
        "description": f"{slug} things",
        "files": files,
    }


# ----------------------------------------------------------------------
# Pure merge logic


def test_assign_to_existing_module_lands_exactly_once() -> None:
    log = AssignmentLog(unassigned_files=["app/Foo.php"], assigned_files={"billing": ["app/Bar.php"]})
    decisions = parse_assignment_response(
        '{"assignments": [{"action": "assign_to_existing", "files": ["app/Foo.php"], '
        '"module": "billing", "confidence": 0.9}]}'
    )

    plan = plan_assignments(
        decisions, log.unassigned_files, existing_slugs=["billing"], min_files=2, confidence_threshold=0.7
    )
    apply_plan_to_log(log, plan, timestamp="2024-01-01T00:00:00Z", reviewed=["app/Foo.php"])

    assert log.assigned_files["billing"].count("app/Foo.php") == 1
    assert log.unassigned_files == []
    assert log.ai_reviewed_files == []


def test_first_decision_to_claim_a_path_wins() -> None:
    decisions = [
        AssignmentDecision(action=ASSIGN_TO_EXISTING, files=["a.php"], module="billing"),
        AssignmentDecision(action=DO_NOT_DOCUMENT, files=["a.php", "b.php"]),
    ]

    plan = plan_assignments(decisions, ["a.php", "b.php"], existing_slugs=["billing"], min_files=2)

    assert plan.assign_existing == {"billing": ["a.php"]}
    assert plan.do_not_document == ["b.php"]
    assert plan.unassigned == []


def test_hallucinated_paths_are_reported_and_ignored() -> None:
    decisions = [
        AssignmentDecision(action=ASSIGN_TO_EXISTING, files=["a.php", "ghost.php"], module="billing"),
    ]

    plan = plan_assignments(decisions, ["a.php"], existing_slugs=["billing"], min_files=1)

    assert plan.assign_existing == {"billing": ["a.php"]}
    assert "ghost.php" not in plan.claimed()
    assert any("ghost.php" in error for error in plan.errors)


def test_unknown_existing_module_leaves_files_unassigned() -> None:
    decisions = [AssignmentDecision(action=ASSIGN_TO_EXISTING, files=["a.php"], module="nope")]

    plan = plan_assignments(decisions, ["a.php"], existing_slugs=["billing"], min_files=1)

    assert plan.assign_existing == {}
    assert plan.unassigned == ["a.php"]
    assert plan.errors == ["Unknown module 'nope' for a.php"]


def test_low_confidence_decisions_leave_files_unassigned() -> None:
    decisions = [
        AssignmentDecision(action=ASSIGN_TO_EXISTING, files=["a.php"], module="billing", confidence=0.5),
        AssignmentDecision(action=ASSIGN_TO_EXISTING, files=["b.php"], module="billing", confidence=0.95),
    ]

    plan = plan_assignments(
        decisions, ["a.php", "b.php"], existing_slugs=["billing"], min_files=1, confidence_threshold=0.7
    )

    assert plan.assign_existing == {"billing": ["b.php"]}
    assert plan.low_confidence == ["a.php"]
    assert plan.unassigned == ["a.php"]


def test_new_module_below_minimum_size_is_rejected() -> None:
    decisions = [
        AssignmentDecision(
            action=CREATE_NEW_MODULE,
            files=["a.php"],
            module_name="Solo",
            module_slug="solo",
            description="Alone",
        )
    ]

    plan = plan_assignments(decisions, ["a.php"], existing_slugs=[], min_files=2)

    assert plan.new_modules == []
    assert [module.slug for module in plan.rejected_modules] == ["solo"]
    assert plan.unassigned == ["a.php"]


def test_new_module_slug_collision_gets_numeric_suffix() -> None:
    decisions = [
        AssignmentDecision(
            action=CREATE_NEW_MODULE,
            files=["a.php", "b.php"],
            module_name="Billing",
            module_slug="billing",
            description="Invoices",
        ),
        AssignmentDecision(action=ASSIGN_TO_EXISTING, files=["c.php"], module="billing-2"),
    ]

    plan = plan_assignments(
        decisions, ["a.php", "b.php", "c.php"], existing_slugs=["billing"], min_files=2
    )

    assert [module.slug for module in plan.new_modules] == ["billing-2"]
    assert plan.new_modules[0].files == ["a.php", "b.php", "c.php"]
    assert plan.assign_existing == {}


def test_unique_slug_skips_taken_suffixes() -> None:
    assert unique_slug("Billing", []) == "billing"
    assert unique_slug("billing", ["billing", "billing-2"]) == "billing-3"
    assert unique_slug("!!!", []) == "module"


def test_initial_partition_covers_every_candidate_once() -> None:
    proposals = [
        ProposedModule("billing", "Billing", "", [INVOICE, PAYMENT]),
        ProposedModule("payments", "Payments", "", [PAYMENT, HELPER]),
    ]

    plan = plan_initial_partition(
        proposals, [INVOICE, PAYMENT, HELPER], existing_slugs=[], min_files=2
    )

    assert [module.slug for module in plan.new_modules] == ["billing"]
    assert [module.files for module in plan.rejected_modules] == [[HELPER]]
    assert plan.unassigned == [HELPER]
    claimed = [path for module in plan.new_modules for path in module.files] + plan.unassigned
    assert sorted(claimed) == sorted([INVOICE, PAYMENT, HELPER])


def test_restrict_plan_drops_paths_claimed_elsewhere() -> None:
    plan = AssignmentPlan(
        assign_existing={"billing": ["a.php"]},
        new_modules=[ProposedModule("reports", "Reports", "", ["b.php", "c.php"])],
        unassigned=["d.php"],
    )

    restricted = restrict_plan(plan, {"a.php", "b.php", "d.php"}, min_files=2)

    assert restricted.assign_existing == {"billing": ["a.php"]}
    assert restricted.new_modules == []
    assert restricted.rejected_modules[0].files == ["b.php"]
    assert restricted.unassigned == ["d.php", "b.php"]


def test_apply_plan_records_rejected_and_heuristic_suggestions() -> None:
    log = AssignmentLog(unassigned_files=["a.php"])
    plan = AssignmentPlan(
        rejected_modules=[ProposedModule("solo", "Solo", "", ["a.php"])],
        unassigned=["a.php"],
    )

    apply_plan_to_log(log, plan, timestamp="2024-01-01T00:00:00Z", reviewed=["a.php"])

    assert log.unassigned_files == ["a.php"]
    assert log.potential_modules[0]["slug"] == "solo"
    assert log.potential_modules[0]["source"] == "ai"
    assert log.ai_reviewed_files == ["a.php"]
    assert log.last_ai_assignment == "2024-01-01T00:00:00Z"


def test_reconcile_log_applies_precedence_and_drops_stale_paths() -> None:
    log = AssignmentLog(
        assigned_files={"billing": ["a.php", "b.php", "gone.php"]},
        unassigned_files=["b.php", "c.php"],
        do_not_document=["a.php"],
        ai_reviewed_files=["c.php", "gone.php"],
    )

    reconcile_log(log, ["a.php", "b.php", "c.php", "d.php", "e.php"], {"d.php": "reports"})

    assert log.do_not_document == ["a.php"]
    assert log.assigned_files == {"billing": ["b.php"], "reports": ["d.php"]}
    assert log.unassigned_files == ["c.php", "e.php"]
    assert log.ai_reviewed_files == ["c.php"]


# ----------------------------------------------------------------------
# Response parsing


def test_parse_assignment_response_rejects_unknown_action() -> None:
    with pytest.raises(InvalidResponse):
        parse_assignment_response('{"assignments": [{"action": "merge", "files": ["a.php"]}]}')


def test_parse_assignment_response_requires_create_fields() -> None:
    with pytest.raises(InvalidResponse):
        parse_assignment_response(
            '{"assignments": [{"action": "create_new_module", "files": ["a.php"], "module_slug": "x"}]}'
        )


def test_parse_assignment_response_rejects_non_json() -> None:
    with pytest.raises(InvalidResponse):
        parse_assignment_response("Sure! Here are the assignments.")


def test_parse_analysis_response_accepts_fenced_json() -> None:
    text = '```json\n{"modules": [{"module_name": "Billing", "module_slug": "billing", "files": ["./a.php"]}]}\n```'

    modules, residual = parse_analysis_response(text)

    assert modules[0].files == ["a.php"]
    assert residual == []


# ----------------------------------------------------------------------
# Prompt construction


def test_related_files_uses_directory_and_name_similarity() -> None:
    universe = [PAYMENT, "app/Http/InvoiceServices.php", HELPER]

    assert related_files(INVOICE, universe) == [PAYMENT, "app/Http/InvoiceServices.php"]


def test_assignment_prompt_lists_modules_and_files(workspace) -> None:
    record = workspace.add_module("billing", "Billing", files=[INVOICE], summary="Invoices and payments.")

    prompt = build_assignment_prompt(
        {PAYMENT: "Talks to the payment provider."},
        [record],
        granularity="granular",
        min_files=2,
    )

    assert "### Module: billing" in prompt
    assert "Invoices and payments." in prompt
    assert f"### File: {PAYMENT}" in prompt
    assert f"**Related files:** {INVOICE}" in prompt
    assert "Talks to the payment provider." in prompt


# ----------------------------------------------------------------------
# Engine


def test_engine_assigns_unassigned_file_to_existing_module(workspace) -> None:
    workspace.document("app/Foo.php")
    workspace.document("app/Bar.php")
    workspace.add_module("billing", "Billing", files=["app/Bar.php"])
    workspace.assignment_log.write(
        AssignmentLog(assigned_files={"billing": ["app/Bar.php"]}, unassigned_files=["app/Foo.php"])
    )
    ai = FakeGenerator(
        [
            {
                "assignments": [
                    {
                        "action": "assign_to_existing",
                        "files": ["app/Foo.php"],
                        "module": "billing",
                        "confidence": 0.9,
                    }
                ]
            }
        ]
    )
    engine = workspace.assignment_engine(ai)

    result = engine.reconcile()

    log = workspace.assignment_log.load()
    assert result.ai_called is True
    assert result.analysis_performed is False
    assert log.assigned_files["billing"].count("app/Foo.php") == 1
    assert log.unassigned_files == []
    assert "app/Foo.php" in workspace.metadata.require("billing").undocumented_files
    assert ai.calls[0]["system"] == ASSIGNMENT_SYSTEM_PROMPT
    assert ai.calls[0]["json_mode"] is True


def test_initial_analysis_runs_once_and_is_idempotent(workspace) -> None:
    for path in (INVOICE, PAYMENT, HELPER):
        workspace.document(path)
    ai = FakeGenerator([_analysis(_module("billing", [INVOICE, PAYMENT]), unassigned=[HELPER])])
    engine = workspace.assignment_engine(ai)
    assert engine.state == STATE_NO_LOG

    first = engine.reconcile()
    snapshot = workspace.config.assignment_log_path.read_bytes()
    second = engine.reconcile()

    assert len(ai.calls) == 1
    assert first.analysis_performed is True
    assert second.ai_called is False
    assert engine.state == STATE_ANALYZED
    assert workspace.config.assignment_log_path.read_bytes() == snapshot

    log = workspace.assignment_log.load()
    assert log.assigned_files == {"billing": [INVOICE, PAYMENT]}
    assert log.unassigned_files == [HELPER]
    assert sorted(workspace.metadata.require("billing").undocumented_files) == sorted([INVOICE, PAYMENT])
    assert workspace.metadata.read_content("billing").startswith("# Billing Module")


def test_initial_analysis_partitions_every_documented_file(workspace) -> None:
    paths = [INVOICE, PAYMENT, HELPER, "app/Models/User.php"]
    for path in paths:
        workspace.document(path)
    ai = FakeGenerator(
        [
            _analysis(
                _module("billing", [INVOICE, PAYMENT, "app/Imaginary.php"]),
                _module("users", ["app/Models/User.php"]),
            )
        ]
    )

    workspace.assignment_engine(ai).reconcile()

    log = workspace.assignment_log.load()
    buckets = [path for files in log.assigned_files.values() for path in files]
    buckets += log.unassigned_files + log.do_not_document
    assert sorted(buckets) == sorted(paths)
    assert len(buckets) == len(set(buckets))
    assert not workspace.metadata.exists("users")
    assert log.potential_modules[0]["source"] == "ai"
    assert log.potential_modules[0]["files"] == ["app/Models/User.php"]


def test_initial_analysis_excludes_files_owned_by_modules(workspace) -> None:
    for path in (INVOICE, PAYMENT, HELPER):
        workspace.document(path)
    workspace.add_module("billing", "Billing", files=[INVOICE])
    prompts: list[str] = []

    def responder(prompt: str) -> dict:
        prompts.append(prompt)
        return _analysis(unassigned=[PAYMENT, HELPER])

    engine = workspace.assignment_engine(FakeGenerator(responder=responder))
    engine.reconcile()

    assert f"### File: {INVOICE}" not in prompts[0]
    assert f"### File: {PAYMENT}" in prompts[0]
    assert workspace.assignment_log.load().assigned_files == {"billing": [INVOICE]}


def test_dry_run_analysis_writes_nothing(workspace) -> None:
    for path in (INVOICE, PAYMENT):
        workspace.document(path)
    ai = FakeGenerator([_analysis(_module("billing", [INVOICE, PAYMENT]))])

    result = workspace.assignment_engine(ai).reconcile(dry_run=True)

    assert result.dry_run is True
    assert [module.slug for module in result.plan.new_modules] == ["billing"]
    assert not workspace.config.assignment_log_path.exists()
    assert workspace.metadata.list_all() == []


def test_reviewed_files_are_not_resent_without_new_files(workspace) -> None:
    workspace.document(HELPER)
    workspace.assignment_log.write(AssignmentLog(unassigned_files=[HELPER], ai_reviewed_files=[HELPER]))
    engine = workspace.assignment_engine(FakeGenerator([{"assignments": []}]))

    skipped = engine.assign_unassigned()
    forced = engine.assign_unassigned(force=True)

    assert skipped.ai_called is False
    assert forced.ai_called is True


def test_incremental_collision_creates_suffixed_module(workspace) -> None:
    for path in ("app/Old.php", INVOICE, PAYMENT):
        workspace.document(path)
    workspace.add_module("billing", "Billing", files=["app/Old.php"])
    workspace.assignment_log.write(
        AssignmentLog(assigned_files={"billing": ["app/Old.php"]}, unassigned_files=[INVOICE, PAYMENT])
    )
    ai = FakeGenerator(
        [
            {
                "assignments": [
                    {
                        "action": "create_new_module",
                        "files": [INVOICE, PAYMENT],
                        "module_name": "Billing",
                        "module_slug": "billing",
                        "description": "Invoice handling.",
                        "confidence": 0.9,
                    }
                ]
            }
        ]
    )

    result = workspace.assignment_engine(ai).assign_unassigned()

    assert [module.slug for module in result.plan.new_modules] == ["billing-2"]
    assert workspace.metadata.require("billing").member_paths() == ["app/Old.php"]
    assert workspace.metadata.require("billing-2").undocumented_files == [INVOICE, PAYMENT]
    assert workspace.assignment_log.load().assigned_files["billing-2"] == [INVOICE, PAYMENT]


def test_invalid_ai_response_leaves_log_untouched(workspace) -> None:
    workspace.document(HELPER)
    workspace.assignment_log.write(AssignmentLog(unassigned_files=[HELPER]))
    snapshot = workspace.config.assignment_log_path.read_bytes()
    engine = workspace.assignment_engine(FakeGenerator(["not json at all"]))

    with pytest.raises(InvalidResponse):
        engine.assign_unassigned()

    assert workspace.config.assignment_log_path.read_bytes() == snapshot


def test_assign_file_without_log_only_updates_membership(workspace) -> None:
    workspace.document(INVOICE)
    workspace.add_module("billing", "Billing")
    engine = workspace.assignment_engine(FakeGenerator())

    engine.assign_file_to_module(INVOICE, "billing")

    assert engine.state == STATE_NO_LOG
    assert workspace.metadata.require("billing").undocumented_files == [INVOICE]


def test_forget_files_removes_paths_everywhere(workspace) -> None:
    workspace.document(INVOICE)
    workspace.add_module("billing", "Billing", files=[INVOICE, PAYMENT])
    workspace.assignment_log.write(AssignmentLog(assigned_files={"billing": [INVOICE, PAYMENT]}))
    engine = workspace.assignment_engine(FakeGenerator())

    engine.forget_files([PAYMENT])

    assert workspace.metadata.require("billing").member_paths() == [INVOICE]
    assert workspace.assignment_log.load().assigned_files == {"billing": [INVOICE]}


def test_sync_picks_up_files_referenced_in_module_content(workspace) -> None:
    workspace.document(INVOICE)
    workspace.document(PAYMENT)
    workspace.add_module("billing", "Billing", files=[INVOICE])
    workspace.metadata.write_content("billing", f"# Billing\n\nCharges go through {PAYMENT} today.\n")
    workspace.assignment_log.write(AssignmentLog(unassigned_files=[INVOICE, PAYMENT]))
    engine = workspace.assignment_engine(FakeGenerator())

    preview = engine.sync_module_assignments(dry_run=True)
    assert preview["changed"] is True
    assert workspace.assignment_log.load().unassigned_files == [INVOICE, PAYMENT]

    summary = engine.sync_module_assignments()

    assert summary["referenced_in_content"] == {"billing": [PAYMENT]}
    assert workspace.assignment_log.load().assigned_files == {"billing": [INVOICE, PAYMENT]}
    assert workspace.assignment_log.load().unassigned_files == []
    assert [entry.path for entry in workspace.metadata.require("billing").files] == [INVOICE, PAYMENT]


def test_initial_analysis_leaves_the_log_lock_free_during_the_ai_call(workspace) -> None:
    for path in (INVOICE, PAYMENT):
        workspace.document(path)
    acquired: list[bool] = []

    def try_log_lock() -> None:
        lock = FileLock(workspace.config.locks_dir, f"log:{workspace.config.assignment_log_path}", timeout=0.0)
        try:
            with lock.acquire():
                acquired.append(True)
        except TimeoutError:
            acquired.append(False)

    def responder(prompt: str) -> dict:
        worker = threading.Thread(target=try_log_lock)
        worker.start()
        worker.join()
        return _analysis(_module("billing", [INVOICE, PAYMENT]))

    engine = workspace.assignment_engine(FakeGenerator(responder=responder))
    result = engine.ensure_analysis()

    assert acquired == [True]
    assert result is not None and result.analysis_performed is True
    assert workspace.assignment_log.load().assigned_files == {"billing": [INVOICE, PAYMENT]}


def test_log_written_during_analysis_wins(workspace) -> None:
    for path in (INVOICE, PAYMENT):
        workspace.document(path)

    def responder(prompt: str) -> dict:
        workspace.assignment_log.write(AssignmentLog(do_not_document=[HELPER]))
        return _analysis(_module("billing", [INVOICE, PAYMENT]))

    engine = workspace.assignment_engine(FakeGenerator(responder=responder))

    assert engine.ensure_analysis() is None
    assert workspace.assignment_log.load().do_not_document == [HELPER]
    assert not workspace.metadata.exists("billing")


def test_analysis_lock_outlasts_the_ai_request_timeout(workspace) -> None:
    engine = workspace.assignment_engine(FakeGenerator())

    assert engine.analysis_lock.timeout > workspace.config.ai.request_timeout
