"""CLI parser and dispatch behaviour tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import pytest

from cascadedocs.cli import _build_parser, main
from cascadedocs.errors import NotFound
from cascadedocs.jobs.queue import JobFailure
from cascadedocs.models import ModuleFile, ModuleRecord
from cascadedocs.modules.assignment import AssignmentPlan, AssignmentResult
from cascadedocs.orchestrator import RunSummary
from cascadedocs.updates.engine import FileUpdateResult


class _StubOrchestrator:
    def __init__(self) -> None:
        self.calls: List[tuple[str, Dict[str, Any]]] = []
        self.summary = RunSummary(from_sha="a1", to_sha="b2")

    def _record(self, method: str, **kwargs: Any) -> None:
        self.calls.append((method, kwargs))

    def assign_files(self, **kwargs: Any) -> AssignmentResult:
        self._record("assign_files", **kwargs)
        return AssignmentResult(plan=AssignmentPlan(), dry_run=kwargs["dry_run"], ai_called=False)

    def update_changed(self, **kwargs: Any) -> RunSummary:
        self._record("update_changed", **kwargs)
        return self.summary

    def update_after_merge(self, **kwargs: Any) -> RunSummary:
        self._record("update_after_merge", **kwargs)
        return self.summary

    def module_status(self, slug: str | None = None) -> Dict[str, Any]:
        self._record("module_status", slug=slug)
        if slug == "missing":
            raise NotFound("Module not found: missing")
        return {
            "totals": {
                "modules": 0,
                "documented_files": 0,
                "assigned": 0,
                "unassigned": 0,
                "do_not_document": 0,
                "assigned_percentage": 0.0,
                "unassigned_percentage": 0.0,
            },
            "modules": [],
            "unassigned_files": [],
            "suggestions": [],
        }

    def create_module(self, name: str, **kwargs: Any) -> ModuleRecord:
        self._record("create_module", name=name, **kwargs)
        return ModuleRecord(slug=name, name=name, files=[ModuleFile(path=path) for path in kwargs["files"]])


def _run(stub: _StubOrchestrator, argv: List[str]) -> List[Path]:
    seen: List[Path] = []

    def factory(path: Path) -> _StubOrchestrator:
        seen.append(path)
        return stub

    main(argv, factory=factory)
    return seen


def test_cli_accepts_verbose_before_and_after_command() -> None:
    parser = _build_parser()

    before = parser.parse_args(["--verbose", "assign-files"])
    after = parser.parse_args(["assign-files", "--verbose"])

    assert before.verbose is True
    assert after.verbose is True
    assert after.command == "assign-files"


def test_cli_config_option_defaults_to_current_directory() -> None:
    parser = _build_parser()

    assert parser.parse_args(["module-status"]).config == Path(".cascadedocs.yml")
    assert parser.parse_args(["module-status", "--config", "x.yml"]).config == Path("x.yml")


def test_analyze_modules_modes_are_exclusive() -> None:
    parser = _build_parser()

    with pytest.raises(SystemExit):
        parser.parse_args(["analyze-modules", "--dry-run", "--update"])


def test_assign_files_without_new_files(capsys) -> None:
    stub = _StubOrchestrator()

    _run(stub, ["assign-files", "--dry-run", "--force"])

    assert stub.calls == [("assign_files", {"dry_run": True, "force": True})]
    assert "No new unassigned files" in capsys.readouterr().out


def test_update_changed_passes_revisions(capsys) -> None:
    stub = _StubOrchestrator()
    stub.summary.files.append(FileUpdateResult(path="app/A.php", action="updated", to_sha="b2"))

    seen = _run(stub, ["update-changed", "--from-sha", "a1", "--config", "repo/.cascadedocs.yml"])

    assert seen == [Path("repo/.cascadedocs.yml")]
    assert stub.calls == [("update_changed", {"from_sha": "a1", "to_sha": None, "auto_commit": False})]
    assert "updated: app/A.php" in capsys.readouterr().out


def test_up_to_date_run_is_reported(capsys) -> None:
    stub = _StubOrchestrator()
    stub.summary = RunSummary(from_sha="b2", to_sha="b2", up_to_date=True)

    _run(stub, ["update-after-merge"])

    assert stub.calls == [("update_after_merge", {"since": None, "dry_run": False})]
    assert "already up to date at b2" in capsys.readouterr().out


def test_failed_jobs_exit_non_zero(capsys) -> None:
    stub = _StubOrchestrator()
    stub.summary.failures.append(
        JobFailure(job="UpdateDocumentation(app/A.php)", error="boom", attempts=2, exception=ValueError("boom"))
    )

    with pytest.raises(SystemExit) as excinfo:
        _run(stub, ["update-changed"])

    assert excinfo.value.code == 1
    assert "UpdateDocumentation(app/A.php): boom" in capsys.readouterr().err


def test_errors_exit_with_message(capsys) -> None:
    stub = _StubOrchestrator()

    with pytest.raises(SystemExit) as excinfo:
        _run(stub, ["module-status", "--module", "missing"])

    assert excinfo.value.code == 1
    assert "cascadedocs module-status failed: Module not found: missing" in capsys.readouterr().err


def test_module_status_json(capsys) -> None:
    _run(_StubOrchestrator(), ["module-status", "--json"])

    assert '"assigned_percentage": 0.0' in capsys.readouterr().out


def test_create_module_reports_members(capsys) -> None:
    stub = _StubOrchestrator()

    _run(stub, ["create-module", "billing", "--files", "app/A.php", "app/B.php"])

    assert stub.calls[0] == (
        "create_module",
        {"name": "billing", "files": ["app/A.php", "app/B.php"], "title": None, "description": ""},
    )
    assert "Created module billing with 2 file(s)" in capsys.readouterr().out
