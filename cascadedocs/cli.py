"""CLI entrypoints for cascadedocs commands."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Callable

from .config import CONFIG_FILENAME, ConfigError
from .errors import CascadeDocsError
from .logging import configure_logging
from .modules.reports import format_module_status
from .orchestrator import Orchestrator, RunSummary

OrchestratorFactory = Callable[[Path], Orchestrator]


def _add_common_options(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    verbose: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    config: dict[str, object] = {
        "type": Path,
        "help": f"Path to {CONFIG_FILENAME} (defaults to the current directory).",
    }
    log_file: dict[str, object] = {
        "type": Path,
        "help": "Also write debug-level logs, tagged by job, to this file.",
    }
    if suppress_default:
        verbose["default"] = argparse.SUPPRESS
        config["default"] = argparse.SUPPRESS
        log_file["default"] = argparse.SUPPRESS
    else:
        verbose["default"] = False
        config["default"] = Path(CONFIG_FILENAME)
        log_file["default"] = None
    parser.add_argument("-v", "--verbose", **verbose)
    parser.add_argument("--config", **config)
    parser.add_argument("--log-file", **log_file)


def _add_dry_run_option(parser: argparse.ArgumentParser, help_text: str) -> None:
    parser.add_argument("--dry-run", action="store_true", help=help_text)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cascadedocs",
        description="Generate and maintain tiered AI documentation and module narratives.",
    )
    _add_common_options(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser(
        "analyze-modules", help="Show module assignment state, optionally reconciling it."
    )
    _add_common_options(analyze, suppress_default=True)
    mode = analyze.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true", help="Preview assignments without writing.")
    mode.add_argument("--update", action="store_true", help="Apply assignments to the log and modules.")

    assign = subparsers.add_parser("assign-files", help="Assign documented files to modules.")
    _add_common_options(assign, suppress_default=True)
    _add_dry_run_option(assign, "Preview assignments without writing.")
    assign.add_argument(
        "--force",
        action="store_true",
        help="Ask the AI again even when every unassigned file was already reviewed.",
    )

    index = subparsers.add_parser("generate-module-index", help="Write the module index page.")
    _add_common_options(index, suppress_default=True)
    index.add_argument("--output", type=Path, help="Where to write the index (defaults to modules/index.md).")

    changed = subparsers.add_parser(
        "update-changed", help="Update documentation for files changed between two revisions."
    )
    _add_common_options(changed, suppress_default=True)
    changed.add_argument("--from-sha", help="Starting revision (defaults to the last recorded run).")
    changed.add_argument("--to-sha", help="Target revision (defaults to HEAD).")
    changed.add_argument(
        "--auto-commit", action="store_true", help="Commit regenerated documentation when done."
    )

    merge = subparsers.add_parser(
        "update-after-merge", help="Catch documentation up with everything merged since the last run."
    )
    _add_common_options(merge, suppress_default=True)
    merge.add_argument("--since", help="Revision to start from (defaults to the last recorded run).")
    _add_dry_run_option(merge, "List the changes that would be processed.")

    generate = subparsers.add_parser("generate-docs", help="Generate tier documents for source files.")
    _add_common_options(generate, suppress_default=True)
    generate.add_argument("--paths", nargs="+", help="Files or directories to document.")
    generate.add_argument("--tier", choices=("micro", "standard", "expansive"), help="Only this tier.")
    generate.add_argument("--force", action="store_true", help="Regenerate existing documents.")

    modules = subparsers.add_parser(
        "update-modules", help="Regenerate narratives for modules with undocumented files."
    )
    _add_common_options(modules, suppress_default=True)
    modules.add_argument("--module", help="Only update this module slug.")
    modules.add_argument("--limit", type=int, help="Update at most this many modules.")
    _add_dry_run_option(modules, "List the modules that would be updated.")

    status = subparsers.add_parser("module-status", help="Report module assignment coverage.")
    _add_common_options(status, suppress_default=True)
    status.add_argument("--module", help="Show details for one module slug.")
    status.add_argument("--json", action="store_true", help="Print the report as JSON.")

    sync = subparsers.add_parser(
        "sync-modules", help="Rebuild the assignment log from module metadata and content."
    )
    _add_common_options(sync, suppress_default=True)
    _add_dry_run_option(sync, "Report what would change without writing.")

    create = subparsers.add_parser("create-module", help="Create a module by hand.")
    _add_common_options(create, suppress_default=True)
    create.add_argument("name", help="Module name; the slug is derived from it.")
    create.add_argument("--files", nargs="+", default=[], help="Repository-relative member files.")
    create.add_argument("--title", help="Display name (defaults to the name in title case).")
    create.add_argument("--description", default="", help="Short module description.")

    serve = subparsers.add_parser("serve", help="Run the HTTP service.")
    _add_common_options(serve, suppress_default=True)
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser


def _default_factory(config_path: Path) -> Orchestrator:
    return Orchestrator.from_path(config_path)


def main(argv: list[str] | None = None, *, factory: OrchestratorFactory = _default_factory) -> None:
    """CLI entrypoint for cascadedocs commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose), log_file=args.log_file)

    if args.command == "serve":
        from .service import run_service

        run_service(host=args.host, port=args.port, config_path=args.config)
        return

    try:
        orchestrator = factory(args.config)
        _dispatch(parser, args, orchestrator)
    except (CascadeDocsError, ConfigError, OSError) as exc:
        parser.exit(1, f"cascadedocs {args.command} failed: {exc}\nRun with --verbose for more details.\n")


def _dispatch(parser: argparse.ArgumentParser, args: argparse.Namespace, orchestrator: Orchestrator) -> None:
    command = args.command
    if command == "analyze-modules":
        report = orchestrator.analyze_modules(dry_run=args.dry_run, update=args.update)
        print(f"State: {report['state']}")
        print(format_module_status(report))
        if "plan" in report:
            label = "Proposed changes (dry-run)" if report["dry_run"] else "Applied changes"
            print(f"{label}:")
            _print_json(report["plan"])
    elif command == "assign-files":
        result = orchestrator.assign_files(dry_run=args.dry_run, force=args.force)
        if not result.ai_called:
            print("No new unassigned files")
        else:
            label = "Proposed assignments (dry-run)" if result.dry_run else "Assignments applied"
            print(f"{label}:")
            _print_json(result.plan.to_dict())
    elif command == "generate-module-index":
        path = orchestrator.generate_module_index(args.output)
        print(f"Module index written to {_relativize(path)}")
    elif command == "update-changed":
        summary = orchestrator.update_changed(
            from_sha=args.from_sha, to_sha=args.to_sha, auto_commit=args.auto_commit
        )
        _report_run(parser, summary)
    elif command == "update-after-merge":
        summary = orchestrator.update_after_merge(since=args.since, dry_run=args.dry_run)
        _report_run(parser, summary)
    elif command == "generate-docs":
        summary = orchestrator.generate_docs(paths=args.paths, tier=args.tier, force=args.force)
        _report_run(parser, summary)
    elif command == "update-modules":
        summary = orchestrator.update_modules(module=args.module, limit=args.limit, dry_run=args.dry_run)
        _report_run(parser, summary)
    elif command == "module-status":
        report = orchestrator.module_status(args.module)
        if args.json:
            _print_json(report)
        else:
            print(format_module_status(report))
    elif command == "sync-modules":
        _print_json(orchestrator.sync_modules(dry_run=args.dry_run))
    elif command == "create-module":
        record = orchestrator.create_module(
            args.name, files=args.files, title=args.title, description=args.description
        )
        print(f"Created module {record.slug} with {len(record.member_paths())} file(s)")
    else:  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")


def _report_run(parser: argparse.ArgumentParser, summary: RunSummary) -> None:
    if summary.up_to_date:
        print(f"Documentation already up to date at {summary.to_sha}")
        return
    if summary.dry_run:
        print("Planned work (dry-run):")
        _print_json(summary.changes)
        return
    for item in summary.files:
        print(f"{item.action}: {item.path}")
    for item in summary.generated:
        print(f"{item.status}: {item.path}")
    for item in summary.modules:
        print(f"module {item.status}: {item.slug}")
    if summary.committed:
        print("Committed documentation changes")
    if summary.failures:
        details = "\n".join(f"  {item.job}: {item.error}" for item in summary.failures)
        parser.exit(1, f"{len(summary.failures)} job(s) failed:\n{details}\n")


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _relativize(path: Path) -> str:
    try:
        return str(path.relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main(sys.argv[1:])
