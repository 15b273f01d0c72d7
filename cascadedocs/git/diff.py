"""Git access for change detection: name-status listings, per-file diffs and revisions."""

from __future__ import annotations

import subprocess
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..errors import CascadeDocsError
from ..logging import get_logger

ADDED = "added"
MODIFIED = "modified"
DELETED = "deleted"


@dataclass(frozen=True)
class FileChange:
    """One path touched between two revisions."""

    status: str
    path: str


@dataclass(frozen=True)
class ChangeSet:
    """Files changed between `from_sha` and `to_sha`, grouped by status."""

    from_sha: str
    to_sha: str
    changes: Sequence[FileChange] = field(default_factory=tuple)

    def paths(self, status: str) -> List[str]:
        return [change.path for change in self.changes if change.status == status]

    @property
    def added(self) -> List[str]:
        return self.paths(ADDED)

    @property
    def modified(self) -> List[str]:
        return self.paths(MODIFIED)

    @property
    def deleted(self) -> List[str]:
        return self.paths(DELETED)

    def filtered(self, keep: Callable[[str], bool]) -> "ChangeSet":
        return ChangeSet(
            from_sha=self.from_sha,
            to_sha=self.to_sha,
            changes=tuple(change for change in self.changes if keep(change.path)),
        )


class DiffService:
    """Thin wrapper over the git CLI with an injectable command runner."""

    def __init__(self, repo_path: Path, runner: Callable[..., str] | None = None) -> None:
        self.repo_path = Path(repo_path)
        self._runner = runner or self._default_runner
        self.logger = get_logger("git.diff")

    def diff(
        self, from_sha: str, to_sha: str, path: str, *, ignore_whitespace: bool = False
    ) -> str:
        """Return the textual diff of `path`; empty when there is no usable prior revision."""
        args = ["git", "diff"]
        if ignore_whitespace:
            args.append("-w")
        args.extend([from_sha, to_sha, "--", path])
        try:
            return self._run(args)
        except CascadeDocsError as exc:
            self.logger.debug("No diff for %s between %s and %s: %s", path, from_sha, to_sha, exc)
            return ""

    def current_head(self) -> str:
        return self.resolve("HEAD")

    def resolve(self, ref: str) -> str:
        return self._run(["git", "rev-parse", ref]).strip()

    def last_commit_touching(self, path: str) -> Optional[str]:
        try:
            output = self._run(["git", "log", "-1", "--format=%H", "--", path]).strip()
        except CascadeDocsError:
            return None
        return output or None

    def file_exists(self, sha: str, path: str) -> bool:
        try:
            self._run(["git", "cat-file", "-e", f"{sha}:{path}"])
        except CascadeDocsError:
            return False
        return True

    def show(self, sha: str, path: str) -> Optional[str]:
        try:
            return self._run(["git", "show", f"{sha}:{path}"])
        except CascadeDocsError:
            return None

    def changed_files(self, from_sha: str, to_sha: str) -> ChangeSet:
        output = self._run(["git", "diff", "--name-status", "-M", from_sha, to_sha])
        return ChangeSet(from_sha=from_sha, to_sha=to_sha, changes=tuple(parse_name_status(output)))

    # ------------------------------------------------------------------
    # Internals

    def _run(self, args: Iterable[str]) -> str:
        command = list(args)
        try:
            return self._runner(command, cwd=self.repo_path, capture_output=True)
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip() if isinstance(exc.stderr, str) else ""
            raise CascadeDocsError(
                f"{' '.join(command)} failed with exit code {exc.returncode}: {stderr}"
            ) from exc
        except FileNotFoundError as exc:
            raise CascadeDocsError("Unable to locate 'git' on PATH") from exc

    @staticmethod
    def _default_runner(
        args: Iterable[str],
        *,
        cwd: Path,
        capture_output: bool = False,
    ) -> str:
        completed = subprocess.run(
            list(args),
            cwd=str(cwd),
            check=True,
            text=True,
            capture_output=capture_output,
        )
        return completed.stdout if capture_output else ""


def parse_name_status(output: str) -> List[FileChange]:
    """Parse `git diff --name-status` output; renames become a delete plus an add."""
    changes: List[FileChange] = []
    for line in output.splitlines():
        parts = line.strip().split("\t")
        if len(parts) < 2 or not parts[0]:
            continue
        code = parts[0][0]
        if code == "A" or code == "C":
            changes.append(FileChange(ADDED, parts[-1]))
        elif code == "D":
            changes.append(FileChange(DELETED, parts[1]))
        elif code == "R" and len(parts) >= 3:
            changes.append(FileChange(DELETED, parts[1]))
            changes.append(FileChange(ADDED, parts[2]))
        elif code in {"M", "T"}:
            changes.append(FileChange(MODIFIED, parts[1]))
    return changes


def summarize_changes(
    change_set: ChangeSet, module_for: Callable[[str], Optional[str]]
) -> Dict[str, object]:
    """Count changes by status and top directory and list the modules they touch."""
    by_status = Counter(change.status for change in change_set.changes)
    by_directory = Counter(
        str(PurePosixPath(change.path).parent) for change in change_set.changes
    )
    modules = sorted(
        {slug for slug in (module_for(change.path) for change in change_set.changes) if slug}
    )
    return {
        "from_sha": change_set.from_sha,
        "to_sha": change_set.to_sha,
        "total": len(change_set.changes),
        "by_status": {status: by_status.get(status, 0) for status in (ADDED, MODIFIED, DELETED)},
        "by_directory": dict(sorted(by_directory.items())),
        "affected_modules": modules,
    }


__all__ = [
    "ADDED",
    "ChangeSet",
    "DELETED",
    "DiffService",
    "FileChange",
    "MODIFIED",
    "parse_name_status",
    "summarize_changes",
]
