"""Commits regenerated documentation back to the repository."""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Callable, Iterable, Sequence

from ..logging import get_logger


class Publisher:
    """Stages documentation paths and commits them when anything changed."""

    def __init__(self, runner: Callable[..., str] | None = None) -> None:
        self._runner = runner or self._default_runner
        self.logger = get_logger("git.publisher")

    def commit(
        self,
        repo_path: Path,
        paths: Sequence[Path | str],
        *,
        message: str,
    ) -> bool:
        """Stage `paths` and commit; returns False when there was nothing to commit."""
        repo = Path(repo_path)
        if not (repo / ".git").exists():
            self.logger.warning("Skipping commit: %s is not a git repository", repo)
            return False

        for path in paths:
            self._run(["git", "add", "--", self._to_relative(repo, Path(path))], cwd=repo)

        staged = self._run(
            ["git", "diff", "--cached", "--name-only"], cwd=repo, capture_output=True
        )
        if not staged.strip():
            self.logger.info("No documentation changes to commit")
            return False

        env = os.environ.copy()
        env.setdefault("GIT_AUTHOR_NAME", "cascadedocs")
        env.setdefault("GIT_AUTHOR_EMAIL", "cascadedocs@example.com")
        env.setdefault("GIT_COMMITTER_NAME", env["GIT_AUTHOR_NAME"])
        env.setdefault("GIT_COMMITTER_EMAIL", env["GIT_AUTHOR_EMAIL"])

        self._run(["git", "commit", "-m", message], cwd=repo, env=env)
        self.logger.info("Committed documentation changes: %s", message)
        return True

    # ------------------------------------------------------------------
    # Helpers

    @staticmethod
    def _to_relative(repo: Path, file_path: Path) -> str:
        try:
            return file_path.relative_to(repo).as_posix()
        except ValueError:
            return file_path.as_posix()

    def _run(
        self,
        args: Iterable[str],
        *,
        cwd: Path,
        env: dict[str, str] | None = None,
        capture_output: bool = False,
    ) -> str:
        return self._runner(list(args), cwd=cwd, env=env, capture_output=capture_output)

    @staticmethod
    def _default_runner(
        args: Iterable[str],
        *,
        cwd: Path,
        env: dict[str, str] | None = None,
        capture_output: bool = False,
    ) -> str:
        completed = subprocess.run(
            list(args),
            cwd=str(cwd),
            env=env,
            check=True,
            text=True,
            capture_output=capture_output,
        )
        if capture_output:
            return completed.stdout
        return ""


__all__ = ["Publisher"]
