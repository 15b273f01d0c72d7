"""Read-merge-write persistence for the assignment and update logs."""

from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Generic, Iterator, Optional, TypeVar

from ..config import CascadeDocsConfig
from ..errors import MalformedState
from ..logging import get_logger
from ..models import AssignmentLog, RevisionEntry, UpdateLog, utc_timestamp
from .files import FileLock, atomic_write_text, dump_json

LogT = TypeVar("LogT", AssignmentLog, UpdateLog)
ResultT = TypeVar("ResultT")


class _JsonLogStore(Generic[LogT]):
    """Single-writer JSON document guarded by a `FileLock`."""

    def __init__(
        self,
        path: Path,
        lock_dir: Path,
        *,
        factory: Callable[[], LogT],
        parser: Callable[[Any], LogT],
        lock_timeout: float = 120.0,
    ) -> None:
        self.path = path
        self._factory = factory
        self._parser = parser
        self._lock = FileLock(lock_dir, f"log:{path}", timeout=lock_timeout)
        self.logger = get_logger("stores.logs")

    def exists(self) -> bool:
        return self.read() is not None

    def read(self) -> Optional[LogT]:
        """Return the persisted log, or None when it is missing or malformed."""
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            self.logger.warning("Treating unreadable log %s as absent: %s", self.path, exc)
            return None
        try:
            return self._parser(payload)
        except MalformedState as exc:
            self.logger.warning("Treating malformed log %s as absent: %s", self.path, exc)
            return None

    def load(self) -> LogT:
        log = self.read()
        return log if log is not None else self._factory()

    def write(self, log: LogT) -> None:
        with self.locked():
            self._write(log)

    def update(self, apply: Callable[[LogT], ResultT]) -> ResultT:
        """Lock, read the latest log, apply `apply`, and write it back if it changed."""
        with self.locked():
            current_text = self._current_text()
            log = self.load()
            result = apply(log)
            if current_text is None or dump_json(log.to_dict()) != current_text:
                self._write(log)
            return result

    @contextmanager
    def locked(self) -> Iterator[None]:
        with self._lock.acquire():
            yield

    # ------------------------------------------------------------------
    # Internals

    def _current_text(self) -> Optional[str]:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _write(self, log: LogT) -> None:
        payload = log.to_dict()
        self._parser(payload)
        atomic_write_text(self.path, dump_json(payload))


class AssignmentLogStore(_JsonLogStore[AssignmentLog]):
    """Durable partition of documented files into module buckets."""

    def __init__(self, config: CascadeDocsConfig) -> None:
        super().__init__(
            config.assignment_log_path,
            config.locks_dir,
            factory=AssignmentLog,
            parser=AssignmentLog.from_dict,
        )


class UpdateLogStore(_JsonLogStore[UpdateLog]):
    """Revision bookkeeping for files and modules."""

    def __init__(self, config: CascadeDocsConfig) -> None:
        super().__init__(
            config.update_log_path,
            config.locks_dir,
            factory=UpdateLog,
            parser=UpdateLog.from_dict,
        )

    def record_file(self, path: str, sha: str) -> None:
        def _apply(log: UpdateLog) -> None:
            log.files[path] = RevisionEntry(sha=sha, last_updated=utc_timestamp())

        self.update(_apply)

    def forget_file(self, path: str) -> None:
        def _apply(log: UpdateLog) -> None:
            log.files.pop(path, None)

        self.update(_apply)

    def record_module(self, slug: str, sha: str) -> None:
        def _apply(log: UpdateLog) -> None:
            log.modules[slug] = RevisionEntry(sha=sha, last_updated=utc_timestamp())

        self.update(_apply)

    def record_run(self, sha: str) -> None:
        def _apply(log: UpdateLog) -> None:
            log.last_update_sha = sha
            log.last_update_timestamp = utc_timestamp()

        self.update(_apply)

    def file_revision(self, path: str) -> Optional[str]:
        entry = self.load().files.get(path)
        return entry.sha if entry else None


__all__ = ["AssignmentLogStore", "UpdateLogStore"]
