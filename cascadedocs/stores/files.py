"""Durable file primitives: atomic writes and per-file advisory locks."""

from __future__ import annotations

import fcntl
import hashlib
import json
import os
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Tuple

_LOCK_POLL_INTERVAL_SECONDS = 0.01


def atomic_write_text(path: Path, content: str) -> None:
    """Write `content` to a sibling temp file and rename it over `path`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, path)
    except BaseException:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        raise


def dump_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def atomic_write_json(path: Path, payload: Any) -> None:
    # Serialise first so an unserialisable payload never reaches the disk.
    atomic_write_text(path, dump_json(payload))


class FileLock:
    """Serialises access to one resource across threads and processes.

    A process-local re-entrant lock guards threads; an exclusive `flock` on a
    lock file under `lock_dir` guards other processes. Re-entrant acquisition
    from the owning thread does not touch the lock file again.
    """

    _registry: Dict[str, Tuple[threading.RLock, Dict[int, int]]] = {}
    _registry_guard = threading.Lock()

    def __init__(self, lock_dir: Path, resource: str, *, timeout: float = 120.0) -> None:
        self.lock_dir = lock_dir
        self.resource = resource
        self.timeout = timeout

    @contextmanager
    def acquire(self) -> Iterator[None]:
        thread_lock, depths = self._thread_state()
        deadline = time.monotonic() + max(0.0, self.timeout)
        if not thread_lock.acquire(timeout=max(0.0, self.timeout)):
            raise TimeoutError(f"thread lock timeout for {self.resource}")
        ident = threading.get_ident()
        fd: int | None = None
        try:
            if depths.get(ident, 0) == 0:
                fd = self._acquire_file(deadline)
            depths[ident] = depths.get(ident, 0) + 1
            try:
                yield
            finally:
                depths[ident] -= 1
                if depths[ident] == 0:
                    depths.pop(ident, None)
        finally:
            if fd is not None:
                try:
                    fcntl.flock(fd, fcntl.LOCK_UN)
                finally:
                    os.close(fd)
            thread_lock.release()

    # ------------------------------------------------------------------
    # Internals

    def _thread_state(self) -> Tuple[threading.RLock, Dict[int, int]]:
        with self._registry_guard:
            state = self._registry.get(self.resource)
            if state is None:
                state = (threading.RLock(), {})
                self._registry[self.resource] = state
            return state

    def _lockfile(self) -> Path:
        digest = hashlib.sha1(self.resource.encode("utf-8")).hexdigest()
        return self.lock_dir / f"{digest}.lock"

    def _acquire_file(self, deadline: float) -> int:
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self._lockfile()), os.O_RDWR | os.O_CREAT, 0o600)
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return fd
            except BlockingIOError:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    os.close(fd)
                    raise TimeoutError(f"file lock timeout for {self.resource}")
                time.sleep(min(_LOCK_POLL_INTERVAL_SECONDS, remaining))


__all__ = ["FileLock", "atomic_write_json", "atomic_write_text", "dump_json"]
