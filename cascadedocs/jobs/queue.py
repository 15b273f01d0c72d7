"""In-process delayed work queue with retry and rate-limit backoff."""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, List, Optional

from ..errors import NotFound, ProviderError, RateLimited
from ..logging import get_logger, job_context


class Job:
    """A unit of work; `handle` receives the shared job context."""

    tries: int = 3
    timeout: float = 300.0
    rate_limit_delay: float = 60.0

    def __init__(
        self,
        *,
        tries: int | None = None,
        timeout: float | None = None,
        rate_limit_delay: float | None = None,
    ) -> None:
        if tries is not None:
            self.tries = max(1, tries)
        if timeout is not None:
            self.timeout = timeout
        if rate_limit_delay is not None:
            self.rate_limit_delay = rate_limit_delay
        self.attempts = 0

    def handle(self, context: Any) -> Any:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__

    def __repr__(self) -> str:
        return f"<{self.describe()} attempts={self.attempts}/{self.tries}>"


@dataclass
class JobFailure:
    """A job that exhausted its attempts or failed permanently."""

    job: str
    error: str
    attempts: int
    exception: BaseException = field(repr=False)


@dataclass(order=True)
class _Scheduled:
    due: float
    sequence: int
    job: Job = field(compare=False)


class WorkQueue:
    """Runs jobs on a thread pool once their due time arrives.

    With `workers=0` nothing runs in the background; `join()` drains the
    queue on the calling thread instead.
    """

    def __init__(self, context: Any = None, *, workers: int = 2, retry_backoff: float = 5.0) -> None:
        self.context = context
        self.workers = max(0, workers)
        self.retry_backoff = retry_backoff
        self.failures: List[JobFailure] = []
        self.results: List[Any] = []
        self.logger = get_logger("jobs.queue")
        self._heap: List[_Scheduled] = []
        self._sequence = itertools.count()
        self._condition = threading.Condition()
        self._running = 0
        self._closed = False
        self._executor: Optional[ThreadPoolExecutor] = None
        self._dispatcher: Optional[threading.Thread] = None

    def enqueue(self, job: Job, delay: float | None = None) -> None:
        with self._condition:
            if self._closed:
                raise RuntimeError("Work queue has been shut down")
            due = time.monotonic() + max(0.0, delay or 0.0)
            heapq.heappush(self._heap, _Scheduled(due, next(self._sequence), job))
            self._condition.notify_all()
        self.logger.debug("Queued %s (delay %.1fs)", job.describe(), delay or 0.0)
        if self.workers:
            self._start()

    def release(self, job: Job, delay: float) -> None:
        """Put a job that could not finish back on the queue after `delay` seconds."""
        with self._condition:
            closed = self._closed
        if closed:
            self._fail(job, RuntimeError("Work queue shut down before the job could be retried"))
            return
        self.enqueue(job, delay)

    def pending(self) -> int:
        with self._condition:
            return len(self._heap) + self._running

    def join(self, timeout: float | None = None) -> bool:
        """Wait until no job is queued or running; False on timeout."""
        if not self.workers:
            self._drain_inline()
            return True
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._condition:
            while self._heap or self._running:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._condition.wait(timeout=remaining)
        return True

    def shutdown(self, *, cancel_pending: bool = False, wait: bool = True) -> None:
        with self._condition:
            self._closed = True
            if cancel_pending:
                cancelled = len(self._heap)
                self._heap.clear()
                if cancelled:
                    self.logger.info("Cancelled %d pending job(s)", cancelled)
            self._condition.notify_all()
        if self._dispatcher is not None and wait:
            self._dispatcher.join()
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=cancel_pending)

    # ------------------------------------------------------------------
    # Internals

    def _start(self) -> None:
        with self._condition:
            if self._dispatcher is not None:
                return
            self._executor = ThreadPoolExecutor(
                max_workers=self.workers, thread_name_prefix="cascadedocs-job"
            )
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop, name="cascadedocs-dispatch", daemon=True
            )
            self._dispatcher.start()

    def _dispatch_loop(self) -> None:
        while True:
            with self._condition:
                item = self._wait_for_due(limit=self.workers)
                if item is None:
                    return
                self._running += 1
            assert self._executor is not None
            self._executor.submit(self._run_and_settle, item.job)

    def _wait_for_due(self, *, limit: int | None) -> Optional[_Scheduled]:
        # Caller holds self._condition.
        while True:
            if self._closed and not self._heap:
                return None
            if not self._heap or (limit is not None and self._running >= limit):
                self._condition.wait()
                continue
            wait_for = self._heap[0].due - time.monotonic()
            if wait_for <= 0:
                return heapq.heappop(self._heap)
            self._condition.wait(timeout=wait_for)

    def _run_and_settle(self, job: Job) -> None:
        try:
            self._execute(job)
        finally:
            with self._condition:
                self._running -= 1
                self._condition.notify_all()

    def _drain_inline(self) -> None:
        while True:
            with self._condition:
                if not self._heap:
                    return
                wait_for = self._heap[0].due - time.monotonic()
                if wait_for > 0:
                    self._condition.wait(timeout=wait_for)
                    continue
                item = heapq.heappop(self._heap)
                self._running += 1
            self._run_and_settle(item.job)

    def _execute(self, job: Job) -> None:
        job.attempts += 1
        with job_context(job.describe()):
            self._attempt(job)

    def _attempt(self, job: Job) -> None:
        self.logger.info("Running %s (attempt %d/%d)", job.describe(), job.attempts, job.tries)
        try:
            result = job.handle(self.context)
        except RateLimited as exc:
            if job.attempts >= job.tries:
                self._fail(job, exc)
                return
            delay = max(job.rate_limit_delay, exc.retry_after or 0.0)
            self.logger.warning("%s was rate limited; retrying in %.0fs", job.describe(), delay)
            self.release(job, delay)
        except (ProviderError, NotFound) as exc:
            self._fail(job, exc)
        except Exception as exc:  # noqa: BLE001 - job boundary, retried per policy
            if job.attempts >= job.tries:
                self._fail(job, exc)
                return
            delay = self.retry_backoff * job.attempts
            self.logger.warning("%s failed (%s); retrying in %.0fs", job.describe(), exc, delay)
            self.release(job, delay)
        else:
            with self._condition:
                self.results.append(result)
            self.logger.info("Finished %s", job.describe())

    def _fail(self, job: Job, exc: BaseException) -> None:
        failure = JobFailure(job=job.describe(), error=str(exc), attempts=job.attempts, exception=exc)
        with self._condition:
            self.failures.append(failure)
        self.logger.error("%s failed after %d attempt(s): %s", job.describe(), job.attempts, exc)


__all__ = ["Job", "JobFailure", "WorkQueue"]
