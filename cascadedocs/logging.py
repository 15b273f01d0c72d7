"""Logging for cascadedocs commands and queued jobs.

Every record passing through the configured handlers carries the label of the
job that emitted it (``-`` outside a job), so interleaved output from worker
threads can be told apart on the console and in the log file.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Iterator, Optional

_LOGGER_NAME = "cascadedocs"
_NO_JOB = "-"

_current_job: ContextVar[Optional[str]] = ContextVar("cascadedocs_job", default=None)

CONSOLE_FORMAT = "[cascadedocs] %(levelname)s %(job_prefix)s%(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(threadName)s] [%(job)s]: %(message)s"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a component-scoped logger under the cascadedocs hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def current_job() -> Optional[str]:
    return _current_job.get()


@contextmanager
def job_context(label: str) -> Iterator[None]:
    """Tag records logged inside the block with `label`."""
    token = _current_job.set(label)
    try:
        yield
    finally:
        _current_job.reset(token)


class JobContextFilter(logging.Filter):
    """Adds ``job`` and ``job_prefix`` attributes for the formatters."""

    def filter(self, record: logging.LogRecord) -> bool:
        label = _current_job.get()
        record.job = label or _NO_JOB
        record.job_prefix = f"{label}: " if label else ""
        return True


def configure_logging(
    *, verbose: bool = False, log_file: Path | None = None
) -> logging.Logger:
    """Install the console handler and, when `log_file` is given, a file sink."""
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    # Repeated CLI invocations in one process must not stack handlers.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    job_filter = JobContextFilter()
    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.addFilter(job_filter)
    stream_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        # The file keeps debug detail even when the console is at INFO.
        file_handler.setLevel(logging.DEBUG)
        file_handler.addFilter(job_filter)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)
        logger.setLevel(logging.DEBUG)

    return logger


__all__ = [
    "CONSOLE_FORMAT",
    "FILE_FORMAT",
    "JobContextFilter",
    "configure_logging",
    "current_job",
    "get_logger",
    "job_context",
]
