"""Error taxonomy shared by the stores, engines and jobs."""

from __future__ import annotations

from typing import Optional


class CascadeDocsError(RuntimeError):
    """Base class for failures surfaced to the operator."""


class RateLimited(CascadeDocsError):
    """The AI provider throttled the request; retry after a delay."""

    def __init__(self, message: str, *, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ProviderError(CascadeDocsError):
    """Non-retryable provider or network failure."""


class InvalidResponse(CascadeDocsError):
    """The AI returned non-JSON output or omitted required fields."""


class NotFound(CascadeDocsError):
    """A referenced module or file does not exist."""


class MalformedState(CascadeDocsError):
    """A JSON store file could not be parsed or failed validation."""


__all__ = [
    "CascadeDocsError",
    "InvalidResponse",
    "MalformedState",
    "NotFound",
    "ProviderError",
    "RateLimited",
]
