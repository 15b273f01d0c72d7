"""Background job execution."""

from .queue import Job, JobFailure, WorkQueue
from .tasks import (
    GenerateAndTrackDocumentationJob,
    GenerateDocumentationJob,
    JobContext,
    UpdateDocumentationJob,
    UpdateModuleDocumentationJob,
)

__all__ = [
    "GenerateAndTrackDocumentationJob",
    "GenerateDocumentationJob",
    "Job",
    "JobContext",
    "JobFailure",
    "UpdateDocumentationJob",
    "UpdateModuleDocumentationJob",
    "WorkQueue",
]
