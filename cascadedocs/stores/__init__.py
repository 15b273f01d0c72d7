"""Flat-file persistence for documents, module metadata and tracking logs."""

from .documents import DocumentStore
from .files import FileLock, atomic_write_json, atomic_write_text
from .logs import AssignmentLogStore, UpdateLogStore
from .modules import ModuleMetadataStore

__all__ = [
    "AssignmentLogStore",
    "DocumentStore",
    "FileLock",
    "ModuleMetadataStore",
    "UpdateLogStore",
    "atomic_write_json",
    "atomic_write_text",
]
