"""Version-control collaborators."""

from .diff import ChangeSet, DiffService, FileChange
from .publisher import Publisher

__all__ = ["ChangeSet", "DiffService", "FileChange", "Publisher"]
