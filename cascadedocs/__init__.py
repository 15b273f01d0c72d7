"""Incremental AI documentation for source files and the modules they form."""

__version__ = "0.1.0"

__all__ = ["__version__"]
