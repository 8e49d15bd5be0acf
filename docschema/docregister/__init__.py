"""
Document Register - versioned, effective-dated storage and comparison of
extracted documents.

This package is built from:
- A storage adapter abstraction (memory, JSON files) as the persistence layer
- A versioned register with category/tag indexes and an audit log
- A temporal resolver answering "which version was in force at time T"
- A stateless comparator for diffs, timelines, conflicts and overlaps

Invariants:
    - Each update creates a new version; history is append-only
    - Validity intervals are half-open [effective_from, effective_to)
    - Comparison never mutates the register
    - Storage adapter errors propagate unmodified

How to change safely:
    - Add new fields to stored entries with defaults so old data still loads
    - Keep serialized key names stable

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
