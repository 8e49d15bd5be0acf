"""
Versioned, effective-dated register of extracted records.

This package provides:
- VersionedRegister: entry lifecycle, indexes, listing, search, export/import
- TemporalResolver: which version was in force at a point in time
- AuditLog: append-only record of ADD/UPDATE/ARCHIVE mutations
- Query parsing and scoring for search

Invariants:
    - Versions of an id are exactly 1..N; history holds 1..N-1
    - History is append-only
    - Validity intervals are half-open [effective_from, effective_to)
"""

from .audit import AuditAction, AuditLog, AuditLogEntry
from .core import (
    EntryHistory,
    ImportResult,
    ListPage,
    SearchHit,
    SearchResult,
    VersionedRegister,
    VersionSummary,
)
from .query import Operator, Predicate, QueryMatch, evaluate, parse_query
from .temporal import Interval, TemporalResolver
from .types import (
    Entry,
    EntryMetadata,
    EntryStatus,
    EntrySummary,
    EntryVersion,
    ExtractedRecord,
    HistoryRecord,
    Timestamp,
    to_utc,
    utcnow,
)

__all__ = [
    # Register
    "VersionedRegister",
    "ListPage",
    "SearchHit",
    "SearchResult",
    "EntryHistory",
    "VersionSummary",
    "ImportResult",
    # Types
    "Entry",
    "EntryMetadata",
    "EntryStatus",
    "EntrySummary",
    "EntryVersion",
    "ExtractedRecord",
    "HistoryRecord",
    "Timestamp",
    "to_utc",
    "utcnow",
    # Temporal
    "Interval",
    "TemporalResolver",
    # Audit
    "AuditAction",
    "AuditLog",
    "AuditLogEntry",
    # Query
    "Operator",
    "Predicate",
    "QueryMatch",
    "evaluate",
    "parse_query",
]
