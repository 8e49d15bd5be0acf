"""
Stateless comparison of extracted documents.

This package provides:
- Comparator: pairwise diffs, multi-document comparison, version timelines
- find_conflicts / find_overlaps: cross-document disagreement and duplication
- generate_diff_report: text, JSON and HTML renderings of a comparison
- Value helpers: structural equality and change significance

Nothing in this package mutates a register.
"""

from .comparator import (
    ChangeKind,
    Comparator,
    ComparisonResult,
    ComparisonStatistics,
    Difference,
    MultiComparison,
    PairComparison,
    VersionTimeline,
    VersionTransition,
)
from .conflicts import (
    Conflict,
    ConflictReport,
    DuplicateGroup,
    FieldObservation,
    OverlapPeriod,
    OverlapReport,
    SimilarPair,
    find_conflicts,
    find_overlaps,
    similarity,
)
from .documents import Document, DocumentRef, as_document
from .report import ReportFormat, generate_diff_report
from .values import MISSING, freeze, significance, structurally_equal

__all__ = [
    # Comparator
    "ChangeKind",
    "Comparator",
    "ComparisonResult",
    "ComparisonStatistics",
    "Difference",
    "MultiComparison",
    "PairComparison",
    "VersionTimeline",
    "VersionTransition",
    # Conflicts and overlaps
    "Conflict",
    "ConflictReport",
    "DuplicateGroup",
    "FieldObservation",
    "OverlapPeriod",
    "OverlapReport",
    "SimilarPair",
    "find_conflicts",
    "find_overlaps",
    "similarity",
    # Documents
    "Document",
    "DocumentRef",
    "as_document",
    # Reports
    "ReportFormat",
    "generate_diff_report",
    # Values
    "MISSING",
    "freeze",
    "significance",
    "structurally_equal",
]
