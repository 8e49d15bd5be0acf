"""
Structural diffing of extracted documents.

The Comparator is stateless: it reads the documents it is given and never
touches the register. It classifies every top-level field that differs
between two documents:

    added           present only in B
    removed         present only in A
    numeric_change  both numbers (bool excluded); carries delta and percent
    text_change     both strings; carries length_change
    array_change    both sequences; carries items added and removed
    object_change   both mappings (deep_compare only); carries nested diffs
    modified        anything else, including None against a value

Invariants:
    - compare(A, A) is identical with zero differences
    - compare(A, B) and compare(B, A) report the same fields; added and
      removed swap, numeric deltas negate
    - Fields in ignore_fields are skipped and not counted in total_fields
    - Comparison never raises on well-typed, acyclic input

Example:
    >>> comparator = Comparator()
    >>> result = comparator.compare({"amount": 100}, {"amount": 150})
    >>> result.differences[0].delta
    50
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..config import ComparatorSettings
from ..register.types import Entry, format_ts, utcnow
from .conflicts import ConflictReport, OverlapReport, find_conflicts, find_overlaps
from .documents import DocumentRef, as_document, document_versions
from .values import (
    MISSING,
    contains_structurally,
    is_number,
    is_sequence,
    significance,
    structurally_equal,
)

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    """Classification of a field difference."""

    ADDED = "added"
    REMOVED = "removed"
    NUMERIC_CHANGE = "numeric_change"
    TEXT_CHANGE = "text_change"
    ARRAY_CHANGE = "array_change"
    OBJECT_CHANGE = "object_change"
    MODIFIED = "modified"

    @property
    def is_presence_change(self) -> bool:
        """Whether the field appeared or disappeared (vs. changed value)."""
        return self in (ChangeKind.ADDED, ChangeKind.REMOVED)


@dataclass
class Difference:
    """A single field difference.

    Attributes:
        field: Field name (last path segment)
        path: Dotted path from the document root
        kind: How the field changed
        value_a: Value in A (None when added)
        value_b: Value in B (None when removed)
        significance: Materiality heuristic in [0, 1]
        delta: B - A, for numeric changes
        percent_change: delta / A * 100, None when A is 0
        length_change: len(B) - len(A), for text changes
        items_added: Items of B not in A, for array changes
        items_removed: Items of A not in B, for array changes
        nested: Differences inside a mapping, for object changes
    """

    field: str
    path: str
    kind: ChangeKind
    value_a: Any
    value_b: Any
    significance: float
    delta: float | None = None
    percent_change: float | None = None
    length_change: int | None = None
    items_added: list[Any] | None = None
    items_removed: list[Any] | None = None
    nested: list[Difference] | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "field": self.field,
            "path": self.path,
            "type": self.kind.value,
            "value_a": self.value_a,
            "value_b": self.value_b,
            "significance": self.significance,
        }
        if self.kind == ChangeKind.NUMERIC_CHANGE:
            result["delta"] = self.delta
            result["percent_change"] = self.percent_change
        elif self.kind == ChangeKind.TEXT_CHANGE:
            result["length_change"] = self.length_change
        elif self.kind == ChangeKind.ARRAY_CHANGE:
            result["added"] = self.items_added
            result["removed"] = self.items_removed
            result["items_added"] = len(self.items_added or ())
            result["items_removed"] = len(self.items_removed or ())
        elif self.kind == ChangeKind.OBJECT_CHANGE:
            result["nested_changes"] = len(self.nested or ())
            result["changes"] = [d.to_dict() for d in self.nested or ()]
        return result


@dataclass
class ComparisonStatistics:
    total_fields: int
    total_differences: int
    added: int
    removed: int
    modified: int
    change_percentage: float
    average_significance: float
    significant_differences: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_fields": self.total_fields,
            "total_differences": self.total_differences,
            "added": self.added,
            "removed": self.removed,
            "modified": self.modified,
            "change_percentage": self.change_percentage,
            "average_significance": self.average_significance,
            "significant_differences": self.significant_differences,
        }


@dataclass
class ComparisonResult:
    """Outcome of comparing document A with document B."""

    comparison_id: str
    timestamp: datetime
    document_a: DocumentRef
    document_b: DocumentRef
    identical: bool
    differences: list[Difference]
    statistics: ComparisonStatistics
    summary: str

    def difference_for(self, field_name: str) -> Difference | None:
        """The top-level difference for a field, if it changed."""
        for diff in self.differences:
            if diff.field == field_name:
                return diff
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "comparison_id": self.comparison_id,
            "timestamp": format_ts(self.timestamp),
            "document_a": self.document_a.to_dict(),
            "document_b": self.document_b.to_dict(),
            "identical": self.identical,
            "differences": [d.to_dict() for d in self.differences],
            "statistics": self.statistics.to_dict(),
            "summary": self.summary,
        }


@dataclass
class PairComparison:
    pair: tuple[int, int]
    comparison: ComparisonResult

    def to_dict(self) -> dict[str, Any]:
        return {"pair": list(self.pair), "comparison": self.comparison.to_dict()}


@dataclass
class MultiComparison:
    """Pairwise comparisons across several documents.

    Attributes:
        document_count: Number of input documents
        comparisons: One comparison per unordered pair (i < j)
        common_differences: Fields that differ in every pair
        all_identical: Whether every pair is identical
    """

    document_count: int
    comparisons: list[PairComparison]
    common_differences: list[str]
    all_identical: bool

    @property
    def comparison_count(self) -> int:
        return len(self.comparisons)

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_count": self.document_count,
            "comparison_count": self.comparison_count,
            "comparisons": [c.to_dict() for c in self.comparisons],
            "common_differences": list(self.common_differences),
            "all_identical": self.all_identical,
        }


@dataclass
class VersionTransition:
    """Changes between two consecutive versions of an entry."""

    from_version: int | None
    to_version: int | None
    effective_from: datetime | None
    changes: list[Difference]
    statistics: ComparisonStatistics

    @property
    def change_count(self) -> int:
        return len(self.changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_version": self.from_version,
            "to_version": self.to_version,
            "effective_from": format_ts(self.effective_from),
            "changes": [d.to_dict() for d in self.changes],
            "change_count": self.change_count,
            "statistics": self.statistics.to_dict(),
        }


@dataclass
class VersionTimeline:
    """How an entry changed across its versions, oldest transition first."""

    document_id: str | None
    version_count: int
    timeline: list[VersionTransition] = field(default_factory=list)
    most_changed_fields: list[tuple[str, int]] = field(default_factory=list)

    @property
    def total_changes(self) -> int:
        return sum(t.change_count for t in self.timeline)

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "version_count": self.version_count,
            "timeline": [t.to_dict() for t in self.timeline],
            "total_changes": self.total_changes,
            "most_changed_fields": [
                {"field": name, "change_count": count}
                for name, count in self.most_changed_fields
            ],
        }


DEFAULT_IGNORE_FIELDS = ("extraction_id", "timestamp", "duration_ms")


class Comparator:
    """Diffs documents and versions; detects conflicts and overlaps.

    Example:
        >>> comparator = Comparator(ignore_fields=["scanned_at"])
        >>> timeline = comparator.compare_versions(entry)
        >>> timeline.most_changed_fields[:1]
        [('amount', 2)]
    """

    def __init__(
        self,
        ignore_fields: Iterable[str] = DEFAULT_IGNORE_FIELDS,
        deep_compare: bool = True,
        significance_threshold: float = 0.1,
        similarity_threshold: float = 0.9,
    ) -> None:
        """Initialize the comparator.

        Args:
            ignore_fields: Top-level data fields to skip
            deep_compare: Recurse into nested mappings
            significance_threshold: Minimum significance counted in
                statistics.significant_differences
            similarity_threshold: Default threshold for find_overlaps
        """
        self.ignore_fields = frozenset(ignore_fields)
        self.deep_compare = deep_compare
        self.significance_threshold = significance_threshold
        self.similarity_threshold = similarity_threshold

    @classmethod
    def from_settings(cls, settings: ComparatorSettings | None = None) -> Comparator:
        settings = settings or ComparatorSettings()
        return cls(
            ignore_fields=settings.ignore_fields,
            deep_compare=settings.deep_compare,
            significance_threshold=settings.significance_threshold,
            similarity_threshold=settings.similarity_threshold,
        )

    def compare(self, doc_a: Any, doc_b: Any) -> ComparisonResult:
        """Compare two documents field by field.

        Args:
            doc_a: Baseline document (entry, version, history record,
                entry-shaped mapping or bare data)
            doc_b: Document compared against the baseline

        Returns:
            ComparisonResult with classified differences and statistics
        """
        a = as_document(doc_a)
        b = as_document(doc_b)

        fields = [k for k in a.data if k not in self.ignore_fields]
        fields.extend(k for k in b.data if k not in a.data and k not in self.ignore_fields)

        differences: list[Difference] = []
        for name in fields:
            diff = self._compare_values(a.data.get(name, MISSING), b.data.get(name, MISSING), name, name)
            if diff is not None:
                differences.append(diff)

        stats = self._statistics(differences, len(fields))
        return ComparisonResult(
            comparison_id=str(uuid.uuid4()),
            timestamp=utcnow(),
            document_a=a.ref,
            document_b=b.ref,
            identical=not differences,
            differences=differences,
            statistics=stats,
            summary=_summarize(stats),
        )

    def compare_multiple(self, documents: Sequence[Any]) -> MultiComparison:
        """Compare every unordered pair of documents."""
        comparisons = [
            PairComparison((i, j), self.compare(documents[i], documents[j]))
            for i in range(len(documents))
            for j in range(i + 1, len(documents))
        ]

        common: list[str] = []
        if len(comparisons) >= 2:
            counts = Counter(
                diff.field for pc in comparisons for diff in pc.comparison.differences
            )
            common = [name for name, count in counts.items() if count == len(comparisons)]

        return MultiComparison(
            document_count=len(documents),
            comparisons=comparisons,
            common_differences=common,
            all_identical=all(pc.comparison.identical for pc in comparisons),
        )

    def compare_versions(self, entry: Entry | Mapping[str, Any]) -> VersionTimeline:
        """Diff every consecutive pair of an entry's versions.

        Args:
            entry: An Entry, or an entry-shaped mapping with history. Mapping
                versions only need "version" and "data".

        Returns:
            VersionTimeline with one transition per consecutive pair and the
            ten most frequently changed fields

        Raises:
            TypeError: If entry is neither an Entry nor an entry-shaped mapping
        """
        entry_id, versions = document_versions(entry)

        timeline: list[VersionTransition] = []
        for prev, curr in zip(versions, versions[1:]):
            comparison = self.compare(prev, curr)
            timeline.append(
                VersionTransition(
                    from_version=prev.ref.version,
                    to_version=curr.ref.version,
                    effective_from=curr.ref.effective_from,
                    changes=comparison.differences,
                    statistics=comparison.statistics,
                )
            )

        counts = Counter(diff.field for t in timeline for diff in t.changes)
        return VersionTimeline(
            document_id=entry_id,
            version_count=len(versions),
            timeline=timeline,
            most_changed_fields=counts.most_common(10),
        )

    def find_conflicts(
        self,
        documents: Iterable[Any],
        *,
        conflict_fields: Iterable[str] | None = None,
    ) -> ConflictReport:
        """See compare.conflicts.find_conflicts."""
        return find_conflicts(documents, conflict_fields=conflict_fields)

    def find_overlaps(
        self,
        documents: Iterable[Any],
        *,
        group_by_fields: Iterable[str] | None = None,
        similarity_threshold: float | None = None,
    ) -> OverlapReport:
        """See compare.conflicts.find_overlaps; threshold defaults to this comparator's."""
        threshold = self.similarity_threshold if similarity_threshold is None else similarity_threshold
        return find_overlaps(
            documents,
            group_by_fields=group_by_fields,
            similarity_threshold=threshold,
        )

    def _compare_values(self, value_a: Any, value_b: Any, name: str, path: str) -> Difference | None:
        if value_a is MISSING and value_b is MISSING:
            return None
        if value_a is MISSING:
            return Difference(name, path, ChangeKind.ADDED, None, value_b, significance(value_a, value_b))
        if value_b is MISSING:
            return Difference(name, path, ChangeKind.REMOVED, value_a, None, significance(value_a, value_b))
        if structurally_equal(value_a, value_b):
            return None

        diff = Difference(name, path, ChangeKind.MODIFIED, value_a, value_b, significance(value_a, value_b))

        if is_number(value_a) and is_number(value_b):
            diff.kind = ChangeKind.NUMERIC_CHANGE
            diff.delta = value_b - value_a
            diff.percent_change = (value_b - value_a) / value_a * 100 if value_a != 0 else None
        elif isinstance(value_a, str) and isinstance(value_b, str):
            diff.kind = ChangeKind.TEXT_CHANGE
            diff.length_change = len(value_b) - len(value_a)
        elif is_sequence(value_a) and is_sequence(value_b):
            diff.kind = ChangeKind.ARRAY_CHANGE
            diff.items_added = [item for item in value_b if not contains_structurally(value_a, item)]
            diff.items_removed = [item for item in value_a if not contains_structurally(value_b, item)]
        elif self.deep_compare and isinstance(value_a, Mapping) and isinstance(value_b, Mapping):
            diff.kind = ChangeKind.OBJECT_CHANGE
            keys = list(value_a) + [k for k in value_b if k not in value_a]
            diff.nested = []
            for key in keys:
                nested = self._compare_values(
                    value_a.get(key, MISSING), value_b.get(key, MISSING), key, f"{path}.{key}"
                )
                if nested is not None:
                    diff.nested.append(nested)

        return diff

    def _statistics(self, differences: list[Difference], total_fields: int) -> ComparisonStatistics:
        added = sum(1 for d in differences if d.kind == ChangeKind.ADDED)
        removed = sum(1 for d in differences if d.kind == ChangeKind.REMOVED)
        count = len(differences)
        return ComparisonStatistics(
            total_fields=total_fields,
            total_differences=count,
            added=added,
            removed=removed,
            modified=sum(1 for d in differences if not d.kind.is_presence_change),
            change_percentage=count / total_fields if total_fields else 0.0,
            average_significance=sum(d.significance for d in differences) / count if count else 0.0,
            significant_differences=sum(
                1 for d in differences if d.significance >= self.significance_threshold
            ),
        )


def _summarize(stats: ComparisonStatistics) -> str:
    if stats.total_differences == 0:
        return "Documents are identical"
    parts = []
    if stats.added:
        parts.append(f"{stats.added} field(s) added")
    if stats.removed:
        parts.append(f"{stats.removed} field(s) removed")
    if stats.modified:
        parts.append(f"{stats.modified} field(s) modified")
    return ", ".join(parts)
