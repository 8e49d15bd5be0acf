"""
Conflict and overlap detection across many documents.

A field is in conflict only when two documents hold different values for
it AND their validity intervals overlap. Different values over disjoint
intervals are ordinary temporal evolution, not a conflict.

Interval overlap uses the half-open rule: [f1, t1) and [f2, t2) overlap
iff f1 < t2 and f2 < t1, with an open end treated as +infinity. A
document without effective_from has no interval and overlaps nothing.

Overlaps are of two kinds:
    - duplicate groups: documents sharing the same values for the
      group_by fields
    - similar pairs: documents whose field-level similarity
      (matching fields / union of fields) exceeds a threshold

Invariants:
    - Detection never raises; an empty report is a valid outcome
    - Severity grows with the number of distinct documents involved and
      saturates at 1.0 for 10 or more
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..register.temporal import Interval
from ..register.types import format_ts
from .documents import Document, DocumentRef, as_document
from .values import MISSING, freeze, get_path, structurally_equal

logger = logging.getLogger(__name__)

HIGH_SEVERITY = 0.7


@dataclass(frozen=True)
class FieldObservation:
    """One document's value for a field."""

    document_id: str | None
    version: int | None
    value: Any
    effective_from: datetime | None
    effective_to: datetime | None
    index: int

    @property
    def document_key(self) -> str:
        return self.document_id if self.document_id is not None else f"#{self.index}"

    @property
    def interval(self) -> Interval | None:
        if self.effective_from is None:
            return None
        return Interval(self.effective_from, self.effective_to)

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "version": self.version,
            "value": self.value,
            "effective_from": format_ts(self.effective_from),
            "effective_to": format_ts(self.effective_to),
        }


@dataclass(frozen=True)
class OverlapPeriod:
    """Shared validity of two documents that disagree on a field."""

    documents: tuple[str | None, str | None]
    start: datetime
    end: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "documents": list(self.documents),
            "overlap_start": format_ts(self.start),
            "overlap_end": format_ts(self.end),
        }


@dataclass
class Conflict:
    field: str
    severity: float
    observations: list[FieldObservation]
    overlapping_periods: list[OverlapPeriod]
    recommendation: str
    type: str = "value_conflict"

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "type": self.type,
            "severity": self.severity,
            "documents": [o.to_dict() for o in self.observations],
            "overlapping_periods": [p.to_dict() for p in self.overlapping_periods],
            "recommendation": self.recommendation,
        }


@dataclass
class ConflictReport:
    """Conflicts sorted by severity, highest first."""

    conflicts: list[Conflict] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    @property
    def conflict_count(self) -> int:
        return len(self.conflicts)

    @property
    def summary(self) -> str:
        if not self.conflicts:
            return "No conflicts detected"
        high = sum(1 for c in self.conflicts if c.severity > HIGH_SEVERITY)
        return f"Found {len(self.conflicts)} conflict(s): {high} high severity"

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_conflicts": self.has_conflicts,
            "conflict_count": self.conflict_count,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "summary": self.summary,
        }


@dataclass
class DuplicateGroup:
    """Documents that share the same values for the grouping fields."""

    fields: list[str]
    values: list[Any]
    documents: list[DocumentRef]

    @property
    def count(self) -> int:
        return len(self.documents)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "duplicate_group",
            "fields": list(self.fields),
            "values": list(self.values),
            "documents": [{"id": d.id, "version": d.version} for d in self.documents],
            "count": self.count,
        }


@dataclass
class SimilarPair:
    similarity: float
    document_a: DocumentRef
    document_b: DocumentRef

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "high_similarity",
            "similarity": self.similarity,
            "document_a": {"id": self.document_a.id, "version": self.document_a.version},
            "document_b": {"id": self.document_b.id, "version": self.document_b.version},
        }


@dataclass
class OverlapReport:
    document_count: int
    duplicate_groups: list[DuplicateGroup] = field(default_factory=list)
    similar_pairs: list[SimilarPair] = field(default_factory=list)

    @property
    def overlap_count(self) -> int:
        return len(self.duplicate_groups) + len(self.similar_pairs)

    @property
    def has_overlaps(self) -> bool:
        return self.overlap_count > 0

    @property
    def summary(self) -> str:
        return f"Found {self.overlap_count} overlaps across {self.document_count} documents"

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_overlaps": self.has_overlaps,
            "overlap_count": self.overlap_count,
            "overlaps": [g.to_dict() for g in self.duplicate_groups]
            + [p.to_dict() for p in self.similar_pairs],
            "summary": self.summary,
        }


def similarity(data_a: Mapping[str, Any], data_b: Mapping[str, Any]) -> float:
    """Fraction of the union of fields on which two records agree.

    Two empty records are fully similar (1.0).
    """
    keys = set(data_a) | set(data_b)
    if not keys:
        return 1.0
    matching = sum(
        1 for k in keys
        if k in data_a and k in data_b and structurally_equal(data_a[k], data_b[k])
    )
    return matching / len(keys)


def find_conflicts(
    documents: Iterable[Any],
    *,
    conflict_fields: Iterable[str] | None = None,
) -> ConflictReport:
    """Find fields on which temporally overlapping documents disagree.

    Args:
        documents: Entries, versions or entry-shaped mappings
        conflict_fields: Only check these fields (default: every field)

    Returns:
        ConflictReport; empty when nothing conflicts
    """
    wanted = set(conflict_fields) if conflict_fields is not None else None

    by_field: dict[str, list[FieldObservation]] = {}
    for index, doc in enumerate(_documents(documents)):
        for name, value in doc.data.items():
            if wanted is not None and name not in wanted:
                continue
            by_field.setdefault(name, []).append(
                FieldObservation(
                    document_id=doc.ref.id,
                    version=doc.ref.version,
                    value=value,
                    effective_from=doc.ref.effective_from,
                    effective_to=doc.ref.effective_to,
                    index=index,
                )
            )

    conflicts: list[Conflict] = []
    for name, observations in by_field.items():
        distinct_values = {freeze(o.value) for o in observations}
        if len(distinct_values) < 2:
            continue

        periods = _disagreeing_overlaps(observations)
        if not periods:
            continue

        involved = {o.document_key for o in observations}
        conflicts.append(
            Conflict(
                field=name,
                severity=min(len(involved) / 10, 1.0),
                observations=observations,
                overlapping_periods=periods,
                recommendation=_recommendation(name, len(distinct_values)),
            )
        )

    conflicts.sort(key=lambda c: c.severity, reverse=True)
    if conflicts:
        logger.info(
            "Conflicts detected",
            extra={"conflict_count": len(conflicts), "fields": [c.field for c in conflicts]},
        )
    return ConflictReport(conflicts=conflicts)


def find_overlaps(
    documents: Iterable[Any],
    *,
    group_by_fields: Iterable[str] | None = None,
    similarity_threshold: float = 0.9,
) -> OverlapReport:
    """Find duplicate groups and highly similar document pairs.

    Args:
        documents: Entries, versions, entry-shaped mappings or bare data
        group_by_fields: Group documents by the values of these fields;
            documents missing any of them are not grouped
        similarity_threshold: Report pairs whose similarity is strictly
            greater than this

    Returns:
        OverlapReport; empty when nothing overlaps
    """
    docs = _documents(documents)
    group_fields = list(group_by_fields or ())
    report = OverlapReport(document_count=len(docs))

    if group_fields:
        groups: dict[Any, tuple[list[Any], list[DocumentRef]]] = {}
        for doc in docs:
            values = [get_path(doc.data, name) for name in group_fields]
            if any(v is MISSING for v in values):
                continue
            key = freeze(values)
            groups.setdefault(key, (values, []))[1].append(doc.ref)

        for values, refs in groups.values():
            if len(refs) > 1:
                report.duplicate_groups.append(
                    DuplicateGroup(fields=group_fields, values=values, documents=refs)
                )

    for i in range(len(docs)):
        for j in range(i + 1, len(docs)):
            score = similarity(docs[i].data, docs[j].data)
            if score > similarity_threshold:
                report.similar_pairs.append(SimilarPair(score, docs[i].ref, docs[j].ref))

    return report


def _documents(documents: Iterable[Any]) -> list[Document]:
    result = []
    for doc in documents:
        try:
            result.append(as_document(doc))
        except TypeError:
            logger.warning("Skipping unsupported document", extra={"type": type(doc).__name__})
    return result


def _disagreeing_overlaps(observations: list[FieldObservation]) -> list[OverlapPeriod]:
    """Overlapping intervals between observations that hold different values."""
    periods: list[OverlapPeriod] = []
    for i, a in enumerate(observations):
        if a.effective_from is None:
            continue
        for b in observations[i + 1:]:
            if structurally_equal(a.value, b.value):
                continue
            if b.effective_from is None:
                continue
            shared = a.interval.intersection(b.interval)
            if shared is not None:
                periods.append(OverlapPeriod((a.document_id, b.document_id), shared.start, shared.end))
    return periods


def _recommendation(name: str, distinct_count: int) -> str:
    if distinct_count == 2:
        return f'Review and reconcile the two different values for "{name}"'
    return (
        f'Multiple conflicting values found for "{name}". '
        "Manual review required to determine authoritative value."
    )
