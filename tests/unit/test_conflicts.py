"""
Unit tests for conflict and overlap detection.

Tests cover:
- Conflicts only between temporally overlapping, disagreeing documents
- Severity and ordering
- Duplicate grouping and similarity pairs
"""

import pytest

from docschema.docregister.compare.comparator import Comparator
from docschema.docregister.compare.conflicts import find_conflicts, find_overlaps, similarity


def doc(doc_id, data, effective_from=None, effective_to=None, version=1):
    """Entry-shaped mapping as produced by export()."""
    return {
        "id": doc_id,
        "version": version,
        "data": data,
        "effective_from": effective_from,
        "effective_to": effective_to,
    }


class TestFindConflicts:
    """Tests for find_conflicts."""

    def test_overlapping_disagreement_conflicts(self):
        """Different values over overlapping intervals are a conflict."""
        report = find_conflicts([
            doc("a", {"rate": 10}, "2024-01-01", "2024-06-01"),
            doc("b", {"rate": 12}, "2024-03-01"),
        ])

        assert report.has_conflicts
        (conflict,) = report.conflicts
        assert conflict.field == "rate"
        assert conflict.severity == pytest.approx(0.2)
        (period,) = conflict.overlapping_periods
        assert period.documents == ("a", "b")
        assert period.start.isoformat().startswith("2024-03-01")
        assert period.end.isoformat().startswith("2024-06-01")

    def test_sequential_values_do_not_conflict(self):
        """Different values over disjoint intervals are evolution, not conflict."""
        report = find_conflicts([
            doc("a", {"rate": 10}, "2024-01-01", "2024-06-01"),
            doc("b", {"rate": 12}, "2024-06-01"),
        ])

        assert not report.has_conflicts
        assert report.summary == "No conflicts detected"

    def test_agreeing_overlap_does_not_conflict(self):
        """Overlapping documents that agree are fine."""
        report = find_conflicts([
            doc("a", {"rate": 10}, "2024-01-01"),
            doc("b", {"rate": 10}, "2024-02-01"),
        ])

        assert not report.has_conflicts

    def test_only_disagreeing_pairs_must_overlap(self):
        """An overlap between agreeing documents does not make a conflict."""
        report = find_conflicts([
            doc("a", {"rate": 10}, "2024-01-01", "2024-03-01"),
            doc("b", {"rate": 10}, "2024-02-01", "2024-04-01"),
            doc("c", {"rate": 12}, "2024-05-01"),
        ])

        assert not report.has_conflicts

    def test_missing_effective_from_never_overlaps(self):
        """Documents without an interval cannot conflict."""
        report = find_conflicts([{"rate": 10}, {"rate": 12}])

        assert not report.has_conflicts

    def test_conflict_fields_filter(self):
        """Only the requested fields are checked."""
        report = find_conflicts(
            [
                doc("a", {"rate": 10, "name": "x"}, "2024-01-01"),
                doc("b", {"rate": 12, "name": "y"}, "2024-01-01"),
            ],
            conflict_fields=["name"],
        )

        assert [c.field for c in report.conflicts] == ["name"]

    def test_severity_saturates_and_orders(self):
        """Severity grows with involved documents, capped at 1.0."""
        documents = [doc(f"d{i}", {"rate": i}, "2024-01-01") for i in range(12)]
        documents.append(doc("x", {"other": 1}, "2024-01-01"))
        documents.append(doc("y", {"other": 2}, "2024-01-01"))

        report = find_conflicts(documents)

        assert [c.field for c in report.conflicts] == ["rate", "other"]
        assert report.conflicts[0].severity == 1.0
        assert report.conflicts[1].severity == pytest.approx(0.2)
        assert report.summary == "Found 2 conflict(s): 1 high severity"

    def test_recommendation(self):
        """Two values get a reconcile hint; more get a manual review hint."""
        two = find_conflicts([
            doc("a", {"rate": 1}, "2024-01-01"),
            doc("b", {"rate": 2}, "2024-01-01"),
        ])
        three = find_conflicts([
            doc("a", {"rate": 1}, "2024-01-01"),
            doc("b", {"rate": 2}, "2024-01-01"),
            doc("c", {"rate": 3}, "2024-01-01"),
        ])

        assert "two different values" in two.conflicts[0].recommendation
        assert "Manual review" in three.conflicts[0].recommendation

    def test_never_raises_on_odd_input(self):
        """Unparseable dates and unsupported objects give an empty report."""
        report = find_conflicts([doc("a", {"rate": 1}, "not-a-date"), 42])

        assert not report.has_conflicts


class TestFindOverlaps:
    """Tests for find_overlaps and similarity."""

    def test_similarity(self):
        """Similarity is matching fields over the union."""
        assert similarity({"a": 1, "b": 2}, {"a": 1, "b": 3}) == pytest.approx(0.5)
        assert similarity({"a": 1}, {"b": 1}) == 0.0
        assert similarity({}, {}) == 1.0

    def test_duplicate_groups(self):
        """Documents sharing the grouping values form a group."""
        report = find_overlaps(
            [
                doc("a", {"invoice": "INV-1", "vendor": "ACME", "amount": 1}),
                doc("b", {"invoice": "INV-1", "vendor": "ACME", "amount": 2}),
                doc("c", {"invoice": "INV-2", "vendor": "ACME", "amount": 3}),
                doc("d", {"vendor": "ACME"}),
            ],
            group_by_fields=["invoice", "vendor"],
        )

        (group,) = report.duplicate_groups
        assert group.values == ["INV-1", "ACME"]
        assert [d.id for d in group.documents] == ["a", "b"]
        assert group.count == 2

    def test_missing_grouping_field_not_grouped(self):
        """Documents lacking a grouping field are left out."""
        report = find_overlaps(
            [doc("a", {"vendor": "ACME"}), doc("b", {"vendor": "ACME"})],
            group_by_fields=["invoice"],
            similarity_threshold=1.0,
        )

        assert report.duplicate_groups == []

    def test_similar_pairs_strictly_above_threshold(self):
        """Pairs at exactly the threshold are not reported."""
        a = doc("a", {"x": 1, "y": 2})
        b = doc("b", {"x": 1, "y": 3})

        assert find_overlaps([a, b], similarity_threshold=0.5).similar_pairs == []
        (pair,) = find_overlaps([a, b], similarity_threshold=0.4).similar_pairs
        assert pair.similarity == pytest.approx(0.5)
        assert (pair.document_a.id, pair.document_b.id) == ("a", "b")

    def test_report_serialization(self):
        """The report lists groups and pairs as overlaps."""
        report = find_overlaps(
            [doc("a", {"x": 1}), doc("b", {"x": 1})],
            group_by_fields=["x"],
        )

        result = report.to_dict()
        assert result["overlap_count"] == 2
        assert {o["type"] for o in result["overlaps"]} == {"duplicate_group", "high_similarity"}
        assert result["summary"] == "Found 2 overlaps across 2 documents"

    def test_comparator_default_threshold(self):
        """Comparator.find_overlaps uses its configured threshold."""
        comparator = Comparator(similarity_threshold=0.4)

        report = comparator.find_overlaps([doc("a", {"x": 1, "y": 2}), doc("b", {"x": 1, "y": 3})])

        assert len(report.similar_pairs) == 1
