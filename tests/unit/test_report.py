"""
Unit tests for diff report rendering.
"""

import json

import pytest

from docschema.docregister.compare.comparator import Comparator
from docschema.docregister.compare.report import generate_diff_report


@pytest.fixture
def comparison():
    """Comparison with one change of each presence kind."""
    return Comparator().compare(
        {"id": "a", "version": 1, "data": {"amount": 100, "old": "x", "note": "<b>"}},
        {"id": "b", "version": 2, "data": {"amount": 150, "new": [1], "note": "<i>"}},
    )


class TestGenerateDiffReport:
    """Tests for generate_diff_report."""

    def test_text_report(self, comparison):
        """The text report lists each difference and the statistics."""
        report = generate_diff_report(comparison)

        assert report.startswith("Document Comparison Report")
        assert "Document A: a (v1)" in report
        assert "Document B: b (v2)" in report
        assert "Result: 4 difference(s) found" in report
        assert "Field: amount" in report
        assert "  Before: 100" in report
        assert "  After:  150" in report
        assert "  Removed: x" in report
        assert "  Significance: 50%" in report
        assert "Fields added: 1" in report

    def test_identical_report(self):
        """Identical documents get a one-line result."""
        comparison = Comparator().compare({"a": 1}, {"a": 1})

        report = generate_diff_report(comparison, "text")

        assert "Result: Documents are IDENTICAL" in report
        assert "--- Statistics ---" not in report

    def test_json_report(self, comparison):
        """The JSON report is the serialized comparison."""
        report = json.loads(generate_diff_report(comparison, "json"))

        assert report["comparison_id"] == comparison.comparison_id
        assert report["statistics"]["total_differences"] == 4

    def test_html_report_escapes(self, comparison):
        """HTML output is preformatted and escaped."""
        report = generate_diff_report(comparison, "html")

        assert report.startswith("<pre>")
        assert report.endswith("</pre>")
        assert "&lt;b&gt;" in report
        assert "<b>" not in report

    def test_unknown_format(self, comparison):
        """Unsupported formats raise ValueError."""
        with pytest.raises(ValueError):
            generate_diff_report(comparison, "pdf")
