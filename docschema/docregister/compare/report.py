"""
Human-readable diff reports for comparison results.
"""

from __future__ import annotations

import html
import json
from collections.abc import Mapping
from enum import Enum
from typing import Any

from .comparator import ChangeKind, ComparisonResult
from .values import is_sequence


class ReportFormat(str, Enum):
    TEXT = "text"
    JSON = "json"
    HTML = "html"


def generate_diff_report(comparison: ComparisonResult, format: ReportFormat | str = ReportFormat.TEXT) -> str:
    """Render a comparison as text, JSON or HTML.

    Args:
        comparison: Result of Comparator.compare
        format: "text", "json" or "html"

    Returns:
        The rendered report

    Raises:
        ValueError: If the format is not supported
    """
    report_format = ReportFormat(format)

    if report_format == ReportFormat.JSON:
        return json.dumps(comparison.to_dict(), indent=2, default=str)

    text = "\n".join(_text_lines(comparison))
    if report_format == ReportFormat.HTML:
        return f"<pre>{html.escape(text, quote=False)}</pre>"
    return text


def _text_lines(comparison: ComparisonResult) -> list[str]:
    a = comparison.document_a
    b = comparison.document_b
    lines = [
        "Document Comparison Report",
        f"Generated: {comparison.timestamp.isoformat()}",
        f"Comparison ID: {comparison.comparison_id}",
        "",
        f"Document A: {a.id} (v{a.version})",
        f"Document B: {b.id} (v{b.version})",
        "",
    ]

    if comparison.identical:
        lines.append("Result: Documents are IDENTICAL")
        return lines

    lines.append(f"Result: {len(comparison.differences)} difference(s) found")
    lines.append("")
    lines.append("--- Differences ---")

    for diff in comparison.differences:
        lines.append("")
        lines.append(f"Field: {diff.path}")
        lines.append(f"  Type: {diff.kind.value}")
        if diff.kind == ChangeKind.ADDED:
            lines.append(f"  Added:  {_format_value(diff.value_b)}")
        elif diff.kind == ChangeKind.REMOVED:
            lines.append(f"  Removed: {_format_value(diff.value_a)}")
        else:
            lines.append(f"  Before: {_format_value(diff.value_a)}")
            lines.append(f"  After:  {_format_value(diff.value_b)}")
        if diff.significance:
            lines.append(f"  Significance: {diff.significance * 100:.0f}%")

    stats = comparison.statistics
    lines.extend([
        "",
        "--- Statistics ---",
        f"Total fields compared: {stats.total_fields}",
        f"Fields added: {stats.added}",
        f"Fields removed: {stats.removed}",
        f"Fields modified: {stats.modified}",
        f"Change percentage: {stats.change_percentage * 100:.1f}%",
    ])
    return lines


def _format_value(value: Any) -> str:
    if value is None:
        return "(null)"
    if isinstance(value, Mapping) or is_sequence(value):
        return json.dumps(value, indent=2, default=str)
    return str(value)
