"""
Unit tests for the audit log.

Tests cover:
- Append ordering and immutability of recorded details
- Filtering by document, action and time
- Bounded logs trimming the oldest entries
"""

from datetime import datetime, timedelta, timezone

import pytest

from docschema.docregister.register.audit import AuditAction, AuditLog, AuditLogEntry


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestAuditLog:
    """Tests for AuditLog."""

    @pytest.fixture
    def log(self):
        """Log with four entries one hour apart."""
        log = AuditLog()
        log.append(AuditAction.ADD, "a", {"version": 1}, timestamp=T0)
        log.append(AuditAction.ADD, "b", {"version": 1}, timestamp=T0 + timedelta(hours=1))
        log.append(AuditAction.UPDATE, "a", {"new_version": 2}, timestamp=T0 + timedelta(hours=2))
        log.append(AuditAction.ARCHIVE, "a", {"reason": "done"}, timestamp=T0 + timedelta(hours=3))
        return log

    def test_insertion_order(self, log):
        """Entries come back in the order they were appended."""
        assert [e.action for e in log.query()] == [
            AuditAction.ADD,
            AuditAction.ADD,
            AuditAction.UPDATE,
            AuditAction.ARCHIVE,
        ]

    def test_filter_by_document(self, log):
        """document_id narrows to one document."""
        assert len(log.query(document_id="a")) == 3

    def test_filter_by_action_string(self, log):
        """Actions may be given as strings."""
        entries = log.query(action="UPDATE")

        assert len(entries) == 1
        assert entries[0].details == {"new_version": 2}

    def test_since_inclusive_until_exclusive(self, log):
        """since is inclusive, until is exclusive."""
        entries = log.query(since=T0 + timedelta(hours=1), until=T0 + timedelta(hours=3))

        assert [e.document_id for e in entries] == ["b", "a"]

    def test_limit_keeps_newest(self, log):
        """limit returns the newest matches."""
        entries = log.query(limit=2)

        assert [e.action for e in entries] == [AuditAction.UPDATE, AuditAction.ARCHIVE]

    def test_details_are_copied(self):
        """Mutating the caller's dict does not change the log."""
        log = AuditLog()
        details = {"tags": ["x"]}
        log.append(AuditAction.ADD, "a", details)
        details["tags"].append("y")

        assert log.query()[0].details == {"tags": ["x"]}

    def test_bounded_log_drops_oldest(self):
        """A bounded log keeps only the newest entries and counts drops."""
        log = AuditLog(max_entries=3)
        for i in range(5):
            log.append(AuditAction.ADD, f"doc-{i}")

        assert len(log) == 3
        assert log.dropped == 2
        assert [e.document_id for e in log.query()] == ["doc-2", "doc-3", "doc-4"]

    def test_rejects_non_positive_bound(self):
        """max_entries must be positive."""
        with pytest.raises(ValueError):
            AuditLog(max_entries=0)

    def test_serialization_round_trip(self, log):
        """Entries survive to_dict/from_dict."""
        restored = [AuditLogEntry.from_dict(d) for d in log.to_list()]

        assert restored == log.query()

    def test_extend(self, log):
        """extend() appends existing entries, preserving timestamps."""
        other = AuditLog()
        other.extend(log.query())

        assert other.query() == log.query()
