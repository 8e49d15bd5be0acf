"""
Unit tests for temporal resolution.

Tests cover:
- Half-open interval containment and overlap
- Resolution order (head, then history newest first)
- Lookups before creation and after the last interval closes
"""

import pytest

from docschema.docregister.register.temporal import Interval, TemporalResolver
from docschema.docregister.register.types import (
    Entry,
    EntryMetadata,
    ExtractedRecord,
    HistoryRecord,
    to_utc,
)


def ts(value):
    return to_utc(value)


class TestInterval:
    """Tests for Interval."""

    def test_contains_is_half_open(self):
        """Start is included, end is excluded."""
        interval = Interval(ts("2024-01-01"), ts("2024-02-01"))

        assert interval.contains(ts("2024-01-01"))
        assert interval.contains(ts("2024-01-31T23:59:59"))
        assert not interval.contains(ts("2024-02-01"))
        assert not interval.contains(ts("2023-12-31"))

    def test_open_end(self):
        """A missing end extends to infinity."""
        assert Interval(ts("2024-01-01")).contains(ts("2999-01-01"))

    def test_touching_intervals_do_not_overlap(self):
        """[a, b) and [b, c) share no instant."""
        first = Interval(ts("2024-01-01"), ts("2024-02-01"))
        second = Interval(ts("2024-02-01"), ts("2024-03-01"))

        assert not first.overlaps(second)
        assert not second.overlaps(first)

    def test_overlap_with_open_end(self):
        """Open-ended intervals overlap anything starting after them."""
        open_ended = Interval(ts("2024-01-01"))
        later = Interval(ts("2030-01-01"), ts("2031-01-01"))

        assert open_ended.overlaps(later)
        assert later.overlaps(open_ended)

    def test_intersection(self):
        """Intersection is the shared span, or None."""
        a = Interval(ts("2024-01-01"), ts("2024-03-01"))
        b = Interval(ts("2024-02-01"))

        assert a.intersection(b) == Interval(ts("2024-02-01"), ts("2024-03-01"))
        assert a.intersection(Interval(ts("2025-01-01"))) is None


class TestTemporalResolver:
    """Tests for TemporalResolver."""

    @pytest.fixture
    def entry(self):
        """Entry with v1 [Jan, Jun) in history and v2 [Jun, Dec) as head."""
        entry = Entry.create(
            "contract-1",
            ExtractedRecord(data={"rate": 10}),
            effective_from="2024-06-01",
            effective_to="2024-12-01",
        )
        entry.version = 2
        entry.data = {"rate": 12}
        entry.history.append(
            HistoryRecord(
                version=1,
                data={"rate": 10},
                metadata=EntryMetadata(),
                effective_from=ts("2024-01-01"),
                effective_to=ts("2024-06-01"),
                archived_at=ts("2024-06-01"),
            )
        )
        return entry

    @pytest.fixture
    def resolver(self):
        return TemporalResolver()

    def test_resolves_head(self, resolver, entry):
        """A time inside the head interval returns the head."""
        version = resolver.resolve(entry, "2024-07-15")

        assert version.version == 2
        assert version.is_historic is False

    def test_resolves_history(self, resolver, entry):
        """A time inside a historic interval returns that version."""
        version = resolver.resolve(entry, "2024-03-01")

        assert version.version == 1
        assert version.data == {"rate": 10}
        assert version.is_historic is True

    def test_boundary_belongs_to_later_version(self, resolver, entry):
        """The supersede instant belongs to the new version."""
        assert resolver.resolve(entry, "2024-06-01").version == 2

    def test_before_creation(self, resolver, entry):
        """Before the first interval, nothing was in force."""
        assert resolver.resolve(entry, "2023-06-01") is None

    def test_after_close(self, resolver, entry):
        """After the head interval closes, nothing is in force."""
        assert resolver.resolve(entry, "2025-01-01") is None

    def test_newest_history_wins_on_overlap(self, resolver, entry):
        """Overlapping historic intervals resolve to the newest record."""
        entry.history.append(
            HistoryRecord(
                version=99,
                data={"rate": 11},
                metadata=EntryMetadata(),
                effective_from=ts("2024-02-01"),
                effective_to=ts("2024-04-01"),
                archived_at=ts("2024-04-01"),
            )
        )

        assert resolver.resolve(entry, "2024-03-01").version == 99

    def test_does_not_mutate(self, resolver, entry):
        """Resolution leaves the entry's history untouched."""
        before = list(entry.history)

        resolver.resolve(entry, "2024-03-01")
        resolver.resolve(entry, "2023-01-01")

        assert entry.history == before
