"""
Temporal lookup for versioned entries.

Every version of an entry carries a half-open validity interval
[effective_from, effective_to). effective_to = None means open-ended.

Resolution order for resolve(entry, as_of):
    1. The head version, if its interval contains as_of
    2. History records from most recently appended to oldest; the first
       whose interval contains as_of
    3. None: the entry was not in force at as_of (not an error)

Invariants:
    - Lookup never mutates the entry or its history
    - Intervals of different versions of one id may overlap when the caller
      supplied overlapping dates; the newest matching version wins
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from .types import Entry, EntryVersion, Timestamp, to_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Interval:
    """Half-open validity interval [start, end); end None = +infinity."""

    start: datetime
    end: datetime | None = None

    def contains(self, instant: datetime) -> bool:
        """Whether start <= instant < end."""
        return self.start <= instant and (self.end is None or instant < self.end)

    def overlaps(self, other: Interval) -> bool:
        """Whether the two half-open intervals share any instant.

        [f1, t1) and [f2, t2) overlap iff f1 < t2 and f2 < t1.
        """
        before_other_ends = other.end is None or self.start < other.end
        other_before_self_ends = self.end is None or other.start < self.end
        return before_other_ends and other_before_self_ends

    def intersection(self, other: Interval) -> Interval | None:
        """The shared part of two intervals, or None if disjoint."""
        if not self.overlaps(other):
            return None
        start = max(self.start, other.start)
        if self.end is None:
            end = other.end
        elif other.end is None:
            end = self.end
        else:
            end = min(self.end, other.end)
        return Interval(start, end)


class TemporalResolver:
    """Resolves which version of an entry was in force at a point in time.

    A linear scan bounded by the entry's version count; per-entry version
    counts are expected to stay small.

    Example:
        >>> resolver = TemporalResolver()
        >>> version = resolver.resolve(entry, "2024-03-01")
        >>> version.data if version else None
        {'amount': 100}
    """

    def resolve(self, entry: Entry, as_of: Timestamp) -> EntryVersion | None:
        """Return the version whose interval contains as_of, or None."""
        instant = to_utc(as_of)

        if Interval(entry.effective_from, entry.effective_to).contains(instant):
            return entry.head()

        for record in reversed(entry.history):
            if Interval(record.effective_from, record.effective_to).contains(instant):
                return EntryVersion.from_history(entry.id, record)

        logger.debug(
            "No version in force",
            extra={"entry_id": entry.id, "as_of": instant.isoformat()},
        )
        return None
