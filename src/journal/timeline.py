"""Historical field state reconstructed from the change journal.

A ``FieldTimeline`` is the ordered, contiguous list of half-open
``[valid_from, valid_to)`` intervals a single record field went through.
The first interval opens at the record's creation time with the
creation-time value; the last one is open-ended and holds the current value.
Timelines are built on demand and never persisted.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable

from journal.repository import Journal, JournalEvent, serialize_value, sort_events
from records.store import RecordSnapshot, RecordStore
from time_utils import to_utc, utc_now

ValuePredicate = Callable[[str | None], bool]


@dataclass(frozen=True)
class TimelineInterval:
    """A value held by a field between two instants."""

    value: str | None
    valid_from: datetime
    valid_to: datetime | None = None

    def contains(self, timestamp: datetime) -> bool:
        """Return True if the instant falls inside this half-open interval."""
        if timestamp < self.valid_from:
            return False
        return self.valid_to is None or timestamp < self.valid_to


@dataclass(frozen=True)
class FieldTimeline:
    """Reconstructed value history for one (record, field) pair."""

    record_id: int
    field_name: str
    intervals: tuple[TimelineInterval, ...]
    _starts: tuple[datetime, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "_starts", tuple(interval.valid_from for interval in self.intervals)
        )

    @property
    def created_at(self) -> datetime:
        return self.intervals[0].valid_from

    @property
    def creation_value(self) -> str | None:
        return self.intervals[0].value

    @property
    def current_value(self) -> str | None:
        return self.intervals[-1].value

    def value_at(self, timestamp: datetime) -> str | None:
        """Return the value held at an instant, or None before creation."""
        instant = to_utc(timestamp)
        index = bisect_right(self._starts, instant) - 1
        if index < 0:
            return None
        return self.intervals[index].value

    def intervals_where(self, predicate: ValuePredicate) -> list[tuple[datetime, datetime | None]]:
        """Return ordered spans during which the value satisfied the predicate.

        Adjacent matching intervals are merged into one span.
        """
        spans: list[tuple[datetime, datetime | None]] = []
        for interval in self.intervals:
            if not predicate(interval.value):
                continue
            if spans and spans[-1][1] == interval.valid_from:
                spans[-1] = (spans[-1][0], interval.valid_to)
            else:
                spans.append((interval.valid_from, interval.valid_to))
        return spans

    def values(self) -> set[str | None]:
        """Return every value the field has ever held."""
        return {interval.value for interval in self.intervals}


def build_timeline(
    record_id: int,
    field_name: str,
    events: Iterable[JournalEvent],
    created_at: datetime,
    current_value: object,
) -> FieldTimeline:
    """Fold a record's change events for one field into a timeline.

    ``events`` may contain other fields; they are skipped. The creation-time
    value is the first event's ``old_value``, or the current stored value when
    the field was never changed. Events stamped before ``created_at`` are
    clamped to it, and several events at one instant collapse so the last one
    appended wins.
    """
    field_events = sort_events(event for event in events if event.field_name == field_name)
    start = to_utc(created_at)
    value = field_events[0].old_value if field_events else serialize_value(current_value)

    intervals: list[TimelineInterval] = []
    for event in field_events:
        at = max(event.occurred_at, start)
        if at > start:
            intervals.append(TimelineInterval(value=value, valid_from=start, valid_to=at))
            start = at
        value = event.new_value
    intervals.append(TimelineInterval(value=value, valid_from=start))
    return FieldTimeline(record_id=record_id, field_name=field_name, intervals=tuple(intervals))


def timeline_from_snapshot(
    snapshot: RecordSnapshot,
    field_name: str,
    events: Iterable[JournalEvent],
) -> FieldTimeline:
    """Build a timeline from an already-loaded record snapshot and its events."""
    return build_timeline(
        snapshot.record_id,
        field_name,
        events,
        snapshot.created_at,
        snapshot.get(field_name),
    )


class TimelineService:
    """Point-in-time and interval queries against the journal."""

    def __init__(self, journal: Journal, record_store: RecordStore) -> None:
        """Initialize the service with its journal and record store collaborators."""
        self._journal = journal
        self._record_store = record_store

    def timeline(self, record_id: int, field_name: str) -> FieldTimeline:
        """Reconstruct the full timeline of a record field."""
        created_at = self._record_store.get_field(record_id, "created_at")
        current_value = self._record_store.get_field(record_id, field_name)
        events = self._journal.events_for(record_id, field_name)
        return build_timeline(record_id, field_name, events, created_at, current_value)

    def value_at(
        self,
        record_id: int,
        field_name: str,
        timestamp: datetime | None = None,
    ) -> str | None:
        """Return the field value at ``timestamp`` (now when omitted)."""
        return self.timeline(record_id, field_name).value_at(timestamp or utc_now())

    def intervals_where(
        self,
        record_id: int,
        field_name: str,
        predicate: ValuePredicate,
    ) -> list[tuple[datetime, datetime | None]]:
        """Return the spans during which the field value satisfied ``predicate``."""
        return self.timeline(record_id, field_name).intervals_where(predicate)
