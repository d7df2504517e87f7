"""Journal-derived, acting-user-relative date attributes.

Each calculator is a pure function of one record's history and the acting
user id. It returns the set of local calendar dates on which the attribute
held; an empty set means the attribute never applied to that user.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Callable

from journal.repository import JournalEvent
from journal.timeline import FieldTimeline, timeline_from_snapshot
from records.store import RecordSnapshot
from time_utils import local_date


@dataclass(frozen=True)
class RecordHistory:
    """A record's stored state together with its ordered journal."""

    snapshot: RecordSnapshot
    events: tuple[JournalEvent, ...]
    _timelines: dict[str, FieldTimeline] = field(default_factory=dict, compare=False, repr=False)

    @property
    def record_id(self) -> int:
        return self.snapshot.record_id

    def timeline(self, field_name: str) -> FieldTimeline:
        """Return the (memoized) timeline of one field."""
        timeline = self._timelines.get(field_name)
        if timeline is None:
            timeline = timeline_from_snapshot(self.snapshot, field_name, self.events)
            self._timelines[field_name] = timeline
        return timeline

    def field_events(self, field_name: str) -> list[JournalEvent]:
        return [event for event in self.events if event.field_name == field_name]


DateCalculator = Callable[[RecordHistory, int, str], set[date]]


def _is_user(value: str | None, user_id: int) -> bool:
    return value is not None and value == str(user_id)


def created_by_me_on(history: RecordHistory, user_id: int, assignee_field: str) -> set[date]:
    """Creation date when the acting user authored the record."""
    if history.snapshot.author_id != user_id:
        return set()
    return {local_date(history.snapshot.created_at)}


def updated_by_me_on(history: RecordHistory, user_id: int, assignee_field: str) -> set[date]:
    """Dates of journal events authored by the acting user."""
    return {
        local_date(event.occurred_at) for event in history.events if event.actor_id == user_id
    }


def assigned_to_me_on(history: RecordHistory, user_id: int, assignee_field: str) -> set[date]:
    """Dates on which the assignee became the acting user, creation included."""
    dates: set[date] = set()
    timeline = history.timeline(assignee_field)
    if _is_user(timeline.creation_value, user_id):
        dates.add(local_date(timeline.created_at))
    for event in history.field_events(assignee_field):
        if _is_user(event.new_value, user_id) and not _is_user(event.old_value, user_id):
            dates.add(local_date(event.occurred_at))
    return dates


def unassigned_from_me_on(history: RecordHistory, user_id: int, assignee_field: str) -> set[date]:
    """Dates on which the assignee changed away from the acting user."""
    return {
        local_date(event.occurred_at)
        for event in history.field_events(assignee_field)
        if _is_user(event.old_value, user_id) and not _is_user(event.new_value, user_id)
    }


def updated_when_i_was_assignee_on(
    history: RecordHistory,
    user_id: int,
    assignee_field: str,
) -> set[date]:
    """Dates of any event at whose instant the acting user was the assignee."""
    timeline = history.timeline(assignee_field)
    return {
        local_date(event.occurred_at)
        for event in history.events
        if _is_user(timeline.value_at(event.occurred_at), user_id)
    }


def updated_after_i_was_assignee_on(
    history: RecordHistory,
    user_id: int,
    assignee_field: str,
) -> set[date]:
    """Dates of events that follow the end of an assignment to the acting user.

    The event must fall strictly after a closed assignee span of the user and
    at an instant where the user is no longer the assignee.
    """
    timeline = history.timeline(assignee_field)
    span_ends = [
        valid_to
        for _, valid_to in timeline.intervals_where(lambda value: _is_user(value, user_id))
        if valid_to is not None
    ]
    if not span_ends:
        return set()
    first_end = min(span_ends)
    return {
        local_date(event.occurred_at)
        for event in history.events
        if event.occurred_at > first_end
        and not _is_user(timeline.value_at(event.occurred_at), user_id)
    }


DATE_CALCULATORS: dict[str, DateCalculator] = {
    "created_by_me_on": created_by_me_on,
    "updated_by_me_on": updated_by_me_on,
    "assigned_to_me_on": assigned_to_me_on,
    "unassigned_from_me_on": unassigned_from_me_on,
    "updated_when_i_was_assignee_on": updated_when_i_was_assignee_on,
    "updated_after_i_was_assignee_on": updated_after_i_was_assignee_on,
}
