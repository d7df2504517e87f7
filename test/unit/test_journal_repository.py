"""Unit tests for record updates and the change journal."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from journal.repository import ChangeEventCreateInput, JournalRepository
from records.repository import (
    RecordCreateInput,
    RecordNotFoundError,
    RecordRepository,
    RecordUpdateInput,
)
from records.store import SqlRecordStore, StoredCondition

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def test_update_journals_each_changed_field(scenario, sqlite_session_factory) -> None:
    """Each differing field yields one event stamped with the update instant."""
    alice = scenario.user("alice")
    bob = scenario.user("bob")
    record_id = scenario.record("Login fails", alice, created_at=T0)

    scenario.update(
        record_id,
        alice,
        T0 + timedelta(hours=1),
        status="in_progress",
        assigned_to_id=bob,
        subject="Login fails",
    )

    events = JournalRepository(sqlite_session_factory).events_for(record_id)
    assert {(e.field_name, e.old_value, e.new_value) for e in events} == {
        ("status", "new", "in_progress"),
        ("assigned_to_id", None, str(bob)),
    }
    assert all(e.occurred_at == T0 + timedelta(hours=1) for e in events)
    assert all(e.actor_id == alice for e in events)


def test_notes_are_journaled_without_field_changes(scenario, sqlite_session_factory) -> None:
    """A notes-only update is still a journal event by the actor."""
    alice = scenario.user("alice")
    bob = scenario.user("bob")
    record_id = scenario.record("Crash", alice, created_at=T0)

    scenario.update(record_id, bob, T0 + timedelta(days=1), notes="Reproduced.")

    events = JournalRepository(sqlite_session_factory).events_for(record_id)
    assert [(e.field_name, e.actor_id, e.new_value) for e in events] == [
        ("notes", bob, "Reproduced."),
    ]
    store = SqlRecordStore(sqlite_session_factory)
    assert store.get_field(record_id, "updated_at") == T0 + timedelta(days=1)


def test_noop_update_leaves_journal_untouched(scenario, sqlite_session_factory) -> None:
    """Setting a field to its current value appends nothing."""
    alice = scenario.user("alice")
    record_id = scenario.record("Crash", alice, created_at=T0)

    scenario.update(record_id, alice, T0 + timedelta(hours=2), status="new")

    journal = JournalRepository(sqlite_session_factory)
    assert journal.events_for(record_id) == []
    assert SqlRecordStore(sqlite_session_factory).get_field(record_id, "updated_at") == T0


def test_unknown_field_is_rejected(scenario, sqlite_session_factory) -> None:
    """Fields outside the journaled set cannot be updated."""
    alice = scenario.user("alice")
    record_id = scenario.record("Crash", alice, created_at=T0)
    repo = RecordRepository(sqlite_session_factory)

    with pytest.raises(ValueError, match="Unknown record fields: priority"):
        repo.update(record_id, RecordUpdateInput(actor_id=alice, changes={"priority": "high"}))


def test_update_missing_record_raises(scenario, sqlite_session_factory) -> None:
    """Updating an unknown record raises RecordNotFoundError."""
    alice = scenario.user("alice")
    repo = RecordRepository(sqlite_session_factory)

    with pytest.raises(RecordNotFoundError):
        repo.update(999, RecordUpdateInput(actor_id=alice, changes={"status": "closed"}))


def test_events_are_ordered_by_time_then_append_order(scenario, sqlite_session_factory) -> None:
    """Events appended out of order are read back chronologically."""
    alice = scenario.user("alice")
    record_id = scenario.record("Crash", alice, created_at=T0)
    journal = JournalRepository(sqlite_session_factory)

    late = journal.append(
        ChangeEventCreateInput(
            record_id=record_id,
            actor_id=alice,
            field_name="status",
            old_value="new",
            new_value="closed",
            occurred_at=T0 + timedelta(hours=5),
        )
    )
    early = journal.append(
        ChangeEventCreateInput(
            record_id=record_id,
            actor_id=alice,
            field_name="subject",
            old_value="Crash",
            new_value="Crash on start",
            occurred_at=T0 + timedelta(hours=1),
        )
    )

    events = journal.events_for(record_id)
    assert [event.event_id for event in events] == [early.event_id, late.event_id]
    assert journal.events_for(record_id, "status") == [late]
    assert journal.latest_event_id() == max(early.event_id, late.event_id)


def test_events_by_record_and_actor_lookup(scenario, sqlite_session_factory) -> None:
    """Batch reads group events per record and actor lookups honor scope."""
    alice = scenario.user("alice")
    bob = scenario.user("bob")
    first = scenario.record("One", alice, created_at=T0)
    second = scenario.record("Two", alice, created_at=T0)
    scenario.update(first, bob, T0 + timedelta(hours=1), status="closed")
    scenario.update(second, alice, T0 + timedelta(hours=1), status="closed")
    journal = JournalRepository(sqlite_session_factory)

    grouped = journal.events_by_record([first, second])

    assert set(grouped) == {first, second}
    assert journal.record_ids_with_actor([bob]) == {first}
    assert journal.record_ids_with_actor([alice, bob], [second]) == {second}
    assert journal.record_ids_with_actor([]) == set()


def test_empty_journal_watermark_is_zero(sqlite_session_factory) -> None:
    """No events means a zero watermark."""
    assert JournalRepository(sqlite_session_factory).latest_event_id() == 0


def test_record_store_scope_and_group_keys(scenario, sqlite_session_factory) -> None:
    """Stored conditions combine with AND and group keys come from stored values."""
    alice = scenario.user("alice")
    bob = scenario.user("bob")
    repo = RecordRepository(sqlite_session_factory)
    open_one = repo.create(
        RecordCreateInput(subject="A", author_id=alice, assigned_to_id=bob, created_at=T0)
    ).id
    open_two = repo.create(RecordCreateInput(subject="B", author_id=bob, created_at=T0)).id
    closed = repo.create(
        RecordCreateInput(subject="C", author_id=alice, status="closed", created_at=T0)
    ).id
    store = SqlRecordStore(sqlite_session_factory)

    assert store.scope() == {open_one, open_two, closed}
    assert store.scope({"status": StoredCondition("=", ("new",))}) == {open_one, open_two}
    assert store.scope(
        {
            "status": StoredCondition("=", ("new",)),
            "assigned_to_id": StoredCondition("!*"),
        }
    ) == {open_two}
    assert store.scope({"assigned_to_id": StoredCondition("*")}) == {open_one}
    assert store.group_keys([open_one, closed], "status") == {open_one: "new", closed: "closed"}
    assert store.resolve_group_key(open_two, "author_id") == bob
    with pytest.raises(RecordNotFoundError):
        store.resolve_group_key(999, "status")
    with pytest.raises(ValueError, match="Unknown group dimension"):
        store.group_keys([open_one], "subject")
