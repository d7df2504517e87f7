"""Unit tests for user resolution, query context, and engine wiring."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from filters.definitions import EvaluatorFilter
from filters.errors import FilterRegistryError
from filters.operators import ValueType
from services.filter_engine import create_filter_engine
from users.directory import QueryContext, SqlUserDirectory, resolve_principals

T0 = datetime(2026, 8, 3, 23, 30, tzinfo=timezone.utc)


def test_query_context_normalizes_to_utc() -> None:
    """Naive instants are treated as UTC and today follows the local zone."""
    context = QueryContext(user_id=3, now=datetime(2026, 8, 3, 23, 30))

    assert context.now == T0
    assert context.today == date(2026, 8, 3)


def test_unbound_current_user_raises(sqlite_session_factory) -> None:
    """A directory without a session user cannot answer current_user."""
    directory = SqlUserDirectory(sqlite_session_factory)

    with pytest.raises(LookupError):
        directory.current_user()


def test_bound_current_user_builds_context(sqlite_session_factory) -> None:
    """The bound user becomes the acting user of new contexts."""
    directory = SqlUserDirectory(sqlite_session_factory, current_user_id=5)

    assert directory.current_user() == 5
    assert directory.context(T0) == QueryContext(user_id=5, now=T0)


def test_group_expansion(scenario, sqlite_session_factory) -> None:
    """Groups expand to direct members and users pass through."""
    alice = scenario.user("alice")
    bob = scenario.user("bob")
    carol = scenario.user("carol")
    ops = scenario.user("ops", is_group=True)
    empty = scenario.user("empty", is_group=True)
    scenario.add_member(ops, bob)
    scenario.add_member(ops, carol)
    directory = SqlUserDirectory(sqlite_session_factory)

    assert directory.is_group(ops)
    assert not directory.is_group(alice)
    assert directory.expand_group(ops) == {bob, carol}
    assert resolve_principals(directory, [alice, ops]) == {alice, bob, carol}
    assert resolve_principals(directory, [empty]) == set()


def test_engine_queries_as_bound_user(scenario, sqlite_session_factory) -> None:
    """Without an explicit context the engine uses the bound current user."""
    alice = scenario.user("alice")
    bob = scenario.user("bob")
    record_id = scenario.record("Mine", alice, created_at=T0)
    scenario.record("Theirs", bob, created_at=T0)
    services = create_filter_engine(sqlite_session_factory, current_user_id=alice)

    query = services.query()
    query.add_filter("created_by_me_on", "*")

    assert query.context.user_id == alice
    assert query.ids() == {record_id}


def test_custom_evaluator_filters_are_registered(scenario, sqlite_session_factory) -> None:
    """Extra definitions join the registry before it is frozen."""
    alice = scenario.user("alice")
    short = scenario.record("Bug", alice, created_at=T0)
    scenario.record("A much longer subject", alice, created_at=T0)

    def short_subject(candidate_ids, operator, operands, context):
        records = services.record_store.snapshots(candidate_ids)
        matches = {s.record_id for s in records if len(s.get("subject")) <= 5}
        return matches if operands[0] else set(candidate_ids) - matches

    services = create_filter_engine(
        sqlite_session_factory,
        extra_filters=[EvaluatorFilter("short_subject", ValueType.BOOLEAN, short_subject)],
    )
    query = services.query(QueryContext(user_id=alice, now=T0 + timedelta(hours=1)))
    query.add_filter("short_subject", "=", ["1"])

    assert query.ids() == {short}
    assert services.registry.frozen


def test_custom_filter_name_collision_fails(sqlite_session_factory) -> None:
    """Extra definitions cannot shadow built-in filters."""
    with pytest.raises(FilterRegistryError):
        create_filter_engine(
            sqlite_session_factory,
            extra_filters=[
                EvaluatorFilter("status", ValueType.ENUM, lambda ids, op, values, ctx: set())
            ],
        )
