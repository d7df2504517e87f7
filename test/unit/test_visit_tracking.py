"""Unit tests for per-user visit tracking."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from models import Base, Record, User
from tracking.visits import VisitRepository

T0 = datetime(2026, 5, 11, 12, 0, tzinfo=timezone.utc)


def test_first_visit_creates_counter(scenario, sqlite_session_factory) -> None:
    """A first visit stores count 1 and the visit instant."""
    alice = scenario.user("alice")
    record_id = scenario.record("Docs", alice, created_at=T0)
    visits = VisitRepository(sqlite_session_factory)

    snapshot = visits.record_visit(record_id, alice, T0 + timedelta(hours=1))

    assert snapshot.visit_count == 1
    assert snapshot.last_visited_at == T0 + timedelta(hours=1)


def test_unvisited_pair_has_no_counter(scenario, sqlite_session_factory) -> None:
    """Never visited means no row, not a zero count."""
    alice = scenario.user("alice")
    record_id = scenario.record("Docs", alice, created_at=T0)
    visits = VisitRepository(sqlite_session_factory)

    assert visits.get_visit(record_id, alice) is None
    assert visits.visits_for_user(alice) == {}


def test_visits_are_monotonic(scenario, sqlite_session_factory) -> None:
    """Counts only grow and an older visit never rewinds the latest timestamp."""
    alice = scenario.user("alice")
    record_id = scenario.record("Docs", alice, created_at=T0)
    visits = VisitRepository(sqlite_session_factory)

    visits.record_visit(record_id, alice, T0 + timedelta(days=2))
    snapshot = visits.record_visit(record_id, alice, T0 + timedelta(days=1))

    assert snapshot.visit_count == 2
    assert snapshot.last_visited_at == T0 + timedelta(days=2)

    snapshot = visits.record_visit(record_id, alice, T0 + timedelta(days=3))

    assert snapshot.visit_count == 3
    assert snapshot.last_visited_at == T0 + timedelta(days=3)


def test_visits_are_tracked_per_user(scenario, sqlite_session_factory) -> None:
    """Each user has independent counters for the same record."""
    alice = scenario.user("alice")
    bob = scenario.user("bob")
    first = scenario.record("One", alice, created_at=T0)
    second = scenario.record("Two", alice, created_at=T0)
    visits = VisitRepository(sqlite_session_factory)

    visits.record_visit(first, alice, T0)
    visits.record_visit(first, alice, T0)
    visits.record_visit(first, bob, T0)
    visits.record_visit(second, bob, T0)

    assert visits.get_visit(first, alice).visit_count == 2
    assert visits.get_visit(first, bob).visit_count == 1
    assert set(visits.visits_for_user(bob)) == {first, second}
    assert set(visits.visits_for_user(bob, [second])) == {second}


def test_concurrent_visits_do_not_lose_increments(tmp_path) -> None:
    """Parallel visits to one record all count."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'visits.db'}",
        connect_args={"timeout": 30},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)
    with factory() as session:
        session.add(User(id=1, login="alice", name="Alice"))
        session.add(Record(id=1, subject="Busy", author_id=1, created_at=T0, updated_at=T0))
        session.commit()
    visits = VisitRepository(factory)

    instants = [T0 + timedelta(minutes=offset) for offset in range(20)]
    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(lambda at: visits.record_visit(1, 1, at), instants))

    snapshot = visits.get_visit(1, 1)
    engine.dispose()

    assert snapshot.visit_count == 20
    assert snapshot.last_visited_at == max(instants)
