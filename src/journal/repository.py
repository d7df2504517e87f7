"""Repository helpers for the append-only record change journal."""

from __future__ import annotations

from collections import defaultdict
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Collection, Iterable, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models import ChangeEvent
from time_utils import to_utc


@dataclass(frozen=True)
class ChangeEventCreateInput:
    """Input payload for appending a change event."""

    record_id: int
    actor_id: int
    field_name: str
    old_value: str | None
    new_value: str | None
    occurred_at: datetime | None = None


@dataclass(frozen=True)
class JournalEvent:
    """Immutable view of a change event detached from its session."""

    event_id: int
    record_id: int
    actor_id: int
    occurred_at: datetime
    field_name: str
    old_value: str | None
    new_value: str | None


class Journal(Protocol):
    """Collaborator interface for reading the change journal."""

    def events_for(self, record_id: int, field_name: str | None = None) -> list[JournalEvent]:
        ...

    def events_by_record(
        self,
        record_ids: Collection[int],
        field_name: str | None = None,
    ) -> dict[int, list[JournalEvent]]:
        ...

    def record_ids_with_actor(
        self,
        actor_ids: Collection[int],
        record_ids: Collection[int] | None = None,
    ) -> set[int]:
        ...

    def latest_event_id(self) -> int:
        ...


def serialize_value(value: object) -> str | None:
    """Render a stored field value as journal text."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value).isoformat()
    return str(value)


def _to_event(row: ChangeEvent) -> JournalEvent:
    return JournalEvent(
        event_id=row.id,
        record_id=row.record_id,
        actor_id=row.actor_id,
        occurred_at=to_utc(row.occurred_at),
        field_name=row.field_name,
        old_value=row.old_value,
        new_value=row.new_value,
    )


def append_event(session: Session, payload: ChangeEventCreateInput) -> ChangeEvent:
    """Append a change event using an existing session."""
    occurred_at = to_utc(payload.occurred_at or datetime.now(timezone.utc))
    row = ChangeEvent(
        record_id=payload.record_id,
        actor_id=payload.actor_id,
        occurred_at=occurred_at,
        field_name=payload.field_name,
        old_value=payload.old_value,
        new_value=payload.new_value,
    )
    session.add(row)
    session.flush()
    return row


def _ordered(stmt):
    return stmt.order_by(ChangeEvent.occurred_at.asc(), ChangeEvent.id.asc())


class JournalRepository:
    """Repository for change journal reads and appends."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def append(self, payload: ChangeEventCreateInput) -> JournalEvent:
        """Append and persist a change event."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                row = append_event(session, payload)
                session.commit()
            except Exception:
                session.rollback()
                raise
            return _to_event(row)

    def events_for(self, record_id: int, field_name: str | None = None) -> list[JournalEvent]:
        """Return a record's events ordered by occurred_at, then append order."""
        stmt = select(ChangeEvent).where(ChangeEvent.record_id == record_id)
        if field_name is not None:
            stmt = stmt.where(ChangeEvent.field_name == field_name)
        with closing(self._session_factory()) as session:
            return [_to_event(row) for row in session.scalars(_ordered(stmt)).all()]

    def events_by_record(
        self,
        record_ids: Collection[int],
        field_name: str | None = None,
    ) -> dict[int, list[JournalEvent]]:
        """Return ordered events for many records, keyed by record id."""
        grouped: dict[int, list[JournalEvent]] = defaultdict(list)
        if not record_ids:
            return grouped
        stmt = select(ChangeEvent).where(ChangeEvent.record_id.in_(list(record_ids)))
        if field_name is not None:
            stmt = stmt.where(ChangeEvent.field_name == field_name)
        with closing(self._session_factory()) as session:
            for row in session.scalars(_ordered(stmt)).all():
                grouped[row.record_id].append(_to_event(row))
        return grouped

    def record_ids_with_actor(
        self,
        actor_ids: Collection[int],
        record_ids: Collection[int] | None = None,
    ) -> set[int]:
        """Return ids of records with at least one event by any of the actors."""
        if not actor_ids:
            return set()
        stmt = select(ChangeEvent.record_id).where(ChangeEvent.actor_id.in_(list(actor_ids)))
        if record_ids is not None:
            stmt = stmt.where(ChangeEvent.record_id.in_(list(record_ids)))
        with closing(self._session_factory()) as session:
            return set(session.scalars(stmt.distinct()).all())

    def latest_event_id(self) -> int:
        """Return the highest event id appended so far, or 0."""
        with closing(self._session_factory()) as session:
            return int(session.scalar(select(func.max(ChangeEvent.id))) or 0)


def sort_events(events: Iterable[JournalEvent]) -> list[JournalEvent]:
    """Order events by occurred_at with append order as the tie-break."""
    return sorted(events, key=lambda item: (item.occurred_at, item.event_id))
