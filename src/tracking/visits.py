"""Per-user visit tracking for records."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Callable, Collection

from sqlalchemy import case, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from models import RecordVisit
from time_utils import ensure_aware, to_utc

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass(frozen=True)
class VisitSnapshot:
    """Visit counters for one (record, user) pair."""

    record_id: int
    user_id: int
    last_visited_at: datetime
    visit_count: int


def _to_snapshot(row: RecordVisit) -> VisitSnapshot:
    return VisitSnapshot(
        record_id=row.record_id,
        user_id=row.user_id,
        last_visited_at=ensure_aware(row.last_visited_at),
        visit_count=row.visit_count,
    )


def upsert_visit(session: Session, record_id: int, user_id: int, at: datetime) -> None:
    """Insert or bump a visit row in a single statement.

    ``visit_count`` is incremented by the database and ``last_visited_at`` only
    moves forward, so concurrent visits neither lose increments nor rewind
    the latest visit.
    """
    visited_at = to_utc(at)
    insert = _UPSERT_DIALECTS.get(session.get_bind().dialect.name)
    if insert is None:
        _locked_upsert(session, record_id, user_id, visited_at)
        return

    stmt = insert(RecordVisit).values(
        record_id=record_id,
        user_id=user_id,
        last_visited_at=visited_at,
        visit_count=1,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[RecordVisit.record_id, RecordVisit.user_id],
        set_={
            "visit_count": RecordVisit.visit_count + 1,
            "last_visited_at": case(
                (
                    stmt.excluded.last_visited_at > RecordVisit.last_visited_at,
                    stmt.excluded.last_visited_at,
                ),
                else_=RecordVisit.last_visited_at,
            ),
        },
    )
    session.execute(stmt)


def _locked_upsert(session: Session, record_id: int, user_id: int, visited_at: datetime) -> None:
    """Row-locking fallback for dialects without ON CONFLICT support."""
    row = session.scalars(
        select(RecordVisit)
        .where(RecordVisit.record_id == record_id, RecordVisit.user_id == user_id)
        .with_for_update()
    ).first()
    if row is None:
        session.add(
            RecordVisit(
                record_id=record_id,
                user_id=user_id,
                last_visited_at=visited_at,
                visit_count=1,
            )
        )
    else:
        row.visit_count = row.visit_count + 1
        if visited_at > ensure_aware(row.last_visited_at):
            row.last_visited_at = visited_at
    session.flush()


class VisitRepository:
    """Repository for recording and reading record visits."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def record_visit(
        self,
        record_id: int,
        user_id: int,
        at: datetime | None = None,
    ) -> VisitSnapshot:
        """Record a visit and return the resulting counters."""
        visited_at = at or datetime.now(timezone.utc)
        with closing(self._session_factory()) as session:
            try:
                upsert_visit(session, record_id, user_id, visited_at)
                session.commit()
            except Exception:
                session.rollback()
                raise
        snapshot = self.get_visit(record_id, user_id)
        if snapshot is None:
            raise RuntimeError(f"Visit row missing after upsert: {record_id}/{user_id}")
        logger.debug(
            "Recorded visit for record %s by user %s (count=%s).",
            record_id,
            user_id,
            snapshot.visit_count,
        )
        return snapshot

    def get_visit(self, record_id: int, user_id: int) -> VisitSnapshot | None:
        """Return the visit counters for a pair, or None if never visited."""
        with closing(self._session_factory()) as session:
            row = session.scalars(
                select(RecordVisit).where(
                    RecordVisit.record_id == record_id,
                    RecordVisit.user_id == user_id,
                )
            ).first()
            return _to_snapshot(row) if row is not None else None

    def visits_for_user(
        self,
        user_id: int,
        record_ids: Collection[int] | None = None,
    ) -> dict[int, VisitSnapshot]:
        """Return a user's visit counters keyed by record id."""
        stmt = select(RecordVisit).where(RecordVisit.user_id == user_id)
        if record_ids is not None:
            stmt = stmt.where(RecordVisit.record_id.in_(list(record_ids)))
        with closing(self._session_factory()) as session:
            return {row.record_id: _to_snapshot(row) for row in session.scalars(stmt).all()}
