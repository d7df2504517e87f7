"""Materialized participant sets and their bulk recomputation.

A record's participants are its author, every journal actor, and every user
ever held by the assignee field. Sets are only refreshed by
``ParticipantService.recompute``; nothing invalidates them automatically, so
callers schedule a refresh after journal changes or record creation. Reads
made against sets older than either log a ``StaleAggregateWarning``.
"""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import threading
from typing import Callable, Collection, Iterable

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from config import settings
from filters.errors import ParticipantRefreshInProgressError, StaleAggregateWarning
from journal.repository import Journal, JournalEvent
from journal.timeline import timeline_from_snapshot
from logging_config import log_context
from models import ParticipantRefreshRun, Record, RecordParticipant
from records.store import RecordSnapshot, RecordStore

logger = logging.getLogger(__name__)

_REFRESH_LOCK = threading.Lock()


@dataclass(frozen=True)
class ParticipantRefreshResult:
    """Outcome of a participant recompute run."""

    run_id: int
    records_processed: int
    records_changed: int
    cancelled: bool


def _parse_user_id(value: str | None) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring non-numeric assignee value in journal: %r", value)
        return None


def compute_participants(
    snapshot: RecordSnapshot,
    events: Iterable[JournalEvent],
    *,
    assignee_field: str,
) -> set[int]:
    """Derive the participant set of one record from its history."""
    events = list(events)
    participants = {snapshot.author_id}
    participants.update(event.actor_id for event in events)
    timeline = timeline_from_snapshot(snapshot, assignee_field, events)
    for value in timeline.values():
        user_id = _parse_user_id(value)
        if user_id is not None:
            participants.add(user_id)
    return participants


class ParticipantService:
    """Recompute and read materialized participant sets."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        record_store: RecordStore,
        journal: Journal,
        *,
        assignee_field: str | None = None,
    ) -> None:
        """Initialize the service with storage and journal collaborators."""
        self._session_factory = session_factory
        self._record_store = record_store
        self._journal = journal
        self._assignee_field = assignee_field or settings.filters.assignee_field

    def recompute(
        self,
        record_ids: Collection[int] | None = None,
        *,
        blocking: bool = True,
        cancel_event: threading.Event | None = None,
    ) -> ParticipantRefreshResult:
        """Recompute participant sets for the given records, or all records.

        At most one recompute runs at a time in this process. Each record's set
        is replaced in its own transaction, and ``cancel_event`` is checked
        between records so a cancelled run leaves finished records intact.
        """
        if not _REFRESH_LOCK.acquire(blocking=blocking):
            raise ParticipantRefreshInProgressError()
        try:
            return self._recompute_locked(record_ids, cancel_event)
        finally:
            _REFRESH_LOCK.release()

    def _recompute_locked(
        self,
        record_ids: Collection[int] | None,
        cancel_event: threading.Event | None,
    ) -> ParticipantRefreshResult:
        full_scope = record_ids is None
        watermark = self._journal.latest_event_id()
        record_watermark = self._latest_record_id()
        run_id = self._start_run(watermark, record_watermark, full_scope)
        ids = sorted(self._record_store.scope() if full_scope else set(record_ids))

        processed = 0
        changed = 0
        cancelled = False
        with log_context({"refresh_run_id": run_id}):
            logger.info(
                "Participant refresh started (records=%s, full_scope=%s).",
                len(ids),
                full_scope,
            )
            for record_id in ids:
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    logger.info("Participant refresh cancelled after %s records.", processed)
                    break
                if self._refresh_record(record_id):
                    changed += 1
                processed += 1
            self._finish_run(run_id, processed, cancelled)
            logger.info(
                "Participant refresh finished (processed=%s, changed=%s).",
                processed,
                changed,
            )
        return ParticipantRefreshResult(
            run_id=run_id,
            records_processed=processed,
            records_changed=changed,
            cancelled=cancelled,
        )

    def _refresh_record(self, record_id: int) -> bool:
        """Replace one record's participant set; return True if it changed."""
        snapshots = self._record_store.snapshots([record_id])
        events = self._journal.events_for(record_id)
        participants = (
            compute_participants(snapshots[0], events, assignee_field=self._assignee_field)
            if snapshots
            else set()
        )
        with closing(self._session_factory()) as session:
            try:
                existing = set(
                    session.scalars(
                        select(RecordParticipant.user_id).where(
                            RecordParticipant.record_id == record_id
                        )
                    ).all()
                )
                if existing == participants:
                    session.rollback()
                    return False
                session.execute(
                    delete(RecordParticipant).where(RecordParticipant.record_id == record_id)
                )
                session.add_all(
                    RecordParticipant(record_id=record_id, user_id=user_id)
                    for user_id in sorted(participants)
                )
                session.commit()
            except Exception:
                session.rollback()
                raise
        return True

    def _start_run(self, watermark: int, record_watermark: int, full_scope: bool) -> int:
        with closing(self._session_factory()) as session:
            try:
                run = ParticipantRefreshRun(
                    started_at=datetime.now(timezone.utc),
                    journal_watermark=watermark,
                    record_watermark=record_watermark,
                    full_scope=full_scope,
                )
                session.add(run)
                session.commit()
                return run.id
            except Exception:
                session.rollback()
                raise

    def _finish_run(self, run_id: int, processed: int, cancelled: bool) -> None:
        with closing(self._session_factory()) as session:
            try:
                run = session.get(ParticipantRefreshRun, run_id)
                run.finished_at = datetime.now(timezone.utc)
                run.records_processed = processed
                run.cancelled = cancelled
                session.commit()
            except Exception:
                session.rollback()
                raise

    def participants_for(self, record_id: int) -> set[int]:
        """Return the materialized participant set of a record."""
        with closing(self._session_factory()) as session:
            return set(
                session.scalars(
                    select(RecordParticipant.user_id).where(
                        RecordParticipant.record_id == record_id
                    )
                ).all()
            )

    def records_with_participants(
        self,
        user_ids: Collection[int],
        record_ids: Collection[int] | None = None,
    ) -> set[int]:
        """Return ids of records whose participant set contains any of the users."""
        self.warn_if_stale()
        if not user_ids:
            return set()
        stmt = select(RecordParticipant.record_id).where(
            RecordParticipant.user_id.in_(list(user_ids))
        )
        if record_ids is not None:
            stmt = stmt.where(RecordParticipant.record_id.in_(list(record_ids)))
        with closing(self._session_factory()) as session:
            return set(session.scalars(stmt.distinct()).all())

    def _latest_record_id(self) -> int:
        with closing(self._session_factory()) as session:
            return int(session.scalar(select(func.max(Record.id))) or 0)

    def _latest_full_run(self) -> ParticipantRefreshRun | None:
        with closing(self._session_factory()) as session:
            return session.scalars(
                select(ParticipantRefreshRun)
                .where(
                    ParticipantRefreshRun.full_scope.is_(True),
                    ParticipantRefreshRun.cancelled.is_(False),
                    ParticipantRefreshRun.finished_at.is_not(None),
                )
                .order_by(ParticipantRefreshRun.id.desc())
                .limit(1)
            ).first()

    def refreshed_watermark(self) -> int | None:
        """Return the journal watermark of the latest completed full refresh."""
        run = self._latest_full_run()
        return run.journal_watermark if run is not None else None

    def is_stale(self) -> bool:
        """Return True if the journal or the record set moved past the last full refresh.

        New records carry no journal event, so the highest record id is
        compared alongside the journal watermark.
        """
        run = self._latest_full_run()
        if run is None:
            return True
        if self._journal.latest_event_id() > run.journal_watermark:
            return True
        return self._latest_record_id() > run.record_watermark

    def warn_if_stale(self) -> StaleAggregateWarning | None:
        """Log a stale-aggregate warning when participant sets lag the journal."""
        if not settings.participants.stale_warning or not self.is_stale():
            return None
        warning = StaleAggregateWarning()
        logger.warning(str(warning))
        return warning
