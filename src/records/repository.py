"""Repository helpers for record persistence with journaled updates."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Callable, Mapping

from sqlalchemy.orm import Session

from journal.repository import ChangeEventCreateInput, append_event, serialize_value
from models import Record
from time_utils import to_utc

logger = logging.getLogger(__name__)

JOURNALED_FIELDS = frozenset({"subject", "status", "author_id", "assigned_to_id"})
NOTES_FIELD = "notes"


class RecordNotFoundError(ValueError):
    """Raised when a record id does not exist in the store."""

    def __init__(self, record_id: int) -> None:
        super().__init__(f"Record not found: {record_id}")
        self.record_id = record_id


@dataclass(frozen=True)
class RecordCreateInput:
    """Input payload for creating a record."""

    subject: str
    author_id: int
    status: str = "new"
    assigned_to_id: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class RecordUpdateInput:
    """Field changes applied by one actor at one instant."""

    actor_id: int
    changes: Mapping[str, object] = field(default_factory=dict)
    notes: str | None = None
    occurred_at: datetime | None = None


class RecordRepository:
    """Repository for record creation and journaled updates."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def create(self, payload: RecordCreateInput) -> Record:
        """Create and persist a record."""

        def handler(session: Session) -> Record:
            timestamp = to_utc(payload.created_at or datetime.now(timezone.utc))
            record = Record(
                subject=payload.subject,
                status=payload.status,
                author_id=payload.author_id,
                assigned_to_id=payload.assigned_to_id,
                created_at=timestamp,
                updated_at=timestamp,
            )
            session.add(record)
            session.flush()
            return record

        return self._execute(handler)

    def update(self, record_id: int, payload: RecordUpdateInput) -> Record:
        """Apply field changes and journal each one that differs."""

        def handler(session: Session) -> Record:
            return update_record(session, record_id, payload)

        return self._execute(handler)

    def _execute(self, handler):
        """Execute repository work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result


def fetch_record(session: Session, record_id: int) -> Record:
    """Return a record or raise when missing."""
    record = session.get(Record, record_id)
    if record is None:
        raise RecordNotFoundError(record_id)
    return record


def update_record(session: Session, record_id: int, payload: RecordUpdateInput) -> Record:
    """Update a record using an existing session, appending journal events."""
    unknown = set(payload.changes) - JOURNALED_FIELDS
    if unknown:
        raise ValueError(f"Unknown record fields: {', '.join(sorted(unknown))}")

    record = fetch_record(session, record_id)
    occurred_at = to_utc(payload.occurred_at or datetime.now(timezone.utc))
    journaled = 0
    for field_name, new_value in payload.changes.items():
        old_value = getattr(record, field_name)
        if old_value == new_value:
            continue
        setattr(record, field_name, new_value)
        append_event(
            session,
            ChangeEventCreateInput(
                record_id=record_id,
                actor_id=payload.actor_id,
                field_name=field_name,
                old_value=serialize_value(old_value),
                new_value=serialize_value(new_value),
                occurred_at=occurred_at,
            ),
        )
        journaled += 1

    if payload.notes:
        append_event(
            session,
            ChangeEventCreateInput(
                record_id=record_id,
                actor_id=payload.actor_id,
                field_name=NOTES_FIELD,
                old_value=None,
                new_value=payload.notes,
                occurred_at=occurred_at,
            ),
        )
        journaled += 1

    if journaled:
        record.updated_at = occurred_at
    else:
        logger.debug("Update for record %s produced no journal entries.", record_id)
    session.flush()
    return record
