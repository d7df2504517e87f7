"""Data models for the record filter engine."""

from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import declarative_base

# SQLAlchemy base
Base = declarative_base()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_aware_timestamp(value: datetime | None) -> datetime | None:
    """Normalize timestamps to UTC when timezone info is missing."""
    if value is None:
        return None
    if value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# Database models
class User(Base):
    """User or group principal; both share one id space."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    login = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=True)
    is_group = Column(Boolean, nullable=False, default=False)


class GroupMembership(Base):
    """Direct membership of a user in a group."""

    __tablename__ = "group_memberships"

    group_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)


class Record(Base):
    """Tracked record whose stored fields are journaled on change."""

    __tablename__ = "records"

    id = Column(Integer, primary_key=True)
    subject = Column(String(255), nullable=False)
    status = Column(String(100), nullable=False, default="new")
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)


class ChangeEvent(Base):
    """Append-only field-level journal entry for a record."""

    __tablename__ = "change_events"
    __table_args__ = (
        Index("ix_change_events_record_field_time", "record_id", "field_name", "occurred_at"),
        Index("ix_change_events_actor", "actor_id"),
    )

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    record_id = Column(Integer, ForeignKey("records.id", ondelete="CASCADE"), nullable=False)
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    field_name = Column(String(100), nullable=False)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)


class RecordVisit(Base):
    """Visit counter and latest visit timestamp per record and user."""

    __tablename__ = "record_visits"
    __table_args__ = (
        UniqueConstraint("record_id", "user_id", name="uq_record_visits_record_user"),
        CheckConstraint("visit_count >= 1", name="ck_record_visits_count_positive"),
    )

    id = Column(Integer, primary_key=True)
    record_id = Column(Integer, ForeignKey("records.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    last_visited_at = Column(DateTime(timezone=True), nullable=False)
    visit_count = Column(Integer, nullable=False, default=1)


class RecordParticipant(Base):
    """Materialized participant set membership."""

    __tablename__ = "record_participants"

    record_id = Column(Integer, ForeignKey("records.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)


class ParticipantRefreshRun(Base):
    """Bookkeeping for participant set recomputation runs."""

    __tablename__ = "participant_refresh_runs"

    id = Column(Integer, primary_key=True)
    started_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    journal_watermark = Column(BigInteger, nullable=False, default=0)
    record_watermark = Column(Integer, nullable=False, default=0)
    full_scope = Column(Boolean, nullable=False, default=True)
    cancelled = Column(Boolean, nullable=False, default=False)
    records_processed = Column(Integer, nullable=False, default=0)


@event.listens_for(Record, "load")
def _normalize_record_on_load(target: Record, _context: object) -> None:
    """Ensure loaded record timestamps retain timezone awareness."""
    target.created_at = _ensure_aware_timestamp(target.created_at)
    target.updated_at = _ensure_aware_timestamp(target.updated_at)


@event.listens_for(ChangeEvent, "load")
def _normalize_change_event_on_load(target: ChangeEvent, _context: object) -> None:
    """Ensure loaded journal timestamps retain timezone awareness."""
    target.occurred_at = _ensure_aware_timestamp(target.occurred_at)


@event.listens_for(RecordVisit, "load")
def _normalize_visit_on_load(target: RecordVisit, _context: object) -> None:
    """Ensure loaded visit timestamps retain timezone awareness."""
    target.last_visited_at = _ensure_aware_timestamp(target.last_visited_at)


@event.listens_for(ParticipantRefreshRun, "load")
def _normalize_refresh_run_on_load(target: ParticipantRefreshRun, _context: object) -> None:
    """Ensure loaded refresh run timestamps retain timezone awareness."""
    target.started_at = _ensure_aware_timestamp(target.started_at)
    target.finished_at = _ensure_aware_timestamp(target.finished_at)
