"""Read-side record store used by the filter engine."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Collection, Iterable, Mapping, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import Record
from records.repository import RecordNotFoundError
from time_utils import ensure_aware

STORED_FIELDS = ("subject", "status", "author_id", "assigned_to_id", "created_at", "updated_at")
GROUP_DIMENSIONS = frozenset({"status", "author_id", "assigned_to_id"})


@dataclass(frozen=True)
class StoredCondition:
    """Plain stored-field predicate delegated to storage."""

    operator: str
    values: tuple[object, ...] = ()


@dataclass(frozen=True)
class RecordSnapshot:
    """Current stored state of a record, detached from any session."""

    record_id: int
    author_id: int
    created_at: datetime
    fields: Mapping[str, object]

    def get(self, field_name: str) -> object:
        """Return a stored field value."""
        if field_name not in self.fields:
            raise ValueError(f"Unknown record field: {field_name}")
        return self.fields[field_name]


class RecordStore(Protocol):
    """Collaborator interface for record storage."""

    def get_field(self, record_id: int, field_name: str) -> object:
        ...

    def scope(self, conditions: Mapping[str, StoredCondition] | None = None) -> set[int]:
        ...

    def resolve_group_key(self, record_id: int, group_dimension: str) -> object:
        ...

    def group_keys(self, record_ids: Collection[int], group_dimension: str) -> dict[int, object]:
        ...

    def get_records(self, record_ids: Collection[int]) -> list[Record]:
        ...

    def snapshots(self, record_ids: Collection[int]) -> list[RecordSnapshot]:
        ...


def _column(field_name: str):
    if field_name not in STORED_FIELDS:
        raise ValueError(f"Unknown record field: {field_name}")
    return getattr(Record, field_name)


def _condition_clause(field_name: str, condition: StoredCondition):
    column = _column(field_name)
    if condition.operator == "=":
        return column.in_(list(condition.values))
    if condition.operator == "*":
        return column.is_not(None)
    if condition.operator == "!*":
        return column.is_(None)
    raise ValueError(f"Unsupported stored operator: {condition.operator}")


def _snapshot(record: Record) -> RecordSnapshot:
    fields = {name: getattr(record, name) for name in STORED_FIELDS}
    return RecordSnapshot(
        record_id=record.id,
        author_id=record.author_id,
        created_at=ensure_aware(record.created_at),
        fields=fields,
    )


class SqlRecordStore:
    """Record store backed by the ``records`` table."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize the store with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def get_field(self, record_id: int, field_name: str) -> object:
        """Return the current stored value of a record field."""
        column = _column(field_name)
        with closing(self._session_factory()) as session:
            row = session.execute(select(Record.id, column).where(Record.id == record_id)).first()
        if row is None:
            raise RecordNotFoundError(record_id)
        value = row[1]
        if isinstance(value, datetime):
            return ensure_aware(value)
        return value

    def scope(self, conditions: Mapping[str, StoredCondition] | None = None) -> set[int]:
        """Return ids of records matching every stored-field condition."""
        stmt = select(Record.id)
        for field_name, condition in (conditions or {}).items():
            stmt = stmt.where(_condition_clause(field_name, condition))
        with closing(self._session_factory()) as session:
            return set(session.scalars(stmt).all())

    def resolve_group_key(self, record_id: int, group_dimension: str) -> object:
        """Return the grouping key of one record."""
        keys = self.group_keys([record_id], group_dimension)
        if record_id not in keys:
            raise RecordNotFoundError(record_id)
        return keys[record_id]

    def group_keys(self, record_ids: Collection[int], group_dimension: str) -> dict[int, object]:
        """Return grouping keys for many records in one round trip."""
        if group_dimension not in GROUP_DIMENSIONS:
            raise ValueError(f"Unknown group dimension: {group_dimension}")
        if not record_ids:
            return {}
        column = _column(group_dimension)
        with closing(self._session_factory()) as session:
            rows = session.execute(
                select(Record.id, column).where(Record.id.in_(list(record_ids)))
            ).all()
        return {row[0]: row[1] for row in rows}

    def get_records(self, record_ids: Collection[int]) -> list[Record]:
        """Return detached record entities ordered by id."""
        if not record_ids:
            return []
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            rows = session.scalars(
                select(Record).where(Record.id.in_(list(record_ids))).order_by(Record.id)
            ).all()
            session.expunge_all()
            return list(rows)

    def snapshots(self, record_ids: Iterable[int]) -> list[RecordSnapshot]:
        """Return stored-state snapshots ordered by id."""
        ids = list(record_ids)
        if not ids:
            return []
        with closing(self._session_factory()) as session:
            rows = session.scalars(
                select(Record).where(Record.id.in_(ids)).order_by(Record.id)
            ).all()
            return [_snapshot(record) for record in rows]
