"""Query building and evaluation over registered filters."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
import logging
from typing import Collection, Iterable

from config import settings
from filters.definitions import FilterDefinition
from filters.errors import InvalidFilterError
from filters.registry import FilterRegistry
from logging_config import log_context
from models import Record
from records.store import GROUP_DIMENSIONS, STORED_FIELDS, RecordStore, StoredCondition
from time_utils import local_date
from tracking.visits import VisitRepository
from users.directory import QueryContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterClause:
    """A validated filter entry of a query."""

    name: str
    operator: str
    operands: tuple[object, ...]
    values: tuple[str, ...]


@dataclass(frozen=True)
class QueryColumn:
    """A column that can be displayed for query results."""

    name: str
    caption: str
    derived: bool = False


STORED_COLUMNS = tuple(
    QueryColumn(name=name, caption=name.replace("_", " ").capitalize())
    for name in STORED_FIELDS
)
VISIT_COLUMNS = (
    QueryColumn(name="visit_count", caption="Visit count", derived=True),
    QueryColumn(name="last_visit_on", caption="Last visit on", derived=True),
)


class QueryEngine:
    """Entry point that binds a registry and record store to new queries."""

    def __init__(
        self,
        registry: FilterRegistry,
        record_store: RecordStore,
        *,
        visits: VisitRepository | None = None,
        me_keyword: str | None = None,
    ) -> None:
        """Initialize the engine with its collaborators."""
        self.registry = registry
        self.record_store = record_store
        self.visits = visits
        self.me_keyword = me_keyword or settings.filters.me_keyword

    def query(
        self,
        context: QueryContext,
        *,
        base_scope: Collection[int] | None = None,
        group_by: str | None = None,
    ) -> "RecordQuery":
        """Start building a query evaluated as ``context.user_id``."""
        return RecordQuery(self, context, base_scope=base_scope, group_by=group_by)


def _validate_group_by(group_by: str | None) -> None:
    if group_by is not None and group_by not in GROUP_DIMENSIONS:
        raise InvalidFilterError(
            "invalid_group_by",
            f"Cannot group by {group_by}.",
            {"group_by": group_by, "supported": sorted(GROUP_DIMENSIONS)},
        )


class RecordQuery:
    """A set of filter clauses evaluated lazily against the record store.

    Each result accessor re-evaluates from scratch; nothing is cached between
    calls.
    """

    def __init__(
        self,
        engine: QueryEngine,
        context: QueryContext,
        *,
        base_scope: Collection[int] | None = None,
        group_by: str | None = None,
        clauses: dict[str, FilterClause] | None = None,
    ) -> None:
        _validate_group_by(group_by)
        self._engine = engine
        self._context = context
        self._base_scope = frozenset(base_scope) if base_scope is not None else None
        self.group_by = group_by
        self._clauses: dict[str, FilterClause] = dict(clauses or {})

    @property
    def context(self) -> QueryContext:
        return self._context

    @property
    def filters(self) -> dict[str, FilterClause]:
        return dict(self._clauses)

    def add_filter(
        self,
        name: str,
        operator: str,
        values: Iterable[object] | None = None,
    ) -> None:
        """Add or replace a filter clause, validating it immediately."""
        definition = self._engine.registry.get(name)
        if values is None:
            values = ()
        elif isinstance(values, str):
            values = (values,)
        raw = tuple(str(value) for value in values)
        operands = definition.parse(operator, raw, me_keyword=self._engine.me_keyword)
        self._clauses[name] = FilterClause(
            name=name,
            operator=operator,
            operands=operands,
            values=raw,
        )

    def has_filter(self, name: str) -> bool:
        return name in self._clauses

    def remove_filter(self, name: str) -> None:
        self._clauses.pop(name, None)

    def with_context(self, context: QueryContext) -> "RecordQuery":
        """Return a copy of this query evaluated as another acting user."""
        return RecordQuery(
            self._engine,
            context,
            base_scope=self._base_scope,
            group_by=self.group_by,
            clauses=self._clauses,
        )

    def ids(self) -> set[int]:
        """Return the ids of all matching records."""
        return self._evaluate()

    def count(self) -> int:
        return len(self._evaluate())

    def count_by(self, group_dimension: str | None = None) -> dict[object, int]:
        """Return match counts keyed by the distinct group values present."""
        dimension = group_dimension or self.group_by
        if dimension is None:
            raise InvalidFilterError("invalid_group_by", "No group dimension given.", {})
        _validate_group_by(dimension)
        ids = self._evaluate()
        keys = self._engine.record_store.group_keys(ids, dimension)
        return dict(Counter(keys.values()))

    def records(self) -> list[Record]:
        """Return matching record entities ordered by id."""
        return self._engine.record_store.get_records(self._evaluate())

    def available_columns(self) -> list[QueryColumn]:
        """Return the stored columns plus visit columns when visits are tracked."""
        columns = list(STORED_COLUMNS)
        if self._engine.visits is not None:
            columns.extend(VISIT_COLUMNS)
        return columns

    def column_values(self, column_name: str) -> dict[int, object]:
        """Return a column's value for every matching record.

        Visit columns are resolved for the acting user; records never visited
        map to None.
        """
        column = next(
            (column for column in self.available_columns() if column.name == column_name),
            None,
        )
        if column is None:
            raise InvalidFilterError(
                "invalid_column",
                f"Unknown column: {column_name}",
                {"column": column_name},
            )
        ids = self._evaluate()
        if not column.derived:
            return {
                snapshot.record_id: snapshot.get(column_name)
                for snapshot in self._engine.record_store.snapshots(ids)
            }
        visits = self._engine.visits.visits_for_user(self._context.user_id, ids)
        values: dict[int, object] = {}
        for record_id in ids:
            visit = visits.get(record_id)
            if visit is None:
                values[record_id] = None
            elif column_name == "visit_count":
                values[record_id] = visit.visit_count
            else:
                values[record_id] = local_date(visit.last_visited_at)
        return values

    def _evaluate(self) -> set[int]:
        registry = self._engine.registry
        entries = [
            (registry.get(clause.name), clause) for clause in self._clauses.values()
        ]
        stored = [(d, c) for d, c in entries if d.storage_delegated]
        derived = [(d, c) for d, c in entries if not d.storage_delegated]

        with log_context({"user_id": self._context.user_id}):
            ids = self._stored_scope(stored)
            if self._base_scope is not None:
                ids &= self._base_scope
            for definition, clause in derived:
                if not ids:
                    logger.debug("Empty intersection; skipping %s.", clause.name)
                    break
                ids = definition.matching_ids(ids, clause.operator, clause.operands, self._context)
                logger.debug(
                    "Filter %s %s matched %s records.",
                    clause.name,
                    clause.operator,
                    len(ids),
                )
            logger.debug("Query with %s filters matched %s records.", len(entries), len(ids))
        return ids

    def _stored_scope(self, stored: list[tuple[FilterDefinition, FilterClause]]) -> set[int]:
        """Evaluate storage-delegated clauses, batching distinct fields per call."""
        batches: list[dict[str, StoredCondition]] = [{}]
        for definition, clause in stored:
            condition = definition.stored_condition(clause.operator, clause.operands, self._context)
            batch = next((b for b in batches if definition.field_name not in b), None)
            if batch is None:
                batch = {}
                batches.append(batch)
            batch[definition.field_name] = condition

        ids = self._engine.record_store.scope(batches[0])
        for batch in batches[1:]:
            if not ids:
                break
            ids &= self._engine.record_store.scope(batch)
        return ids
