"""Filter definitions: value domain, supported operators, and evaluator.

Storage-delegated definitions turn into plain stored-field conditions that
the record store evaluates. Every other definition computes its matching ids
in process from the journal, visit rows, or participant sets, always within a
caller-supplied candidate set, so ``!*`` is a complement inside that set.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Collection
from datetime import date
import logging

from filters.derived import DateCalculator, RecordHistory
from filters.errors import FilterRegistryError, InvalidFilterError
from filters.operators import (
    EQUALS,
    OPERATORS_BY_TYPE,
    UserRef,
    ValueType,
    date_matches,
    integer_matches,
    parse_operands,
)
from journal.repository import Journal
from participants.service import ParticipantService
from records.store import RecordStore, StoredCondition
from time_utils import local_date
from tracking.visits import VisitRepository
from users.directory import QueryContext, UserDirectory, resolve_principals

logger = logging.getLogger(__name__)


class FilterDefinition(ABC):
    """A named, registrable filter."""

    storage_delegated = False

    def __init__(
        self,
        name: str,
        value_type: ValueType,
        operators: Collection[str] | None = None,
    ) -> None:
        allowed = OPERATORS_BY_TYPE[value_type]
        supported = frozenset(operators) if operators is not None else allowed
        if not supported or not supported <= allowed:
            raise FilterRegistryError(
                "invalid_definition",
                f"Operators for {name} must be a non-empty subset of {value_type.value} operators.",
                {"filter": name, "operators": sorted(supported)},
            )
        self.name = name
        self.value_type = value_type
        self.operators = supported

    def parse(self, operator: str, operands, *, me_keyword: str) -> tuple[object, ...]:
        """Validate an operator and parse its operands for this filter."""
        if operator not in self.operators:
            raise InvalidFilterError(
                "invalid_operator",
                f"Operator {operator!r} is not supported by {self.name}.",
                {"filter": self.name, "operator": operator, "supported": sorted(self.operators)},
            )
        return parse_operands(
            self.name,
            self.value_type,
            operator,
            operands,
            me_keyword=me_keyword,
        )

    @abstractmethod
    def matching_ids(
        self,
        candidate_ids: set[int],
        operator: str,
        operands: tuple[object, ...],
        context: QueryContext,
    ) -> set[int]:
        """Return the subset of ``candidate_ids`` the filter accepts."""


Evaluator = Callable[[set[int], str, tuple[object, ...], QueryContext], set[int]]


def _resolve(value: object, context: QueryContext) -> object:
    return value.resolve(context) if isinstance(value, UserRef) else value


class EvaluatorFilter(FilterDefinition):
    """Derived filter backed by a caller-supplied evaluator callable."""

    def __init__(
        self,
        name: str,
        value_type: ValueType,
        evaluator: Evaluator,
        operators: Collection[str] | None = None,
    ) -> None:
        super().__init__(name, value_type, operators)
        self._evaluator = evaluator

    def matching_ids(self, candidate_ids, operator, operands, context):
        if not candidate_ids:
            return set()
        return candidate_ids & set(self._evaluator(candidate_ids, operator, operands, context))


class StoredFieldFilter(FilterDefinition):
    """Plain equality/presence filter on a stored record field."""

    storage_delegated = True

    def __init__(
        self,
        name: str,
        value_type: ValueType,
        record_store: RecordStore,
        *,
        field_name: str | None = None,
        operators: Collection[str] | None = None,
    ) -> None:
        super().__init__(name, value_type, operators)
        self.field_name = field_name or name
        self._record_store = record_store

    def stored_condition(
        self,
        operator: str,
        operands: tuple[object, ...],
        context: QueryContext,
    ) -> StoredCondition:
        """Translate the filter into a record-store condition."""
        return StoredCondition(
            operator=operator,
            values=tuple(_resolve(value, context) for value in operands),
        )

    def matching_ids(self, candidate_ids, operator, operands, context):
        condition = self.stored_condition(operator, operands, context)
        return candidate_ids & self._record_store.scope({self.field_name: condition})


class DateAttributeFilter(FilterDefinition):
    """Filter over a per-record set of dates relative to the acting user."""

    def __init__(
        self,
        name: str,
        *,
        week_start: int = 0,
        operators: Collection[str] | None = None,
    ) -> None:
        super().__init__(name, ValueType.DATE, operators)
        self._week_start = week_start

    @abstractmethod
    def dates_for(self, record_ids: set[int], context: QueryContext) -> dict[int, set[date]]:
        """Return attribute dates per record; records without dates may be omitted."""

    def matching_ids(self, candidate_ids, operator, operands, context):
        if not candidate_ids:
            return set()
        dates = self.dates_for(candidate_ids, context)
        return {
            record_id
            for record_id in candidate_ids
            if date_matches(
                dates.get(record_id, set()),
                operator,
                operands,
                context,
                week_start=self._week_start,
            )
        }


class JournalDateFilter(DateAttributeFilter):
    """Date attribute computed from each record's journal by a calculator."""

    def __init__(
        self,
        name: str,
        calculator: DateCalculator,
        record_store: RecordStore,
        journal: Journal,
        *,
        assignee_field: str,
        week_start: int = 0,
    ) -> None:
        super().__init__(name, week_start=week_start)
        self._calculator = calculator
        self._record_store = record_store
        self._journal = journal
        self._assignee_field = assignee_field

    def dates_for(self, record_ids, context):
        events = self._journal.events_by_record(record_ids)
        result: dict[int, set[date]] = {}
        for snapshot in self._record_store.snapshots(record_ids):
            history = RecordHistory(
                snapshot=snapshot,
                events=tuple(events.get(snapshot.record_id, ())),
            )
            result[snapshot.record_id] = self._calculator(
                history,
                context.user_id,
                self._assignee_field,
            )
        return result


class LastVisitOnFilter(DateAttributeFilter):
    """Local date of the acting user's latest visit."""

    def __init__(self, visits: VisitRepository, *, week_start: int = 0) -> None:
        super().__init__("last_visit_on", week_start=week_start)
        self._visits = visits

    def dates_for(self, record_ids, context):
        visits = self._visits.visits_for_user(context.user_id, record_ids)
        return {
            record_id: {local_date(visit.last_visited_at)}
            for record_id, visit in visits.items()
        }


class VisitCountFilter(FilterDefinition):
    """Number of visits by the acting user; ``!*`` means never visited."""

    def __init__(self, visits: VisitRepository) -> None:
        super().__init__("visit_count", ValueType.INTEGER)
        self._visits = visits

    def matching_ids(self, candidate_ids, operator, operands, context):
        if not candidate_ids:
            return set()
        visits = self._visits.visits_for_user(context.user_id, candidate_ids)
        return {
            record_id
            for record_id in candidate_ids
            if integer_matches(
                visits[record_id].visit_count if record_id in visits else None,
                operator,
                operands,
            )
        }


class UpdatedByFilter(FilterDefinition):
    """Records with at least one journal event by the given users or groups."""

    def __init__(self, journal: Journal, users: UserDirectory) -> None:
        super().__init__("updated_by", ValueType.USER, [EQUALS])
        self._journal = journal
        self._users = users

    def matching_ids(self, candidate_ids, operator, operands, context):
        if not candidate_ids:
            return set()
        principals = {_resolve(value, context) for value in operands}
        actors = resolve_principals(self._users, principals)
        logger.debug("updated_by resolved %s principals to %s actors.", len(principals), len(actors))
        return self._journal.record_ids_with_actor(actors, candidate_ids)


class ParticipantFilter(FilterDefinition):
    """Records whose materialized participant set contains the given users."""

    def __init__(self, participants: ParticipantService, users: UserDirectory) -> None:
        super().__init__("participant", ValueType.USER, [EQUALS])
        self._participants = participants
        self._users = users

    def matching_ids(self, candidate_ids, operator, operands, context):
        if not candidate_ids:
            return set()
        principals = {_resolve(value, context) for value in operands}
        users = resolve_principals(self._users, principals)
        return self._participants.records_with_participants(users, candidate_ids)

