"""Filter operators, operand parsing, and value matching."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Iterable

from filters.errors import InvalidFilterError
from users.directory import QueryContext

EQUALS = "="
NONE = "!*"
ANY = "*"
TODAY = "t"
THIS_WEEK = "w"
THIS_MONTH = "m"
BETWEEN = "><"
AT_LEAST = ">="
AT_MOST = "<="

ALL_OPERATORS = frozenset(
    [EQUALS, NONE, ANY, TODAY, THIS_WEEK, THIS_MONTH, BETWEEN, AT_LEAST, AT_MOST]
)
NULLARY_OPERATORS = frozenset([NONE, ANY, TODAY, THIS_WEEK, THIS_MONTH])
SINGLE_OPERAND_OPERATORS = frozenset([AT_LEAST, AT_MOST])


class ValueType(str, Enum):
    """Value domain of a filter."""

    BOOLEAN = "boolean"
    DATE = "date"
    INTEGER = "integer"
    USER = "user"
    ENUM = "enum"
    STRING = "string"


OPERATORS_BY_TYPE: dict[ValueType, frozenset[str]] = {
    ValueType.BOOLEAN: frozenset([EQUALS]),
    ValueType.DATE: frozenset(
        [EQUALS, BETWEEN, AT_LEAST, AT_MOST, TODAY, THIS_WEEK, THIS_MONTH, ANY, NONE]
    ),
    ValueType.INTEGER: frozenset([EQUALS, BETWEEN, AT_LEAST, AT_MOST, ANY, NONE]),
    ValueType.USER: frozenset([EQUALS, ANY, NONE]),
    ValueType.ENUM: frozenset([EQUALS, ANY, NONE]),
    ValueType.STRING: frozenset([EQUALS, ANY, NONE]),
}

_TRUE_TOKENS = {"1", "true", "yes"}
_FALSE_TOKENS = {"0", "false", "no"}


@dataclass(frozen=True)
class UserRef:
    """A user operand: a concrete principal id or the acting user."""

    principal_id: int | None = None

    @property
    def is_me(self) -> bool:
        return self.principal_id is None

    def resolve(self, context: QueryContext) -> int:
        """Return the concrete principal id under a query context."""
        return context.user_id if self.principal_id is None else self.principal_id


def _invalid(filter_name: str, code: str, message: str, **details: object) -> InvalidFilterError:
    return InvalidFilterError(code, message, {"filter": filter_name, **details})


def _normalize(operands: Iterable[object] | None) -> list[str]:
    if operands is None:
        return []
    if isinstance(operands, (str, bytes)):
        operands = [operands]
    values = []
    for operand in operands:
        text = str(operand).strip()
        if text:
            values.append(text)
    return values


def _check_arity(filter_name: str, operator: str, values: list[str]) -> None:
    if operator in NULLARY_OPERATORS:
        expected_ok = not values
        expectation = "no operands"
    elif operator == BETWEEN:
        expected_ok = len(values) == 2
        expectation = "exactly two operands"
    elif operator in SINGLE_OPERAND_OPERATORS:
        expected_ok = len(values) == 1
        expectation = "exactly one operand"
    else:
        expected_ok = bool(values)
        expectation = "at least one operand"
    if not expected_ok:
        raise _invalid(
            filter_name,
            "invalid_operand",
            f"Operator {operator!r} on {filter_name} takes {expectation}.",
            operator=operator,
            operands=values,
        )


def _parse_one(
    filter_name: str,
    value_type: ValueType,
    raw: str,
    me_keyword: str,
) -> object:
    try:
        if value_type is ValueType.DATE:
            return date.fromisoformat(raw)
        if value_type is ValueType.INTEGER:
            return int(raw)
        if value_type is ValueType.USER:
            if raw == me_keyword:
                return UserRef()
            return UserRef(principal_id=int(raw))
        if value_type is ValueType.BOOLEAN:
            lowered = raw.lower()
            if lowered in _TRUE_TOKENS:
                return True
            if lowered in _FALSE_TOKENS:
                return False
            raise ValueError(raw)
    except ValueError as exc:
        raise _invalid(
            filter_name,
            "invalid_operand",
            f"Operand {raw!r} is not a valid {value_type.value} for {filter_name}.",
            operand=raw,
        ) from exc
    return raw


def parse_operands(
    filter_name: str,
    value_type: ValueType,
    operator: str,
    operands: Iterable[object] | None,
    *,
    me_keyword: str,
) -> tuple[object, ...]:
    """Validate arity and parse raw operands into typed values.

    Blank operands are dropped before validation.
    """
    values = _normalize(operands)
    _check_arity(filter_name, operator, values)
    parsed = tuple(_parse_one(filter_name, value_type, raw, me_keyword) for raw in values)
    if operator == BETWEEN and parsed[0] > parsed[1]:
        raise _invalid(
            filter_name,
            "invalid_operand",
            f"Range on {filter_name} starts after it ends.",
            operands=values,
        )
    return parsed


def week_bounds(today: date, week_start: int) -> tuple[date, date]:
    """Return the first and last day of the week containing ``today``."""
    start = today - timedelta(days=(today.weekday() - week_start) % 7)
    return start, start + timedelta(days=6)


def date_matches(
    dates: set[date],
    operator: str,
    operands: tuple[object, ...],
    context: QueryContext,
    *,
    week_start: int = 0,
) -> bool:
    """Return True if any date in the set satisfies the operator."""
    if operator == NONE:
        return not dates
    if operator == ANY:
        return bool(dates)
    if operator == EQUALS:
        return not dates.isdisjoint(operands)
    if operator == TODAY:
        return context.today in dates
    if operator == THIS_WEEK:
        first, last = week_bounds(context.today, week_start)
        return any(first <= value <= last for value in dates)
    if operator == THIS_MONTH:
        today = context.today
        return any((value.year, value.month) == (today.year, today.month) for value in dates)
    if operator == BETWEEN:
        return any(operands[0] <= value <= operands[1] for value in dates)
    if operator == AT_LEAST:
        return any(value >= operands[0] for value in dates)
    if operator == AT_MOST:
        return any(value <= operands[0] for value in dates)
    raise ValueError(f"Unsupported date operator: {operator}")


def integer_matches(value: int | None, operator: str, operands: tuple[object, ...]) -> bool:
    """Return True if an optional integer satisfies the operator."""
    if operator == NONE:
        return value is None
    if value is None:
        return False
    if operator == ANY:
        return True
    if operator == EQUALS:
        return value in operands
    if operator == BETWEEN:
        return operands[0] <= value <= operands[1]
    if operator == AT_LEAST:
        return value >= operands[0]
    if operator == AT_MOST:
        return value <= operands[0]
    raise ValueError(f"Unsupported integer operator: {operator}")
