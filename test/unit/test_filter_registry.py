"""Unit tests for filter registration."""

from __future__ import annotations

import pytest

from filters.definitions import FilterDefinition, StoredFieldFilter, VisitCountFilter
from filters.errors import FilterRegistryError, InvalidFilterError, UnknownFilterError
from filters.operators import ValueType
from filters.registry import FilterRegistry


class _StubStore:
    """Record store stand-in; definitions never call it at registration."""

    def scope(self, conditions=None):
        return set()


def test_default_registry_names(filter_services) -> None:
    """The default registry exposes stored and derived filters and is frozen."""
    registry = filter_services.registry

    assert registry.frozen
    assert registry.names() == [
        "assigned_to_id",
        "assigned_to_me_on",
        "author_id",
        "created_by_me_on",
        "last_visit_on",
        "participant",
        "status",
        "unassigned_from_me_on",
        "updated_after_i_was_assignee_on",
        "updated_by",
        "updated_by_me_on",
        "updated_when_i_was_assignee_on",
        "visit_count",
    ]
    assert "status" in registry
    assert len(registry) == 13


def test_duplicate_registration_fails() -> None:
    """Names are unique within a registry."""
    registry = FilterRegistry()
    registry.register(StoredFieldFilter("status", ValueType.ENUM, _StubStore()))

    with pytest.raises(FilterRegistryError) as excinfo:
        registry.register(StoredFieldFilter("status", ValueType.ENUM, _StubStore()))

    assert excinfo.value.code == "duplicate_filter"


def test_registration_after_freeze_fails() -> None:
    """A frozen registry rejects new definitions."""
    registry = FilterRegistry().freeze()

    with pytest.raises(FilterRegistryError) as excinfo:
        registry.register(StoredFieldFilter("status", ValueType.ENUM, _StubStore()))

    assert excinfo.value.code == "registry_frozen"


def test_unknown_filter_lookup() -> None:
    """Looking up an unregistered name raises UnknownFilterError."""
    with pytest.raises(UnknownFilterError) as excinfo:
        FilterRegistry().get("priority")

    assert excinfo.value.code == "unknown_filter"
    assert excinfo.value.details == {"filter": "priority"}


def test_operators_must_fit_the_value_type() -> None:
    """Definitions cannot declare operators outside their value type."""
    with pytest.raises(FilterRegistryError) as excinfo:
        StoredFieldFilter("status", ValueType.ENUM, _StubStore(), operators=["t"])

    assert excinfo.value.code == "invalid_definition"


def test_unsupported_operator_on_parse(filter_services) -> None:
    """Parsing rejects operators the definition does not support."""
    definition: FilterDefinition = filter_services.registry.get("updated_by")

    with pytest.raises(InvalidFilterError) as excinfo:
        definition.parse("!*", [], me_keyword="me")

    assert excinfo.value.code == "invalid_operator"


def test_visit_count_supports_integer_operators(filter_services) -> None:
    """The visit counter is an integer filter."""
    definition = filter_services.registry.get("visit_count")

    assert isinstance(definition, VisitCountFilter)
    assert definition.value_type is ValueType.INTEGER
    assert definition.parse(">=", ["3"], me_keyword="me") == (3,)
