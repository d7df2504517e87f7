"""Name-keyed filter registry built once at startup."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator

from config import settings
from filters.definitions import (
    FilterDefinition,
    JournalDateFilter,
    LastVisitOnFilter,
    ParticipantFilter,
    StoredFieldFilter,
    UpdatedByFilter,
    VisitCountFilter,
)
from filters.derived import DATE_CALCULATORS
from filters.errors import FilterRegistryError, UnknownFilterError
from filters.operators import ValueType
from journal.repository import Journal
from participants.service import ParticipantService
from records.store import RecordStore
from tracking.visits import VisitRepository
from users.directory import UserDirectory

logger = logging.getLogger(__name__)


class FilterRegistry:
    """Mapping of filter name to definition; read-only once frozen."""

    def __init__(self) -> None:
        self._filters: dict[str, FilterDefinition] = {}
        self._frozen = False

    def register(self, definition: FilterDefinition) -> None:
        """Register a definition under its unique name."""
        if self._frozen:
            raise FilterRegistryError(
                "registry_frozen",
                f"Cannot register {definition.name} after startup.",
                {"filter": definition.name},
            )
        if definition.name in self._filters:
            raise FilterRegistryError(
                "duplicate_filter",
                f"Filter already registered: {definition.name}",
                {"filter": definition.name},
            )
        self._filters[definition.name] = definition

    def freeze(self) -> "FilterRegistry":
        """Disallow further registration."""
        self._frozen = True
        logger.debug("Filter registry frozen with %s filters.", len(self._filters))
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> FilterDefinition:
        """Return a definition or raise ``UnknownFilterError``."""
        definition = self._filters.get(name)
        if definition is None:
            raise UnknownFilterError(name)
        return definition

    def names(self) -> list[str]:
        return sorted(self._filters)

    def __contains__(self, name: object) -> bool:
        return name in self._filters

    def __iter__(self) -> Iterator[FilterDefinition]:
        return iter(self._filters.values())

    def __len__(self) -> int:
        return len(self._filters)


def build_default_registry(
    *,
    record_store: RecordStore,
    journal: Journal,
    visits: VisitRepository,
    participants: ParticipantService,
    users: UserDirectory,
    assignee_field: str | None = None,
    week_start: int | None = None,
    extra: Iterable[FilterDefinition] = (),
) -> FilterRegistry:
    """Register the stored and derived filters and freeze the registry.

    Definitions in ``extra`` are registered last, so their names must not
    collide with the built-in filters.
    """
    assignee_field = assignee_field or settings.filters.assignee_field
    if week_start is None:
        week_start = settings.filters.week_start_index

    registry = FilterRegistry()
    registry.register(StoredFieldFilter("status", ValueType.ENUM, record_store))
    registry.register(StoredFieldFilter("author_id", ValueType.USER, record_store))
    registry.register(StoredFieldFilter("assigned_to_id", ValueType.USER, record_store))

    for name, calculator in DATE_CALCULATORS.items():
        registry.register(
            JournalDateFilter(
                name,
                calculator,
                record_store,
                journal,
                assignee_field=assignee_field,
                week_start=week_start,
            )
        )

    registry.register(LastVisitOnFilter(visits, week_start=week_start))
    registry.register(VisitCountFilter(visits))
    registry.register(UpdatedByFilter(journal, users))
    registry.register(ParticipantFilter(participants, users))
    for definition in extra:
        registry.register(definition)
    return registry.freeze()
