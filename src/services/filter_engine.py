"""Wiring of the filter engine and its collaborators."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, Collection, Iterable

from sqlalchemy.orm import Session

from filters.definitions import FilterDefinition
from filters.query import QueryEngine, RecordQuery
from filters.registry import FilterRegistry, build_default_registry
from journal.repository import JournalRepository
from journal.timeline import TimelineService
from participants.service import ParticipantService
from records.store import SqlRecordStore
from tracking.visits import VisitRepository
from users.directory import QueryContext, SqlUserDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterEngineServices:
    """Collaborators and engine built once at startup."""

    record_store: SqlRecordStore
    journal: JournalRepository
    timelines: TimelineService
    users: SqlUserDirectory
    visits: VisitRepository
    participants: ParticipantService
    registry: FilterRegistry
    engine: QueryEngine

    def query(
        self,
        context: QueryContext | None = None,
        *,
        base_scope: Collection[int] | None = None,
        group_by: str | None = None,
    ) -> RecordQuery:
        """Start a query evaluated as the context's acting user.

        Without a context the directory's bound current user is used.
        """
        if context is None:
            context = self.users.context()
        return self.engine.query(context, base_scope=base_scope, group_by=group_by)


def create_filter_engine(
    session_factory: Callable[[], Session],
    *,
    current_user_id: int | None = None,
    assignee_field: str | None = None,
    extra_filters: Iterable[FilterDefinition] = (),
) -> FilterEngineServices:
    """Build the default collaborators, registry, and query engine."""
    record_store = SqlRecordStore(session_factory)
    journal = JournalRepository(session_factory)
    users = SqlUserDirectory(session_factory, current_user_id=current_user_id)
    visits = VisitRepository(session_factory)
    participants = ParticipantService(
        session_factory,
        record_store,
        journal,
        assignee_field=assignee_field,
    )
    registry = build_default_registry(
        record_store=record_store,
        journal=journal,
        visits=visits,
        participants=participants,
        users=users,
        assignee_field=assignee_field,
        extra=extra_filters,
    )
    engine = QueryEngine(registry, record_store, visits=visits)
    logger.info("Filter engine ready with %s filters.", len(registry))
    return FilterEngineServices(
        record_store=record_store,
        journal=journal,
        timelines=TimelineService(journal, record_store),
        users=users,
        visits=visits,
        participants=participants,
        registry=registry,
        engine=engine,
    )
