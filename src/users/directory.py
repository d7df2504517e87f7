"""User and group resolution plus the acting-user query context."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Collection, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import GroupMembership, User
from time_utils import local_date, to_utc, utc_now


@dataclass(frozen=True)
class QueryContext:
    """Acting user and evaluation instant for one query evaluation.

    Threaded explicitly through every derived-filter evaluation so that
    differently scoped queries can run side by side.
    """

    user_id: int
    now: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "now", to_utc(self.now))

    @property
    def today(self) -> date:
        """Return the local calendar date of the evaluation instant."""
        return local_date(self.now)


class UserDirectory(Protocol):
    """Collaborator interface for user identity and group expansion."""

    def current_user(self) -> int:
        ...

    def expand_group(self, group_id: int) -> set[int]:
        ...

    def is_group(self, principal_id: int) -> bool:
        ...


class SqlUserDirectory:
    """User directory backed by the ``users`` and ``group_memberships`` tables."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        current_user_id: int | None = None,
    ) -> None:
        """Initialize the directory with a session factory and optional session user."""
        self._session_factory = session_factory
        self._current_user_id = current_user_id

    def current_user(self) -> int:
        """Return the user id bound to this directory."""
        if self._current_user_id is None:
            raise LookupError("No current user is bound.")
        return self._current_user_id

    def context(self, now: datetime | None = None) -> QueryContext:
        """Build a query context for the bound current user."""
        if now is None:
            return QueryContext(user_id=self.current_user())
        return QueryContext(user_id=self.current_user(), now=now)

    def is_group(self, principal_id: int) -> bool:
        """Return True if the principal id names a group."""
        with closing(self._session_factory()) as session:
            return bool(
                session.scalar(select(User.is_group).where(User.id == principal_id))
            )

    def expand_group(self, group_id: int) -> set[int]:
        """Return the direct member user ids of a group."""
        with closing(self._session_factory()) as session:
            return set(
                session.scalars(
                    select(GroupMembership.user_id).where(GroupMembership.group_id == group_id)
                ).all()
            )


def resolve_principals(directory: UserDirectory, principal_ids: Collection[int]) -> set[int]:
    """Expand any group ids into member user ids, passing users through."""
    resolved: set[int] = set()
    for principal_id in principal_ids:
        if directory.is_group(principal_id):
            resolved |= directory.expand_group(principal_id)
        else:
            resolved.add(principal_id)
    return resolved
