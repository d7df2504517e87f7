"""Pytest configuration for the record filter test suite."""

import os
import sys
from collections.abc import Generator
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


def _ensure_test_env() -> None:
    """Seed required environment variables for tests."""
    os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
    os.environ.setdefault("USER_TIMEZONE", "UTC")
    os.environ.setdefault("LOG_JSON", "false")


_ensure_test_env()

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))


@pytest.fixture()
def sqlite_session_factory() -> Generator[sessionmaker, None, None]:
    """Provide a sqlite session factory and ensure engine cleanup."""
    from models import Base

    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)
    yield factory
    engine.dispose()


class Scenario:
    """Builder for users, groups, records, and journaled updates."""

    def __init__(self, factory: sessionmaker) -> None:
        from records.repository import RecordRepository

        self._factory = factory
        self._records = RecordRepository(factory)

    def user(self, login: str, *, is_group: bool = False, user_id: int | None = None) -> int:
        """Create a user (or group) principal and return its id."""
        from models import User

        with self._factory() as session:
            principal = User(id=user_id, login=login, name=login.title(), is_group=is_group)
            session.add(principal)
            session.commit()
            return principal.id

    def add_member(self, group_id: int, user_id: int) -> None:
        """Add a user to a group."""
        from models import GroupMembership

        with self._factory() as session:
            session.add(GroupMembership(group_id=group_id, user_id=user_id))
            session.commit()

    def record(
        self,
        subject: str,
        author_id: int,
        *,
        created_at: datetime,
        assigned_to_id: int | None = None,
        status: str = "new",
    ) -> int:
        """Create a record and return its id."""
        from records.repository import RecordCreateInput

        record = self._records.create(
            RecordCreateInput(
                subject=subject,
                author_id=author_id,
                status=status,
                assigned_to_id=assigned_to_id,
                created_at=created_at,
            )
        )
        return record.id

    def update(
        self,
        record_id: int,
        actor_id: int,
        at: datetime,
        *,
        notes: str | None = None,
        **changes: object,
    ) -> None:
        """Apply a journaled update to a record."""
        from records.repository import RecordUpdateInput

        self._records.update(
            record_id,
            RecordUpdateInput(actor_id=actor_id, changes=changes, notes=notes, occurred_at=at),
        )


@pytest.fixture()
def scenario(sqlite_session_factory: sessionmaker) -> Scenario:
    """Provide a scenario builder bound to the sqlite session factory."""
    return Scenario(sqlite_session_factory)


@pytest.fixture()
def filter_services(sqlite_session_factory: sessionmaker):
    """Provide the default filter engine wired to sqlite."""
    from services.filter_engine import create_filter_engine

    return create_filter_engine(sqlite_session_factory)
