"""Database engine and session management."""

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from config import settings

logger = logging.getLogger(__name__)

_sync_engine = None
_sync_session_factory: sessionmaker | None = None


def get_db_url() -> str:
    return settings.database.url


def get_sync_engine():
    global _sync_engine
    if _sync_engine is None:
        _sync_engine = create_engine(
            get_db_url(),
            pool_pre_ping=True,
        )
    return _sync_engine


def get_session_factory() -> sessionmaker:
    """Return the process-wide session factory, creating it on first use."""
    global _sync_session_factory
    if _sync_session_factory is None:
        _sync_session_factory = sessionmaker(bind=get_sync_engine())
    return _sync_session_factory


def get_sync_session() -> Session:
    return get_session_factory()()


def run_migrations() -> None:
    """Apply Alembic migrations up to head."""
    repo_root = Path(__file__).resolve().parents[2]
    alembic_cfg = Config(str(repo_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(repo_root / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", get_db_url())
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations applied")


def check_connection() -> bool:
    """Check if database connection is working."""
    try:
        with get_sync_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
