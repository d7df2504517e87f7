"""Services module for the record filter engine."""

from services.database import check_connection, get_session_factory, run_migrations
from services.filter_engine import FilterEngineServices, create_filter_engine

__all__ = [
    "check_connection",
    "create_filter_engine",
    "FilterEngineServices",
    "get_session_factory",
    "run_migrations",
]
