"""Error types raised by the filter engine and its aggregates."""

from __future__ import annotations


class FilterError(Exception):
    """Base error for filter registration and query building."""

    def __init__(
        self,
        code: str,
        message: str,
        details: dict[str, object] | None = None,
    ) -> None:
        """Initialize the error with a machine-readable code and details."""
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


class UnknownFilterError(FilterError):
    """Raised when a query references a filter name that is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__("unknown_filter", f"Unknown filter: {name}", {"filter": name})


class InvalidFilterError(FilterError):
    """Raised when an operator or operand is not valid for a filter."""


class FilterRegistryError(FilterError):
    """Raised on duplicate registration or registration after startup."""


class ParticipantRefreshInProgressError(RuntimeError):
    """Raised when a non-blocking participant refresh finds one already running."""

    def __init__(self) -> None:
        super().__init__("A participant refresh is already running.")


class StaleAggregateWarning(UserWarning):
    """Participant sets were read without a refresh after journal changes.

    Logged, never raised.
    """

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "Participant sets are older than the journal; schedule a participant refresh."
        )
