"""Error types raised across the QuerySight core."""

from typing import Iterable, Optional


class QuerySightError(Exception):
    """Base class for all QuerySight errors."""
    pass


class ConnectError(QuerySightError):
    """The adapter could not establish its connection pool."""
    pass


class NotConnectedError(QuerySightError):
    """An operation needed an active adapter but none is initialized."""
    pass


class RejectedQueryError(QuerySightError):
    """The candidate query matched the deny-list or is not a SELECT."""

    def __init__(self, message: str, pattern: Optional[str] = None):
        super().__init__(message)
        self.pattern = pattern


class AccessDeniedError(QuerySightError):
    """The query references tables outside the request's allow-list."""

    def __init__(self, tables: Iterable[str]):
        self.tables = sorted(set(tables))
        super().__init__(f"Access denied to tables: {', '.join(self.tables)}")


class ExecutionError(QuerySightError):
    """The engine failed while running a validated, authorized query."""
    pass


class QueryTimeoutError(ExecutionError):
    """The request-level deadline elapsed before the engine answered."""
    pass
