"""Error taxonomy for the serving engine.

Everything except WatchError propagates to the caller of an execution, refresh
or listing operation and is rendered as a plain-text response by the HTTP layer.
"""

from __future__ import annotations


class FrogtableError(Exception):
    """Base class for engine errors."""


class ConfigurationError(FrogtableError):
    """Raised when the source/query configuration is inconsistent."""


class InvalidIdentifier(FrogtableError):
    def __init__(self, name: str):
        super().__init__(f"Invalid table name: {name}")
        self.name = name


class QueryNotFound(FrogtableError):
    def __init__(self, name: str):
        super().__init__(f"Query not found: {name}")
        self.name = name


class SourceNotFound(FrogtableError):
    def __init__(self, name: str):
        super().__init__(f"Source not found: {name}")
        self.name = name


class QueryReadError(FrogtableError):
    """Raised when the SQL file backing a query cannot be read."""


class RefreshFailed(FrogtableError):
    """A shell-command source exited with a nonzero status."""

    def __init__(self, command: str, returncode: int, stderr: str):
        message = f"Command `{command}` exited with status {returncode}"
        if stderr.strip():
            message += f": {stderr.strip()}"
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class MappingError(FrogtableError):
    """An engine value has no defined JSON representation."""


class EngineError(FrogtableError):
    """DuckDB rejected a statement (view definition, COUNT or SELECT)."""


class WatchError(FrogtableError):
    """Filesystem watch setup or delivery failed. Logged, never propagated."""


class InvalidPage(FrogtableError):
    """Page number or page size below 1."""
