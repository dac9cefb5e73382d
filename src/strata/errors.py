"""Error hierarchy for strata.

Every engine operation raises a subclass of StrataError so callers can catch
one type, or discriminate on the concrete class when they need to.
"""

from __future__ import annotations


class StrataError(Exception):
    """Base exception for all strata failures."""


class ConfigurationError(StrataError):
    """Missing or invalid configuration (bad URL, unknown backend, ...)."""


class DuplicateVersionError(ConfigurationError):
    """Two migration files share the same version."""

    def __init__(self, version: str, first: str, second: str) -> None:
        super().__init__(
            f"duplicate migration version {version}: `{first}` and `{second}`"
        )
        self.version = version
        self.paths = (first, second)


class ConnectivityError(StrataError):
    """The database could not be reached."""


class ParseError(StrataError):
    """A migration file is malformed."""


class StateError(StrataError):
    """The ledger is not in a state that allows the requested operation."""


class NoMigrationsAppliedError(StateError):
    """Rollback was requested but the ledger is empty."""

    def __init__(self) -> None:
        super().__init__("can't rollback: no migrations have been applied")


class MigrationNotFoundError(StateError):
    """A version recorded in the ledger has no migration file."""

    def __init__(self, version: str) -> None:
        super().__init__(f"can't find migration file: {version}")
        self.version = version


class ExecutionError(StrataError):
    """A SQL statement failed while applying or rolling back a migration.

    When the migration ran inside a transaction, everything it did has been
    rolled back by the time this is raised.
    """

    def __init__(self, message: str, file_name: str | None = None) -> None:
        super().__init__(message)
        self.file_name = file_name


class PartialMigrationError(ExecutionError):
    """A non-transactional migration failed part way through.

    Statements that ran before the failure have been committed and are not
    undone. The ledger was not updated for this migration.
    """


class MigrationIOError(StrataError, OSError):
    """Filesystem failure while discovering, dumping, loading or pruning."""


__all__ = [
    "StrataError",
    "ConfigurationError",
    "DuplicateVersionError",
    "ConnectivityError",
    "ParseError",
    "StateError",
    "NoMigrationsAppliedError",
    "MigrationNotFoundError",
    "ExecutionError",
    "PartialMigrationError",
    "MigrationIOError",
]
