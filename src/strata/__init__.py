"""strata - versioned SQL schema migrations."""

from strata.config import EngineConfig
from strata.drivers import register_builtin_drivers, register_driver
from strata.engine import Engine, MigrationStatus
from strata.errors import (
    ConfigurationError,
    ConnectivityError,
    ExecutionError,
    MigrationIOError,
    ParseError,
    StateError,
    StrataError,
)
from strata.fs import LocalFileSystem, MemoryFileSystem
from strata.source import Migration

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "ConnectivityError",
    "Engine",
    "EngineConfig",
    "ExecutionError",
    "LocalFileSystem",
    "MemoryFileSystem",
    "Migration",
    "MigrationIOError",
    "MigrationStatus",
    "ParseError",
    "StateError",
    "StrataError",
    "__version__",
    "register_builtin_drivers",
    "register_driver",
]
