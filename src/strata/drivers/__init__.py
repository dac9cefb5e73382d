"""Database drivers and the scheme registry.

Backends are looked up by URL scheme (the SQLAlchemy backend name, so
`sqlite+pysqlite://` resolves to `sqlite`). Nothing registers itself on
import: applications call register_builtin_drivers() once at startup, and
may register their own factories next to the built-in ones.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

from strata.drivers.base import Driver, SQLAlchemyDriver
from strata.errors import ConfigurationError

DriverFactory = Callable[..., Driver]

INVALID_URL_MESSAGE = (
    "invalid url, have you set your --url flag or DATABASE_URL environment variable?"
)

_registry: dict[str, DriverFactory] = {}


def register_driver(scheme: str, factory: DriverFactory) -> None:
    """Register a driver factory for a URL scheme, replacing any previous one."""
    _registry[scheme] = factory


def unregister_driver(scheme: str) -> None:
    _registry.pop(scheme, None)


def registered_schemes() -> list[str]:
    return sorted(_registry)


def get_driver_factory(scheme: str) -> DriverFactory:
    """Look up the factory for a scheme.

    Raises:
        ConfigurationError: If no driver is registered for the scheme.
    """
    try:
        return _registry[scheme]
    except KeyError:
        raise ConfigurationError(f"unsupported driver: {scheme}") from None


def register_builtin_drivers() -> None:
    """Register the drivers that ship with strata."""
    from strata.drivers.sqlite import SQLiteDriver

    register_driver("sqlite", SQLiteDriver)


def parse_url(database_url: str | None) -> URL:
    """Parse a database URL.

    Raises:
        ConfigurationError: If the URL is missing or has no scheme.
    """
    if not database_url:
        raise ConfigurationError(INVALID_URL_MESSAGE)
    try:
        return make_url(database_url)
    except ArgumentError as e:
        raise ConfigurationError(INVALID_URL_MESSAGE) from e


def get_driver(
    database_url: str | None,
    migrations_table: str = "schema_migrations",
    base_dir: Path | None = None,
) -> Driver:
    """Build the driver for a database URL."""
    url = parse_url(database_url)
    factory = get_driver_factory(url.get_backend_name())
    return factory(url, migrations_table=migrations_table, base_dir=base_dir)


__all__ = [
    "Driver",
    "DriverFactory",
    "SQLAlchemyDriver",
    "get_driver",
    "get_driver_factory",
    "parse_url",
    "register_builtin_drivers",
    "register_driver",
    "registered_schemes",
    "unregister_driver",
]
