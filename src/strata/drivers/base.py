"""The capability contract every database backend implements.

The engine only ever talks to a backend through these methods. Ledger
bookkeeping is generic SQLAlchemy Core and lives in SQLAlchemyDriver;
backends supply administration (create/drop/ping) and schema dump/load.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Column, MetaData, String, Table, delete, inspect, select
from sqlalchemy.engine import URL, Connection, Engine, create_engine
from sqlalchemy.exc import SQLAlchemyError

from strata.errors import ConnectivityError


class Driver(ABC):
    """A database backend.

    Drivers are cheap to build; the engine creates one per operation and
    every connection it opens is closed before the operation returns.
    """

    def __init__(
        self,
        url: URL,
        migrations_table: str = "schema_migrations",
        base_dir: Path | None = None,
    ) -> None:
        self.url = url
        self.migrations_table = migrations_table
        self.base_dir = base_dir

    # -- connections ---------------------------------------------------------

    @abstractmethod
    def open(self) -> Iterator[Connection]:
        """Context manager yielding a connection to the target database."""

    @abstractmethod
    def ping(self) -> None:
        """Check the database server is reachable.

        Raises:
            ConnectivityError: With the transport error text embedded.
        """

    # -- administration ------------------------------------------------------

    @abstractmethod
    def create_database(self) -> None: ...

    @abstractmethod
    def drop_database(self) -> None: ...

    @abstractmethod
    def database_exists(self) -> bool: ...

    # -- ledger --------------------------------------------------------------

    @abstractmethod
    def migrations_table_exists(self, conn: Connection) -> bool: ...

    @abstractmethod
    def create_migrations_table(self, conn: Connection) -> None: ...

    @abstractmethod
    def select_migrations(self, conn: Connection, limit: int = -1) -> dict[str, bool]:
        """Return applied versions, newest first, at most `limit` (-1 for all)."""

    @abstractmethod
    def insert_migration(self, conn: Connection, version: str) -> None: ...

    @abstractmethod
    def delete_migration(self, conn: Connection, version: str) -> None: ...

    # -- schema snapshot -----------------------------------------------------

    @abstractmethod
    def dump_schema(self, conn: Connection) -> str:
        """Export structure plus ledger rows as a SQL script."""

    @abstractmethod
    def load_schema(self, conn: Connection, sql: str) -> None:
        """Execute a schema script produced by dump_schema."""

    # -- statements ----------------------------------------------------------

    @abstractmethod
    def split_statements(self, sql: str) -> list[str]:
        """Split a block of SQL into individually executable statements."""

    def quote_identifier(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    def display_name(self) -> str:
        """Database name for progress output."""
        return self.url.database or self.url.render_as_string(hide_password=True)


class SQLAlchemyDriver(Driver):
    """Driver base that implements connections and the ledger with SQLAlchemy Core."""

    def __init__(
        self,
        url: URL,
        migrations_table: str = "schema_migrations",
        base_dir: Path | None = None,
    ) -> None:
        super().__init__(url, migrations_table, base_dir)
        self.metadata = MetaData()
        self.table = Table(
            migrations_table,
            self.metadata,
            Column("version", String(128), primary_key=True),
        )

    def create_engine(self) -> Engine:
        """Build a fresh SQLAlchemy engine for one operation."""
        return create_engine(self.url)

    @contextmanager
    def open(self) -> Iterator[Connection]:
        engine = self.create_engine()
        try:
            try:
                conn = engine.connect()
            except SQLAlchemyError as e:
                raise ConnectivityError(
                    f"unable to connect to database: {getattr(e, 'orig', None) or e}"
                ) from e
            with conn:
                yield conn
        finally:
            engine.dispose()

    def ping(self) -> None:
        with self.open() as conn:
            try:
                conn.exec_driver_sql("SELECT 1")
            except SQLAlchemyError as e:
                raise ConnectivityError(
                    f"unable to connect to database: {getattr(e, 'orig', None) or e}"
                ) from e

    def quote_identifier(self, name: str) -> str:
        return self.url.get_dialect()().identifier_preparer.quote(name)

    def migrations_table_exists(self, conn: Connection) -> bool:
        return inspect(conn).has_table(self.migrations_table)

    def create_migrations_table(self, conn: Connection) -> None:
        self.table.create(conn, checkfirst=True)

    def select_migrations(self, conn: Connection, limit: int = -1) -> dict[str, bool]:
        query = select(self.table.c.version).order_by(self.table.c.version.desc())
        if limit >= 0:
            query = query.limit(limit)
        return {row.version: True for row in conn.execute(query)}

    def insert_migration(self, conn: Connection, version: str) -> None:
        conn.execute(self.table.insert().values(version=version))

    def delete_migration(self, conn: Connection, version: str) -> None:
        conn.execute(delete(self.table).where(self.table.c.version == version))

    def load_schema(self, conn: Connection, sql: str) -> None:
        for statement in self.split_statements(sql):
            conn.exec_driver_sql(statement)
