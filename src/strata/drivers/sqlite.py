"""SQLite backend.

The database is a single file: creating it means opening it, dropping it
means deleting it. pysqlite's own transaction handling is switched off so
that DDL runs inside the BEGIN/COMMIT the engine asks for.
"""

from __future__ import annotations

import re
import sqlite3
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import URL, Connection, Engine, create_engine

from strata.drivers.base import SQLAlchemyDriver
from strata.errors import ConfigurationError, ConnectivityError
from strata.logging import get_logger

log = get_logger("drivers.sqlite")

SCHEMA_QUERY = (
    "SELECT name, sql FROM sqlite_master "
    r"WHERE sql IS NOT NULL AND name NOT LIKE 'sqlite\_%' ESCAPE '\' "
    "ORDER BY rowid"
)

CREATE_TABLE = re.compile(r"^\s*CREATE\s+TABLE\s+(?!IF\s+NOT\s+EXISTS\b)", re.IGNORECASE)


def has_code(sql: str) -> bool:
    """True if sql contains anything besides blank lines and `--` comments."""
    for line in sql.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("--"):
            return True
    return False


class SQLiteDriver(SQLAlchemyDriver):
    """Driver for `sqlite:///path/to/file.db` URLs."""

    def __init__(
        self,
        url: URL,
        migrations_table: str = "schema_migrations",
        base_dir: Path | None = None,
    ) -> None:
        super().__init__(url, migrations_table, base_dir)
        if not url.database or url.database == ":memory:":
            raise ConfigurationError(
                "sqlite databases must be files, in-memory databases do not "
                "outlive a single connection"
            )

    @property
    def path(self) -> Path:
        """Database file, resolved against base_dir when relative."""
        path = Path(self.url.database)
        if not path.is_absolute() and self.base_dir is not None:
            path = self.base_dir / path
        return path

    def create_engine(self) -> Engine:
        engine = create_engine(self.url.set(database=str(self.path)))

        @event.listens_for(engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin(conn):
            conn.exec_driver_sql("BEGIN")

        return engine

    def ping(self) -> None:
        if self.path.exists():
            super().ping()
            return

        # Not created yet: reachable as long as its directory is.
        try:
            self.path.parent.stat()
        except OSError as e:
            raise ConnectivityError(f"unable to connect to database: {e}") from e

    def create_database(self) -> None:
        with self.open() as conn:
            conn.exec_driver_sql("SELECT 1")
        log.debug("sqlite_database_created", path=str(self.path))

    def drop_database(self) -> None:
        if self.path.exists():
            self.path.unlink()
            log.debug("sqlite_database_dropped", path=str(self.path))

    def database_exists(self) -> bool:
        return self.path.exists()

    def display_name(self) -> str:
        return str(self.path)

    def dump_schema(self, conn: Connection) -> str:
        lines = ["-- SQLite schema dump", ""]
        for row in conn.exec_driver_sql(SCHEMA_QUERY):
            sql = row.sql
            if row.name == self.migrations_table:
                # An empty ledger may already exist when the dump is loaded
                sql = CREATE_TABLE.sub("CREATE TABLE IF NOT EXISTS ", sql, count=1)
            lines.append(f"{sql};")

        if self.migrations_table_exists(conn):
            versions = sorted(self.select_migrations(conn))
            if versions:
                lines.extend(["", "-- Applied migrations"])
                lines.append(
                    f"INSERT INTO {self.quote_identifier(self.migrations_table)} (version) VALUES"
                )
                values = [f"  ('{version}')" for version in versions]
                lines.append(",\n".join(values) + ";")

        return "\n".join(lines) + "\n"

    def split_statements(self, sql: str) -> list[str]:
        statements: list[str] = []
        start = 0
        for index, char in enumerate(sql):
            if char != ";":
                continue
            candidate = sql[start:index + 1]
            if sqlite3.complete_statement(candidate):
                statements.append(candidate.strip())
                start = index + 1

        remainder = sql[start:]
        if has_code(remainder):
            statements.append(remainder.strip())

        return [statement for statement in statements if has_code(statement)]
