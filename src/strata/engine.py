"""Migration engine for strata.

This module orchestrates everything else:
- Discovering migration files across the configured roots
- Applying pending migrations and rolling back the latest one
- Waiting for the database to become reachable
- Dumping, loading and pruning against the schema snapshot

Each public method is a self-contained operation. It builds its own driver,
opens and closes its own connection, and keeps no state between calls
other than the configuration.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import click
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from strata.config import EngineConfig
from strata.drivers import Driver, get_driver
from strata.errors import (
    ConfigurationError,
    ConnectivityError,
    ExecutionError,
    MigrationIOError,
    MigrationNotFoundError,
    NoMigrationsAppliedError,
    PartialMigrationError,
    StateError,
)
from strata.fs import FileSystem, LocalFileSystem
from strata.ledger import Ledger
from strata.logging import get_logger
from strata.parser import Block
from strata.source import Migration, discover

log = get_logger("engine")

MIGRATION_TEMPLATE = "-- migrate:up\n\n\n-- migrate:down\n\n"


def describe_error(error: SQLAlchemyError) -> str:
    """Message of the underlying DBAPI error when there is one."""
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)


@dataclass
class MigrationStatus:
    """Snapshot of which migrations are applied."""

    migrations: list[Migration]

    @property
    def applied(self) -> list[Migration]:
        return [m for m in self.migrations if m.applied]

    @property
    def pending(self) -> list[Migration]:
        return [m for m in self.migrations if not m.applied]


class Engine:
    """Runs migrations against the database named by the configuration."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config if config is not None else EngineConfig()

    # =========================================================================
    # Helpers
    # =========================================================================

    @property
    def fs(self) -> FileSystem:
        """The configured overlay, or the real filesystem under base_dir."""
        if self.config.fs is not None:
            return self.config.fs
        return LocalFileSystem(self.config.base_dir)

    def driver(self) -> Driver:
        """Build the driver for the configured URL.

        Raises:
            ConfigurationError: If the URL is missing, invalid or unsupported.
        """
        return get_driver(
            self.config.database_url,
            migrations_table=self.config.migrations_table,
            base_dir=self.config.base_dir,
        )

    def _echo(self, message: str) -> None:
        if self.config.verbose:
            click.echo(message)

    def _discover(self) -> list[Migration]:
        return discover(self.config.migrations_dir, self.fs, overlay=self.config.fs)

    def _wait_if_configured(self, driver: Driver) -> None:
        if self.config.wait_before:
            self._wait(driver)

    # =========================================================================
    # Database administration
    # =========================================================================

    def create(self) -> None:
        """Create the database."""
        driver = self.driver()
        self._wait_if_configured(driver)
        self._create(driver)

    def _create(self, driver: Driver) -> None:
        self._echo(f"Creating: {driver.display_name()}")
        log.info("creating_database", database=driver.display_name())
        driver.create_database()

    def drop(self) -> None:
        """Drop the database if it exists."""
        driver = self.driver()
        self._wait_if_configured(driver)
        self._echo(f"Dropping: {driver.display_name()}")
        log.info("dropping_database", database=driver.display_name())
        driver.drop_database()

    def create_and_migrate(self) -> list[Migration]:
        """Create the database if it is missing, then migrate it."""
        driver = self.driver()
        self._wait_if_configured(driver)
        if not driver.database_exists():
            self._create(driver)
        return self.migrate()

    # =========================================================================
    # Wait
    # =========================================================================

    def wait(self) -> None:
        """Block until the database is reachable or the wait timeout passes.

        Raises:
            ConnectivityError: The last connection error, once the timeout
                has elapsed.
        """
        self._wait(self.driver())

    def _wait(self, driver: Driver) -> None:
        interval = self.config.wait_interval
        timeout = self.config.wait_timeout

        self._echo("Waiting for database...")
        log.info("waiting_for_database", interval=interval, timeout=timeout)

        started = time.monotonic()
        attempts = 0
        while True:
            attempts += 1
            try:
                driver.ping()
            except ConnectivityError as e:
                elapsed = time.monotonic() - started
                if elapsed >= timeout:
                    log.error("wait_timeout", attempts=attempts, elapsed=elapsed, error=str(e))
                    raise
                log.debug("database_not_ready", attempt=attempts, error=str(e))
                time.sleep(interval)
            else:
                log.info("database_ready", attempts=attempts)
                return

    # =========================================================================
    # Migrate / rollback
    # =========================================================================

    def migrate(self) -> list[Migration]:
        """Apply all pending migrations in version order.

        Stops at the first failing migration; migrations applied before it in
        the same call stay applied.

        Returns:
            The migrations applied by this call.

        Raises:
            StateError: If there is nothing to migrate from, or strict mode
                finds a pending migration older than the latest applied one.
            ParseError: If a pending migration file is malformed.
            ExecutionError: If a statement fails.
        """
        driver = self.driver()
        self._wait_if_configured(driver)

        loaded = False
        if self.config.auto_load_schema and self.config.schema_path.exists():
            with driver.open() as conn:
                with conn.begin():
                    ledger_empty = not Ledger(driver, conn).select_applied(
                        limit=1, missing_ok=True
                    )
            if ledger_empty:
                log.info("auto_loading_schema", schema_file=self.config.schema_file)
                self._load_schema(driver)
                loaded = True

        migrations = self._discover()
        if not migrations and not loaded:
            raise StateError("no migration files found")

        applied_now: list[Migration] = []
        with driver.open() as conn:
            ledger = Ledger(driver, conn)
            with conn.begin():
                ledger.ensure_table()
                applied = ledger.select_applied()

            pending = [m for m in migrations if m.version not in applied]
            if self.config.strict:
                self._check_order(pending, applied)

            if not pending:
                log.info("no_pending_migrations")

            for migration in pending:
                parsed = migration.parse()

                self._echo(f"Applying: {migration.file_name}")
                log.info("applying_migration", version=migration.version, file=migration.file_name)

                self._run_block(
                    conn,
                    driver,
                    migration,
                    parsed.up,
                    record=lambda version=migration.version: ledger.insert_applied(version),
                )
                migration.applied = True
                applied_now.append(migration)
                log.info("migration_applied", version=migration.version)

        if applied_now:
            log.info("migrations_complete", count=len(applied_now))

        if self.config.auto_dump_schema:
            self._dump_schema(driver)

        return applied_now

    @staticmethod
    def _check_order(pending: list[Migration], applied: dict[str, bool]) -> None:
        if not applied:
            return
        latest = max(applied)
        for migration in pending:
            if migration.version < latest:
                raise StateError(
                    f"migration `{migration.version}` is out of order with already "
                    f"applied migrations, the version number has to be higher than "
                    f"the applied migration `{latest}`"
                )

    def rollback(self) -> Migration:
        """Roll back the most recently applied migration.

        Returns:
            The migration that was rolled back.

        Raises:
            NoMigrationsAppliedError: If the ledger is empty.
            MigrationNotFoundError: If the latest version has no file.
            ExecutionError: If a statement fails.
        """
        driver = self.driver()
        self._wait_if_configured(driver)

        with driver.open() as conn:
            ledger = Ledger(driver, conn)
            with conn.begin():
                latest = ledger.latest(missing_ok=True)
            if latest is None:
                raise NoMigrationsAppliedError()

            migration = next((m for m in self._discover() if m.version == latest), None)
            if migration is None:
                raise MigrationNotFoundError(latest)

            parsed = migration.parse()

            self._echo(f"Rolling back: {migration.file_name}")
            log.info("rolling_back_migration", version=migration.version, file=migration.file_name)

            self._run_block(
                conn,
                driver,
                migration,
                parsed.down,
                record=lambda: ledger.delete_applied(migration.version),
            )
            migration.applied = False
            log.info("migration_rolled_back", version=migration.version)

        if self.config.auto_dump_schema:
            self._dump_schema(driver)

        return migration

    def _run_block(
        self,
        conn: Connection,
        driver: Driver,
        migration: Migration,
        block: Block,
        record: Callable[[], None],
    ) -> None:
        """Execute one block and update the ledger.

        With transactions enabled the statements and the ledger change commit
        together or not at all. Without, each statement commits as it runs
        and the ledger change is committed afterwards.
        """
        statements = driver.split_statements(block.sql)

        if block.options.transaction:
            try:
                with conn.begin():
                    self._execute(conn, statements)
                    record()
            except SQLAlchemyError as e:
                log.error("migration_failed", version=migration.version, error=describe_error(e))
                raise ExecutionError(
                    f"{migration.file_name}: {describe_error(e)}", migration.file_name
                ) from e
            return

        log.warning("migration_without_transaction", version=migration.version)
        executed = 0
        try:
            for statement in statements:
                self._execute(conn, [statement])
                conn.commit()
                executed += 1
            record()
            conn.commit()
        except SQLAlchemyError as e:
            conn.rollback()
            log.error(
                "migration_failed",
                version=migration.version,
                transaction=False,
                statements_committed=executed,
                error=describe_error(e),
            )
            raise PartialMigrationError(
                f"{migration.file_name}: {describe_error(e)} (migration runs without a "
                f"transaction, {executed} of {len(statements)} statements were committed)",
                migration.file_name,
            ) from e

    def _execute(self, conn: Connection, statements: list[str]) -> None:
        for statement in statements:
            result = conn.exec_driver_sql(statement)
            rows = result.rowcount
            result.close()
            self._echo(f"Rows affected: {max(rows, 0)}")

    # =========================================================================
    # Schema snapshot
    # =========================================================================

    def dump_schema(self) -> None:
        """Write the schema snapshot, then prune if configured."""
        driver = self.driver()
        self._wait_if_configured(driver)
        self._dump_schema(driver)

    def _dump_schema(self, driver: Driver) -> None:
        with driver.open() as conn:
            with conn.begin():
                schema = driver.dump_schema(conn)
                applied = Ledger(driver, conn).select_applied(missing_ok=True)

        path = self.config.schema_path
        self._echo(f"Writing: {self.config.schema_file}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(schema, encoding="utf-8")
        except OSError as e:
            raise MigrationIOError(f"unable to write schema file `{path}`: {e}") from e
        log.info("schema_dumped", schema_file=str(path), applied=len(applied))

        if self.config.prune:
            self._prune(applied)

    def _prune(self, applied: dict[str, bool]) -> None:
        """Delete migration files whose effect the snapshot now holds."""
        if not applied:
            return
        highest = max(applied)
        pruned = 0
        for migration in self._discover():
            if migration.version in applied and migration.version <= highest:
                self._echo(f"Pruning: {migration.file_path}")
                self.fs.remove(migration.file_path)
                pruned += 1
        log.info("migrations_pruned", count=pruned, highest_version=highest)

    def load_schema(self) -> None:
        """Execute the schema snapshot against the (empty) database."""
        driver = self.driver()
        self._wait_if_configured(driver)
        self._load_schema(driver)

    def _load_schema(self, driver: Driver) -> None:
        path = self.config.schema_path
        try:
            sql = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise MigrationIOError(f"schema file does not exist: {path}") from e
        except OSError as e:
            raise MigrationIOError(f"unable to read schema file `{path}`: {e}") from e

        with driver.open() as conn:
            try:
                with conn.begin():
                    driver.load_schema(conn, sql)
            except SQLAlchemyError as e:
                raise ExecutionError(f"{self.config.schema_file}: {describe_error(e)}") from e
        log.info("schema_loaded", schema_file=str(path))

    # =========================================================================
    # Reporting
    # =========================================================================

    def find_migrations(self) -> list[Migration]:
        """Discovered migrations with their applied flag set from the ledger.

        Read-only: a missing database or ledger table means nothing is applied.
        """
        driver = self.driver()
        migrations = self._discover()

        applied: dict[str, bool] = {}
        if driver.database_exists():
            with driver.open() as conn:
                with conn.begin():
                    applied = Ledger(driver, conn).select_applied(missing_ok=True)

        for migration in migrations:
            migration.applied = migration.version in applied
        return migrations

    def status(self) -> MigrationStatus:
        return MigrationStatus(self.find_migrations())

    def new_migration(self, name: str) -> Path:
        """Create an empty, timestamped migration file in the first root.

        Returns:
            Path of the new file.
        """
        if not name:
            raise ConfigurationError("please specify a name for the new migration")
        if self.config.fs is not None:
            raise ConfigurationError("cannot create migrations inside a filesystem overlay")

        version = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        file_name = f"{version}_{name}.sql"
        root = self.config.migrations_dir[0]
        directory = LocalFileSystem(self.config.base_dir).resolve(root)
        path = directory / file_name

        if path.exists():
            raise MigrationIOError(f"file already exists: {path}")

        try:
            directory.mkdir(parents=True, exist_ok=True)
            path.write_text(MIGRATION_TEMPLATE, encoding="utf-8")
        except OSError as e:
            raise MigrationIOError(f"unable to create migration `{path}`: {e}") from e

        log.info("migration_created", file=file_name)
        return path
