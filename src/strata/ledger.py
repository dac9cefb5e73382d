"""The applied-migrations ledger stored in the target database."""

from __future__ import annotations

from sqlalchemy.engine import Connection

from strata.drivers import Driver


class Ledger:
    """Reads and writes applied versions through a driver.

    The ledger never opens or commits transactions itself; writes join
    whatever transaction the caller has open on `conn`.
    """

    def __init__(self, driver: Driver, conn: Connection) -> None:
        self.driver = driver
        self.conn = conn

    def table_exists(self) -> bool:
        return self.driver.migrations_table_exists(self.conn)

    def ensure_table(self) -> None:
        """Create the ledger table if it does not exist yet."""
        if not self.table_exists():
            self.driver.create_migrations_table(self.conn)

    def select_applied(self, limit: int = -1, missing_ok: bool = False) -> dict[str, bool]:
        """Applied versions, newest first.

        Args:
            limit: Maximum number of versions, -1 for all.
            missing_ok: Return an empty mapping instead of querying when the
                table does not exist. Used by read-only status queries.
        """
        if missing_ok and not self.table_exists():
            return {}
        return self.driver.select_migrations(self.conn, limit)

    def latest(self, missing_ok: bool = False) -> str | None:
        """The most recently applied version, or None."""
        applied = self.select_applied(limit=1, missing_ok=missing_ok)
        return next(iter(applied), None)

    def insert_applied(self, version: str) -> None:
        self.driver.insert_migration(self.conn, version)

    def delete_applied(self, version: str) -> None:
        self.driver.delete_migration(self.conn, version)
