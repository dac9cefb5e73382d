"""Migration discovery across one or more migration directories."""

from __future__ import annotations

import os.path
import re
from dataclasses import dataclass, field

from strata.errors import DuplicateVersionError
from strata.fs import FileSystem
from strata.logging import get_logger
from strata.parser import ParsedMigration, parse_migration

log = get_logger("source")

MIGRATION_FILE = re.compile(r"^(?P<version>[0-9]+)_.*\.sql$")


@dataclass
class Migration:
    """A migration file found on disk (or in an overlay).

    `applied` is filled in by the engine from the ledger on every query and
    is never carried over between calls.
    """

    version: str
    file_name: str
    file_path: str
    fs: FileSystem | None = None
    applied: bool = False
    source: FileSystem | None = field(default=None, repr=False, compare=False)

    def read(self) -> str:
        """Return the raw content of the migration file."""
        if self.source is None:
            raise RuntimeError(f"migration {self.file_name} has no filesystem attached")
        return self.source.read_text(self.file_path)

    def parse(self) -> ParsedMigration:
        """Read and parse the migration file into up/down blocks."""
        return parse_migration(self.read())


def join_root(root: str, name: str) -> str:
    """Join a migrations root and a file name.

    Relative roots stay relative and absolute roots stay absolute.
    """
    return os.path.normpath(os.path.join(root, name))


def discover(roots: list[str], fs: FileSystem, overlay: FileSystem | None = None) -> list[Migration]:
    """Find all migration files under the given roots.

    Args:
        roots: Migration directories, in configured order.
        fs: Filesystem used to list and later read the files.
        overlay: The configured overlay, recorded on each Migration
            (None when reading the real filesystem).

    Returns:
        Migrations from every root merged and sorted by version.

    Raises:
        MigrationIOError: If a root cannot be listed.
        DuplicateVersionError: If two files share a version.
    """
    seen: dict[str, Migration] = {}

    for root in roots:
        for name in fs.list_dir(root):
            match = MIGRATION_FILE.match(name)
            if match is None:
                continue

            migration = Migration(
                version=match.group("version"),
                file_name=name,
                file_path=join_root(root, name),
                fs=overlay,
                source=fs,
            )
            existing = seen.get(migration.version)
            if existing is not None:
                raise DuplicateVersionError(
                    migration.version, existing.file_path, migration.file_path
                )
            seen[migration.version] = migration

    migrations = sorted(seen.values(), key=lambda m: m.version)
    log.debug("migrations_discovered", roots=roots, count=len(migrations))
    return migrations
