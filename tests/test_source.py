"""Tests for migration discovery."""

from pathlib import Path

import pytest

from strata.errors import DuplicateVersionError, MigrationIOError
from strata.fs import LocalFileSystem, MemoryFileSystem
from strata.source import Migration, discover, join_root


@pytest.fixture
def memory_fs() -> MemoryFileSystem:
    return MemoryFileSystem(
        {
            "db/migrations/20151129054053_test_migration.sql": "",
            "db/migrations/001_test_migration.sql": (
                "-- migrate:up\n"
                "create table users (id serial, name text);\n"
                "-- migrate:down\n"
                "drop table users;\n"
            ),
            "db/migrations/002_test_migration.sql": "",
            "db/migrations/003_not_sql.txt": "",
            "db/migrations/missing_version.sql": "",
            "db/not_migrations/20151129054053_test_migration.sql": "",
        }
    )


class TestDiscover:
    """Listing and filtering migration files."""

    def test_filters_and_orders(self, memory_fs: MemoryFileSystem) -> None:
        migrations = discover(["db/migrations"], memory_fs, overlay=memory_fs)

        assert [m.file_name for m in migrations] == [
            "001_test_migration.sql",
            "002_test_migration.sql",
            "20151129054053_test_migration.sql",
        ]
        assert [m.version for m in migrations] == ["001", "002", "20151129054053"]
        assert migrations[0].file_path == "db/migrations/001_test_migration.sql"
        assert all(m.applied is False for m in migrations)
        assert all(m.fs is memory_fs for m in migrations)

    def test_parse_through_overlay(self, memory_fs: MemoryFileSystem) -> None:
        migration = discover(["db/migrations"], memory_fs)[0]

        parsed = migration.parse()

        assert parsed.up.sql == "-- migrate:up\ncreate table users (id serial, name text);\n"
        assert parsed.down.sql == "-- migrate:down\ndrop table users;\n"

    def test_merges_multiple_roots(self) -> None:
        fs = MemoryFileSystem(
            {
                "db/migrations_a/001_test_migration_a.sql": "",
                "db/migrations_a/005_test_migration_a.sql": "",
                "db/migrations_b/003_test_migration_b.sql": "",
                "db/migrations_b/004_test_migration_b.sql": "",
                "db/migrations_c/002_test_migration_c.sql": "",
                "db/migrations_c/006_test_migration_c.sql": "",
            }
        )
        roots = ["./db/migrations_a", "./db/migrations_b", "./db/migrations_c"]

        migrations = discover(roots, fs)

        assert [m.file_path for m in migrations] == [
            "db/migrations_a/001_test_migration_a.sql",
            "db/migrations_c/002_test_migration_c.sql",
            "db/migrations_b/003_test_migration_b.sql",
            "db/migrations_b/004_test_migration_b.sql",
            "db/migrations_a/005_test_migration_a.sql",
            "db/migrations_c/006_test_migration_c.sql",
        ]

    def test_order_independent_of_root_order(self) -> None:
        fs = MemoryFileSystem(
            {
                "a/002_b.sql": "",
                "b/001_a.sql": "",
                "b/003_c.sql": "",
            }
        )

        forward = [m.version for m in discover(["a", "b"], fs)]
        backward = [m.version for m in discover(["b", "a"], fs)]

        assert forward == backward == ["001", "002", "003"]

    def test_versions_compare_as_strings(self) -> None:
        fs = MemoryFileSystem({"m/9_nine.sql": "", "m/10_ten.sql": ""})

        assert [m.version for m in discover(["m"], fs)] == ["10", "9"]

    def test_duplicate_version_across_roots(self) -> None:
        fs = MemoryFileSystem({"a/001_first.sql": "", "b/001_second.sql": ""})

        with pytest.raises(DuplicateVersionError) as exc_info:
            discover(["a", "b"], fs)

        assert exc_info.value.version == "001"
        assert exc_info.value.paths == ("a/001_first.sql", "b/001_second.sql")

    def test_missing_root(self, memory_fs: MemoryFileSystem) -> None:
        with pytest.raises(MigrationIOError, match="could not find migrations directory"):
            discover(["db/nope"], memory_fs)

    def test_subdirectories_are_not_descended(self) -> None:
        fs = MemoryFileSystem({"m/nested/001_hidden.sql": "", "m/002_visible.sql": ""})

        assert [m.file_name for m in discover(["m"], fs)] == ["002_visible.sql"]


class TestDiscoverLocal:
    """Discovery on the real filesystem."""

    def test_relative_root(self, tmp_path: Path) -> None:
        root = tmp_path / "db" / "migrations"
        root.mkdir(parents=True)
        (root / "20151129054053_test_migration.sql").write_text("")

        migrations = discover(["db/migrations"], LocalFileSystem(tmp_path))

        assert migrations[0].file_path == "db/migrations/20151129054053_test_migration.sql"
        assert migrations[0].fs is None

    def test_absolute_root(self, tmp_path: Path) -> None:
        (tmp_path / "1234_example.sql").write_text("")

        migrations = discover([str(tmp_path)], LocalFileSystem("/nonexistent"))

        assert len(migrations) == 1
        assert migrations[0].file_path == f"{tmp_path}/1234_example.sql"
        assert Path(migrations[0].file_path).is_absolute()
        assert migrations[0].file_name == "1234_example.sql"
        assert migrations[0].version == "1234"
        assert migrations[0].applied is False


class TestMigration:
    def test_read_without_filesystem(self) -> None:
        migration = Migration(version="1", file_name="1_x.sql", file_path="1_x.sql")

        with pytest.raises(RuntimeError):
            migration.read()

    def test_join_root_keeps_relative_and_absolute(self) -> None:
        assert join_root("./db/migrations", "1_x.sql") == "db/migrations/1_x.sql"
        assert join_root("/srv/migrations/", "1_x.sql") == "/srv/migrations/1_x.sql"
