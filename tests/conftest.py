"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest
from click.testing import CliRunner
from sqlalchemy import create_engine, text

from strata.config import EngineConfig
from strata.drivers import register_builtin_drivers
from strata.engine import Engine

USERS_MIGRATION = """\
-- migrate:up
create table users (
  id integer,
  name varchar(255)
);
insert into users (id, name) values (1, 'alice');

-- migrate:down
drop table users;
"""

POSTS_MIGRATION = """\
-- migrate:up
create table posts (
  id integer,
  name varchar(255)
);

-- migrate:down
drop table posts;
"""

USERS_VERSION = "20151129054053"
POSTS_VERSION = "20200227231541"


@pytest.fixture(autouse=True)
def builtin_drivers() -> None:
    """Register the bundled drivers for every test."""
    register_builtin_drivers()


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def migrations_dir(tmp_path: Path) -> Path:
    """A migrations directory holding the users and posts migrations."""
    directory = tmp_path / "db" / "migrations"
    directory.mkdir(parents=True)
    (directory / f"{USERS_VERSION}_test_migration.sql").write_text(USERS_MIGRATION)
    (directory / f"{POSTS_VERSION}_test_posts.sql").write_text(POSTS_MIGRATION)
    return directory


@pytest.fixture
def database_path(tmp_path: Path) -> Path:
    return tmp_path / "test.sqlite3"


@pytest.fixture
def config(tmp_path: Path, database_path: Path, migrations_dir: Path) -> EngineConfig:
    """Engine configuration against a sqlite file in tmp_path."""
    return EngineConfig(
        database_url=f"sqlite:///{database_path}",
        base_dir=tmp_path,
        auto_dump_schema=False,
    )


@pytest.fixture
def engine(config: EngineConfig) -> Engine:
    return Engine(config)


def query(database_path: Path, sql: str) -> list:
    """Run a query directly against the sqlite file, bypassing strata."""
    db = create_engine(f"sqlite:///{database_path}")
    try:
        with db.connect() as conn:
            return list(conn.execute(text(sql)))
    finally:
        db.dispose()


def table_names(database_path: Path) -> set[str]:
    rows = query(database_path, "SELECT name FROM sqlite_master WHERE type = 'table'")
    return {row.name for row in rows}


def applied_versions(database_path: Path, table: str = "schema_migrations") -> set[str]:
    return {row.version for row in query(database_path, f"SELECT version FROM {table}")}
