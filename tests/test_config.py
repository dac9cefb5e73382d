"""Tests for the configuration module."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from strata.config import EngineConfig, apply_env_overrides
from strata.fs import MemoryFileSystem


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in [
        "DATABASE_URL",
        "STRATA_MIGRATIONS_DIR",
        "STRATA_MIGRATIONS_TABLE",
        "STRATA_SCHEMA_FILE",
        "STRATA_LOG_LEVEL",
        "STRATA_LOG_JSON",
    ]:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def sample_config_yaml(tmp_path: Path) -> Path:
    """Create a sample config file for testing."""
    config = {
        "database_url": "sqlite:///app.sqlite3",
        "migrations_dir": ["db/migrations", "db/seed"],
        "migrations_table": "ledger",
        "schema_file": "db/structure.sql",
        "wait_before": True,
        "wait_timeout": 5,
        "log_level": "debug",
    }
    config_path = tmp_path / "strata.yaml"
    with open(config_path, "w") as f:
        yaml.dump(config, f)
    return config_path


def test_defaults() -> None:
    config = EngineConfig()

    assert config.database_url is None
    assert config.migrations_dir == ["./db/migrations"]
    assert config.migrations_table == "schema_migrations"
    assert config.schema_file == "./db/schema.sql"
    assert config.auto_dump_schema is True
    assert config.auto_load_schema is False
    assert config.prune is False
    assert config.strict is False
    assert config.verbose is False
    assert config.fs is None


def test_config_load(sample_config_yaml: Path) -> None:
    config = EngineConfig.load(sample_config_yaml)

    assert config.database_url == "sqlite:///app.sqlite3"
    assert config.migrations_dir == ["db/migrations", "db/seed"]
    assert config.migrations_table == "ledger"
    assert config.wait_before is True
    assert config.wait_timeout == 5.0
    assert config.log_level == "DEBUG"


def test_config_load_not_found() -> None:
    with pytest.raises(FileNotFoundError):
        EngineConfig.load(Path("/nonexistent/strata.yaml"))


def test_load_or_default_missing_file() -> None:
    config = EngineConfig.load_or_default("/nonexistent/strata.yaml")

    assert config.migrations_table == "schema_migrations"


def test_env_overrides(sample_config_yaml: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "sqlite:///other.sqlite3")
    monkeypatch.setenv("STRATA_MIGRATIONS_DIR", "a, b")
    monkeypatch.setenv("STRATA_LOG_JSON", "true")

    config = EngineConfig.load(sample_config_yaml)

    assert config.database_url == "sqlite:///other.sqlite3"
    assert config.migrations_dir == ["a", "b"]
    assert config.log_json is True


def test_env_overrides_do_not_mutate_input() -> None:
    values = {"migrations_table": "x"}

    apply_env_overrides(values)

    assert values == {"migrations_table": "x"}


def test_schema_path(tmp_path: Path) -> None:
    assert EngineConfig(base_dir=tmp_path).schema_path == tmp_path / "db" / "schema.sql"
    assert EngineConfig(schema_file="/abs/schema.sql").schema_path == Path("/abs/schema.sql")


@pytest.mark.parametrize(
    "values",
    [
        {"migrations_dir": []},
        {"migrations_table": " "},
        {"wait_interval": 0},
        {"wait_timeout": -1},
        {"log_level": "TRACE"},
    ],
)
def test_invalid_values(values: dict) -> None:
    with pytest.raises(ValidationError):
        EngineConfig(**values)


def test_filesystem_overlay_not_serialized() -> None:
    config = EngineConfig(fs=MemoryFileSystem({"db/migrations/1_x.sql": ""}))

    assert config.fs is not None
    assert "fs" not in config.model_dump()


@pytest.mark.parametrize("field", ["wait_timeout", "wait_interval"])
def test_assignment_is_validated(field: str) -> None:
    config = EngineConfig()

    with pytest.raises(ValidationError):
        setattr(config, field, 0)

    assert getattr(config, field) > 0
