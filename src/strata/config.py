"""Configuration loading and validation for strata."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from strata.fs import FileSystem


class EngineConfig(BaseModel):
    """Everything an Engine needs to know.

    Built once (from defaults, a YAML file, or CLI flags) and adjusted by
    the caller before the first operation. Engine operations only read it.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, validate_assignment=True)

    database_url: str | None = None
    migrations_dir: list[str] = Field(default_factory=lambda: ["./db/migrations"])
    migrations_table: str = "schema_migrations"
    schema_file: str = "./db/schema.sql"

    wait_before: bool = False
    wait_interval: float = 1.0  # seconds
    wait_timeout: float = 60.0  # seconds

    verbose: bool = False
    auto_dump_schema: bool = True
    auto_load_schema: bool = False
    prune: bool = False
    strict: bool = False

    # Relative migration roots, schema file and sqlite paths resolve here
    base_dir: Path = Path(".")
    fs: FileSystem | None = Field(default=None, exclude=True)

    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("migrations_dir")
    @classmethod
    def validate_migrations_dir(cls, v: list[str]) -> list[str]:
        """Require at least one migrations directory."""
        if not v:
            raise ValueError("migrations_dir must list at least one directory")
        return v

    @field_validator("migrations_table")
    @classmethod
    def validate_migrations_table(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("migrations_table must not be empty")
        return v

    @field_validator("wait_interval", "wait_timeout")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("wait durations must be positive")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log_level is valid."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v_upper

    @property
    def schema_path(self) -> Path:
        """Schema file resolved against base_dir."""
        path = Path(self.schema_file)
        return path if path.is_absolute() else self.base_dir / path

    @classmethod
    def load(cls, config_path: Path | str = Path("strata.yaml")) -> "EngineConfig":
        """Load configuration from YAML file with env var overlay.

        Args:
            config_path: Path to YAML configuration file.

        Returns:
            Validated EngineConfig instance.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            ValueError: If config is invalid.
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}

        return cls.model_validate(apply_env_overrides(yaml_config))

    @classmethod
    def load_or_default(cls, config_path: Path | str | None = None) -> "EngineConfig":
        """Load configuration, falling back to defaults if file not found.

        Environment overrides apply in both cases.
        """
        if config_path is None:
            for path in [Path("strata.yaml"), Path("strata.yml")]:
                if path.exists():
                    return cls.load(path)
            return cls.model_validate(apply_env_overrides({}))

        try:
            return cls.load(config_path)
        except FileNotFoundError:
            return cls.model_validate(apply_env_overrides({}))


def apply_env_overrides(values: dict) -> dict:
    """Overlay environment variables on raw config values."""
    values = dict(values)

    if "DATABASE_URL" in os.environ:
        values["database_url"] = os.environ["DATABASE_URL"]
    if "STRATA_MIGRATIONS_DIR" in os.environ:
        values["migrations_dir"] = [
            d.strip() for d in os.environ["STRATA_MIGRATIONS_DIR"].split(",") if d.strip()
        ]
    if "STRATA_MIGRATIONS_TABLE" in os.environ:
        values["migrations_table"] = os.environ["STRATA_MIGRATIONS_TABLE"]
    if "STRATA_SCHEMA_FILE" in os.environ:
        values["schema_file"] = os.environ["STRATA_SCHEMA_FILE"]
    if "STRATA_LOG_LEVEL" in os.environ:
        values["log_level"] = os.environ["STRATA_LOG_LEVEL"]
    if "STRATA_LOG_JSON" in os.environ:
        values["log_json"] = os.environ["STRATA_LOG_JSON"].lower() == "true"

    return values
