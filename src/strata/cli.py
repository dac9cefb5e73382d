"""Command-line interface for strata."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError

from strata import __version__
from strata.config import EngineConfig
from strata.drivers import register_builtin_drivers
from strata.engine import Engine
from strata.errors import StrataError
from strata.logging import get_logger, setup_logging

log = get_logger("cli")


@click.group()
@click.option(
    "-c",
    "--config-file",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to configuration file.",
)
@click.option("-u", "--url", default=None, help="Database URL (overrides DATABASE_URL).")
@click.option(
    "-d",
    "--migrations-dir",
    multiple=True,
    help="Migrations directory, may be given more than once.",
)
@click.option("--migrations-table", default=None, help="Ledger table name.")
@click.option("-s", "--schema-file", default=None, help="Schema snapshot file.")
@click.option(
    "--no-dump-schema",
    is_flag=True,
    default=False,
    help="Don't update the schema file on migrate/rollback.",
)
@click.option(
    "--auto-load-schema",
    is_flag=True,
    default=False,
    help="Load the schema file before migrating an empty database.",
)
@click.option("--wait", is_flag=True, default=False, help="Wait for the database before each command.")
@click.option("--wait-timeout", type=float, default=None, help="Seconds to wait for the database.")
@click.option("--prune", is_flag=True, default=False, help="Delete migrations captured by the schema dump.")
@click.option("--strict", is_flag=True, default=False, help="Refuse to apply migrations out of order.")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Print progress and affected rows.")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Set logging level (overrides config).",
)
@click.option(
    "--log-json/--no-log-json",
    default=None,
    help="Output logs as JSON or human-readable format (overrides config).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Path | None,
    url: str | None,
    migrations_dir: tuple[str, ...],
    migrations_table: str | None,
    schema_file: str | None,
    no_dump_schema: bool,
    auto_load_schema: bool,
    wait: bool,
    wait_timeout: float | None,
    prune: bool,
    strict: bool,
    verbose: bool,
    log_level: str | None,
    log_json: bool | None,
) -> None:
    """strata - versioned SQL schema migrations.

    Applies `NNN_name.sql` migration files to a database and keeps track of
    them in a ledger table inside that database.
    """
    ctx.ensure_object(dict)

    try:
        config = EngineConfig.load_or_default(config_file)

        # CLI flags override the config file
        if url is not None:
            config.database_url = url
        if migrations_dir:
            config.migrations_dir = list(migrations_dir)
        if migrations_table is not None:
            config.migrations_table = migrations_table
        if schema_file is not None:
            config.schema_file = schema_file
        if no_dump_schema:
            config.auto_dump_schema = False
        if auto_load_schema:
            config.auto_load_schema = True
        if wait:
            config.wait_before = True
        if wait_timeout is not None:
            config.wait_timeout = wait_timeout
        if prune:
            config.prune = True
        if strict:
            config.strict = True
        if verbose:
            config.verbose = True
    except ValidationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise SystemExit(1)

    effective_log_level = log_level or config.log_level
    effective_log_json = log_json if log_json is not None else config.log_json
    setup_logging(json_output=effective_log_json, level=effective_log_level)

    register_builtin_drivers()

    ctx.obj["config"] = config
    ctx.obj["engine"] = Engine(config)


def run_engine(ctx: click.Context, operation: Callable[[Engine], Any]) -> Any:
    """Run an engine operation, turning strata errors into exit code 1."""
    engine = ctx.obj["engine"]
    try:
        return operation(engine)
    except StrataError as e:
        log.error("command_failed", command=ctx.info_name, error=str(e))
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


@cli.command()
def version() -> None:
    """Print version information."""
    click.echo(f"strata {__version__}")


@cli.command()
@click.argument("name")
@click.pass_context
def new(ctx: click.Context, name: str) -> None:
    """Generate a new migration file."""
    path = run_engine(ctx, lambda engine: engine.new_migration(name))
    click.echo(f"Creating migration: {path}")


@cli.command()
@click.pass_context
def create(ctx: click.Context) -> None:
    """Create the database."""
    run_engine(ctx, Engine.create)


@cli.command()
@click.pass_context
def drop(ctx: click.Context) -> None:
    """Drop the database (if it exists)."""
    run_engine(ctx, Engine.drop)


@cli.command()
@click.pass_context
def up(ctx: click.Context) -> None:
    """Create the database (if necessary) and migrate to the latest version."""
    applied = run_engine(ctx, Engine.create_and_migrate)
    _report_applied(applied)


def _report_applied(applied: list) -> None:
    if not applied:
        click.echo("No pending migrations")
        return
    for migration in applied:
        click.echo(f"Applied: {migration.file_name}")


@cli.command()
@click.pass_context
def migrate(ctx: click.Context) -> None:
    """Migrate to the latest version."""
    applied = run_engine(ctx, Engine.migrate)
    _report_applied(applied)


@cli.command()
@click.pass_context
def rollback(ctx: click.Context) -> None:
    """Roll back the most recent migration."""
    migration = run_engine(ctx, Engine.rollback)
    click.echo(f"Rolled back: {migration.file_name}")


cli.add_command(rollback, name="down")


@cli.command()
@click.option("--exit-code", is_flag=True, default=False, help="Exit with 1 if any migrations are pending.")
@click.option("-q", "--quiet", is_flag=True, default=False, help="Only print the summary.")
@click.pass_context
def status(ctx: click.Context, exit_code: bool, quiet: bool) -> None:
    """List applied and pending migrations."""
    result = run_engine(ctx, Engine.status)

    if not quiet:
        for migration in result.migrations:
            mark = "[X]" if migration.applied else "[ ]"
            click.echo(f"{mark} {migration.file_name}")
        click.echo("")

    click.echo(f"Applied: {len(result.applied)}")
    click.echo(f"Pending: {len(result.pending)}")

    if exit_code and result.pending:
        raise SystemExit(1)


@cli.command()
@click.pass_context
def dump(ctx: click.Context) -> None:
    """Write the database schema to the schema file."""
    run_engine(ctx, Engine.dump_schema)
    click.echo(f"Schema written to {ctx.obj['config'].schema_file}")


@cli.command()
@click.pass_context
def load(ctx: click.Context) -> None:
    """Load the schema file into the database."""
    run_engine(ctx, Engine.load_schema)
    click.echo(f"Schema loaded from {ctx.obj['config'].schema_file}")


@cli.command()
@click.pass_context
def wait(ctx: click.Context) -> None:
    """Wait for the database to become available."""
    run_engine(ctx, Engine.wait)
    click.echo("Database is ready")
