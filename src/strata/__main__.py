"""CLI entrypoint for running strata as a module."""

from strata.cli import cli

if __name__ == "__main__":
    cli()
