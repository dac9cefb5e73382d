"""Parsing of migration file content into up and down blocks.

A migration file looks like:

    -- migrate:up transaction:false
    create index concurrently ...;

    -- migrate:down
    drop index ...;

Each block keeps its marker line so the text can be shown as-is. Marker lines
are ordinary SQL comments, so executing them is a no-op.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from strata.errors import ParseError

UP_MARKER = re.compile(r"^--[ \t]*migrate:up(?=\s|$)(?P<options>[^\n]*)$", re.MULTILINE)
DOWN_MARKER = re.compile(r"^--[ \t]*migrate:down(?=\s|$)(?P<options>[^\n]*)$", re.MULTILINE)

OPTION_SEPARATOR = ":"


@dataclass(frozen=True)
class BlockOptions:
    """Options given on a marker line as key:value tokens."""

    values: dict[str, str] = field(default_factory=dict)

    @property
    def transaction(self) -> bool:
        """Whether the block runs inside a transaction (default true)."""
        return self.values.get("transaction", "true") != "false"


@dataclass(frozen=True)
class Block:
    """One direction of a migration: its SQL text and options."""

    sql: str
    options: BlockOptions = field(default_factory=BlockOptions)


@dataclass(frozen=True)
class ParsedMigration:
    up: Block
    down: Block


def parse_options(raw: str) -> BlockOptions:
    """Parse the trailing `key:value` tokens of a marker line.

    Tokens without a separator are ignored.

    Raises:
        ParseError: If the transaction option is not true or false.
    """
    values: dict[str, str] = {}
    for token in raw.split():
        key, sep, value = token.partition(OPTION_SEPARATOR)
        if not sep:
            continue
        values[key] = value

    if values.get("transaction", "true") not in ("true", "false"):
        raise ParseError(
            f"invalid transaction option `{values['transaction']}`, "
            "expected `true` or `false`"
        )
    return BlockOptions(values)


def _single_marker(pattern: re.Pattern[str], content: str, name: str) -> re.Match[str]:
    matches = list(pattern.finditer(content))
    if not matches:
        raise ParseError(
            f"each migration must define a {name} block with '-- migrate:{name}'"
        )
    if len(matches) > 1:
        raise ParseError(
            f"each migration must define exactly one '-- migrate:{name}' block"
        )
    return matches[0]


def parse_migration(content: str) -> ParsedMigration:
    """Split migration content into its up and down blocks.

    Args:
        content: Full text of a migration file.

    Returns:
        ParsedMigration with both blocks and their options.

    Raises:
        ParseError: If a marker is missing, repeated, or out of order.
    """
    up = _single_marker(UP_MARKER, content, "up")
    down = _single_marker(DOWN_MARKER, content, "down")

    if down.start() < up.start():
        raise ParseError("'-- migrate:up' must appear before '-- migrate:down'")

    return ParsedMigration(
        up=Block(
            sql=content[up.start():down.start()],
            options=parse_options(up.group("options")),
        ),
        down=Block(
            sql=content[down.start():],
            options=parse_options(down.group("options")),
        ),
    )
