"""Filesystem access for migration discovery.

The engine never touches the process working directory directly. It goes
through a FileSystem: LocalFileSystem resolves relative paths against an
explicit base directory, MemoryFileSystem keeps everything in a dict and is
what the tests use.
"""

from __future__ import annotations

import posixpath
from abc import ABC, abstractmethod
from pathlib import Path

from strata.errors import MigrationIOError


class FileSystem(ABC):
    """Minimal read interface over a tree of files."""

    @abstractmethod
    def list_dir(self, root: str) -> list[str]:
        """Return the names of the direct entries under root.

        Raises:
            MigrationIOError: If root does not exist or cannot be listed.
        """

    @abstractmethod
    def read_text(self, path: str) -> str:
        """Return the content of the file at path.

        Raises:
            MigrationIOError: If the file cannot be read.
        """

    def remove(self, path: str) -> None:
        """Delete the file at path. Overlays are read-only unless they override this."""
        raise MigrationIOError(f"filesystem is read-only: cannot remove `{path}`")


class LocalFileSystem(FileSystem):
    """The real filesystem, rooted at base_dir for relative paths."""

    def __init__(self, base_dir: Path | str = ".") -> None:
        self.base_dir = Path(base_dir)

    def resolve(self, path: str | Path) -> Path:
        """Resolve path against base_dir. Absolute paths are returned as-is."""
        path = Path(path)
        if path.is_absolute():
            return path
        return self.base_dir / path

    def list_dir(self, root: str) -> list[str]:
        try:
            return [entry.name for entry in self.resolve(root).iterdir()]
        except OSError as e:
            raise MigrationIOError(
                f"could not find migrations directory `{root}`"
            ) from e

    def read_text(self, path: str) -> str:
        try:
            return self.resolve(path).read_text(encoding="utf-8")
        except OSError as e:
            raise MigrationIOError(f"unable to read `{path}`: {e}") from e

    def remove(self, path: str) -> None:
        try:
            self.resolve(path).unlink()
        except OSError as e:
            raise MigrationIOError(f"unable to remove `{path}`: {e}") from e


class MemoryFileSystem(FileSystem):
    """In-memory filesystem keyed by slash-separated relative paths.

    Example:
        fs = MemoryFileSystem({
            "db/migrations/001_users.sql": "-- migrate:up\\n...",
        })

    A directory exists once a file has been written below it, and keeps
    existing after its last file is removed.
    """

    def __init__(self, files: dict[str, str] | None = None) -> None:
        self.files: dict[str, str] = {}
        self.dirs: set[str] = {"."}
        for path, content in (files or {}).items():
            self.write_text(path, content)

    @staticmethod
    def _normalize(path: str) -> str:
        return posixpath.normpath(path).lstrip("/")

    def write_text(self, path: str, content: str) -> None:
        path = self._normalize(path)
        self.files[path] = content
        parent = posixpath.dirname(path)
        while parent:
            self.dirs.add(parent)
            parent = posixpath.dirname(parent)

    def list_dir(self, root: str) -> list[str]:
        directory = self._normalize(root)
        prefix = "" if directory == "." else directory + "/"
        names: set[str] = set()
        for path in self.files:
            if path.startswith(prefix):
                names.add(path[len(prefix):].split("/", 1)[0])
        for path in self.dirs - {".", directory}:
            if path.startswith(prefix):
                names.add(path[len(prefix):].split("/", 1)[0])
        if not names and directory not in self.dirs:
            raise MigrationIOError(f"could not find migrations directory `{root}`")
        return sorted(names)

    def read_text(self, path: str) -> str:
        try:
            return self.files[self._normalize(path)]
        except KeyError:
            raise MigrationIOError(f"unable to read `{path}`: no such file") from None

    def remove(self, path: str) -> None:
        try:
            del self.files[self._normalize(path)]
        except KeyError:
            raise MigrationIOError(f"unable to remove `{path}`: no such file") from None

    def exists(self, path: str) -> bool:
        return self._normalize(path) in self.files
