"""Numbered SQL migration files read from a file tree.

A migration is one or two files sharing a version number::

    0001_create_foo.up.sql
    0001_create_foo.down.sql
    0002_add_index.sql          # no direction: an up migration

The tree is either a filesystem ``Path`` or an ``importlib.resources``
traversable, so migrations can ship as package data.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from importlib.resources.abc import Traversable
from pathlib import Path, PurePosixPath

from dbx.errors import MigrationSourceError

_FILENAME_RE = re.compile(r"^(?P<version>\d+)_(?P<title>.+?)(?:\.(?P<direction>up|down))?\.sql$")


@dataclass(frozen=True)
class Migration:
    """One versioned migration and the files implementing it."""

    version: int
    title: str
    up: Traversable | Path | None = None
    down: Traversable | Path | None = None

    def read_up(self) -> str:
        """The up script; an empty string when the version has none."""
        if self.up is None:
            return ""
        return self.up.read_text(encoding="utf-8")

    def read_down(self) -> str:
        """The down script.

        Raises:
            FileNotFoundError: If the migration has no down file
        """
        if self.down is None:
            raise FileNotFoundError(f"no down migration for version {self.version}")
        return self.down.read_text(encoding="utf-8")


class FileSource:
    """
    Migrations discovered in ``path`` under ``root``, ordered by version.

    Raises:
        MigrationSourceError: If the directory does not exist or two files
            claim the same version and direction
    """

    def __init__(self, root: Traversable | Path, path: str = ".") -> None:
        parts = [p for p in PurePosixPath(path or ".").parts if p != "."]
        directory = root.joinpath(*parts) if parts else root
        if not directory.is_dir():
            raise MigrationSourceError(f"migration directory {path!r} not found")
        self._path = path
        self._migrations = self._scan(directory)
        self._versions = sorted(self._migrations)

    @staticmethod
    def _scan(directory: Traversable | Path) -> dict[int, Migration]:
        found: dict[int, dict[str, Traversable | Path | str]] = {}
        for entry in directory.iterdir():
            match = _FILENAME_RE.match(entry.name)
            if match is None or not entry.is_file():
                continue
            version = int(match["version"])
            direction = match["direction"] or "up"
            slot = found.setdefault(version, {"title": match["title"]})
            if direction in slot:
                raise MigrationSourceError(
                    f"duplicate {direction} migration for version {version}: {entry.name}"
                )
            slot[direction] = entry
        return {
            version: Migration(
                version=version,
                title=str(slot["title"]),
                up=slot.get("up"),  # type: ignore[arg-type]
                down=slot.get("down"),  # type: ignore[arg-type]
            )
            for version, slot in found.items()
        }

    @property
    def path(self) -> str:
        return self._path

    def versions(self) -> list[int]:
        """All versions in ascending order."""
        return list(self._versions)

    def migrations(self) -> list[Migration]:
        """All migrations in ascending version order."""
        return [self._migrations[v] for v in self._versions]

    def get(self, version: int) -> Migration:
        """The migration for ``version``.

        Raises:
            FileNotFoundError: If the source has no such version
        """
        try:
            return self._migrations[version]
        except KeyError:
            raise FileNotFoundError(
                f"no migration found for version {version} in {self._path!r}"
            ) from None

    def after(self, version: int | None) -> list[Migration]:
        """Migrations newer than ``version`` (all of them for ``None``)."""
        if version is None:
            return self.migrations()
        return [self._migrations[v] for v in self._versions if v > version]

    def previous(self, version: int) -> int | None:
        """The version before ``version``, or ``None`` if it is the first."""
        earlier = [v for v in self._versions if v < version]
        return earlier[-1] if earlier else None

    def __len__(self) -> int:
        return len(self._versions)


__all__ = ["Migration", "FileSource"]
