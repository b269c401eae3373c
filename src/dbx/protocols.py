"""
Canonical protocol definitions for dbx.

Manifesto:
    dbx consumes its collaborators through narrow structural interfaces:
    the result cursor it streams from and the migration driver that owns
    version bookkeeping.  Any object of the right shape works, which is what
    lets the tests drive the iterator with scripted cursors.

Architecture:
    ::

        protocols.py
        ├── Rows             : forward-only result cursor (SQLAlchemy Result,
        │                      DB-API cursor)
        └── MigrationDriver  : database side of the migration engine

Tags:
    protocols, cursor, migrations, structural-typing, dbx

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Rows(Protocol):
    """
    Forward-only result cursor.

    Satisfied by SQLAlchemy ``Result``/``CursorResult`` and by DB-API
    cursors.  Column names come from ``keys()`` when the cursor has it,
    otherwise from the DB-API ``description``.

    ``fetchone()`` returns ``None`` once the rows are exhausted and raises
    when the driver hits an error mid-stream.
    """

    def fetchone(self) -> Any:
        """Advance to the next row; ``None`` at the end."""
        ...

    def close(self) -> None:
        """Release the cursor."""
        ...


@runtime_checkable
class MigrationDriver(Protocol):
    """
    Database side of the migration engine.

    Stores one ``(version, dirty)`` pair and runs migration scripts.  A
    version written with ``dirty=True`` marks a migration in progress; it is
    rewritten with ``dirty=False`` only after the script succeeded.
    """

    def lock(self) -> None:
        """Take the migration lock or raise ``MigrationLockError``."""
        ...

    def unlock(self) -> None:
        ...

    def version(self) -> tuple[int | None, bool]:
        """Current ``(version, dirty)``; version is ``None`` when nothing is recorded."""
        ...

    def set_version(self, version: int | None, dirty: bool) -> None:
        """Replace the recorded version; ``None`` clears it."""
        ...

    def run(self, script: str) -> None:
        """Execute one migration script."""
        ...

    def close(self) -> None:
        ...


__all__ = [
    "Rows",
    "MigrationDriver",
]
