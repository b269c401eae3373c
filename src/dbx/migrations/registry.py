"""Migration driver registry.

Manifesto:
    The opener should never hard-code which migration driver belongs to
    which SQL driver.  The registry maps SQL driver names to factories that
    build a migration driver around the opened engine.

Features:
    - ``MigrationDriverRegistry`` with ``register()`` / ``get()``
    - Names are case-insensitive, like the adapter registry they mirror
    - Factories are resolved once per open and never cached

Tags:
    dbx, migrations, registry, factory

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from dbx.errors import DriverNotRegisteredError

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from dbx.protocols import MigrationDriver


# Factory signature: (engine) -> (driver, logical engine name)
MigrationDriverFactory = Callable[["Engine"], "tuple[MigrationDriver, str]"]


class MigrationDriverRegistry:
    """
    Registry of migration driver factories keyed by SQL driver name.

    Starts empty.  Not locked: register everything before sharing the
    registry between threads.
    """

    def __init__(self) -> None:
        self._factories: dict[str, MigrationDriverFactory] = {}

    def register(self, name: str, factory: MigrationDriverFactory) -> None:
        """Register (or replace) the factory for ``name``.

        Names are case-insensitive: ``"SQLite"`` and ``"sqlite"`` are the same
        key, so registering one replaces the other.
        """
        self._factories[name.lower()] = factory

    def get(self, name: str) -> MigrationDriverFactory:
        """Look up the factory for ``name``.

        Raises:
            DriverNotRegisteredError: If nothing is registered under ``name``
        """
        try:
            return self._factories[name.lower()]
        except KeyError:
            raise DriverNotRegisteredError(name) from None

    def list_drivers(self) -> list[str]:
        """List registered driver names."""
        return sorted(self._factories.keys())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._factories

    def __len__(self) -> int:
        return len(self._factories)


__all__ = [
    "MigrationDriverFactory",
    "MigrationDriverRegistry",
]
