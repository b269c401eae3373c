"""Configuration accumulated from an ordered sequence of options.

An option is a callable that mutates a :class:`Config`.  ``open_db`` starts
from :func:`default_config`, applies the options in the order given, then
validates once before touching any database.

Usage::

    engine = open_db(
        with_dsn("app.db"),
        with_pragmas(["PRAGMA foreign_keys = ON", "PRAGMA temp_store = MEMORY"]),
        with_migrations(files("myapp") / "sql", "migrations"),
        with_migration_driver("sqlite", "sqlite3", SQLiteMigrationDriver.with_instance),
    )

Later options win for scalar fields; pragmas accumulate in order.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import TYPE_CHECKING

from dbx.errors import InvalidOptionError, NoDataSourceNameError, NoMigrationDriversError
from dbx.migrations.registry import MigrationDriverFactory, MigrationDriverRegistry

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from dbx.protocols import MigrationDriver

DEFAULT_DRIVER = "sqlite"

MigrationSourceRoot = Traversable | Path


@dataclass
class Config:
    """
    Connection configuration.

    ``migrations`` and ``migration_drivers`` are independently optional, but
    a configured migration source needs at least one registered driver.
    """

    dsn: str = ""
    driver_name: str = DEFAULT_DRIVER
    pragmas: list[str] = field(default_factory=list)
    migrations: MigrationSourceRoot | None = None
    migrations_path: str = ""
    migration_drivers: MigrationDriverRegistry = field(default_factory=MigrationDriverRegistry)

    @property
    def has_migrations(self) -> bool:
        return self.migrations is not None

    def validate(self) -> None:
        """Check the invariants that must hold before any I/O.

        Raises:
            NoDataSourceNameError: If the DSN is empty
            NoMigrationDriversError: If migrations are configured without drivers
        """
        if not self.dsn:
            raise NoDataSourceNameError()
        if self.has_migrations and len(self.migration_drivers) == 0:
            raise NoMigrationDriversError()


Option = Callable[[Config], None]


def default_config() -> Config:
    """A fresh configuration with defaults and an empty driver registry."""
    return Config()


def build_config(*opts: Option) -> Config:
    """Apply ``opts`` in order to a fresh default config (no validation)."""
    config = default_config()
    for opt in opts:
        opt(config)
    return config


def with_dsn(dsn: str) -> Option:
    """Set the data source name."""

    def apply(c: Config) -> None:
        c.dsn = dsn

    return apply


def with_driver(driver_name: str) -> Option:
    """Set the driver name.

    The name selects the SQLAlchemy dialect when the DSN is not a full URL,
    and is the key used to look up the migration driver.
    """

    def apply(c: Config) -> None:
        if not driver_name:
            raise InvalidOptionError("driver", driver_name, "driver name must not be empty")
        c.driver_name = driver_name

    return apply


def with_pragmas(pragmas: Iterable[str]) -> Option:
    """Append pragma statements, executed verbatim in the given order."""

    def apply(c: Config) -> None:
        if isinstance(pragmas, str):
            raise InvalidOptionError(
                "pragmas", pragmas, "pragmas must be a sequence of statements, not a string"
            )
        c.pragmas.extend(pragmas)

    return apply


def with_migrations(files: MigrationSourceRoot | str, path: str = ".") -> Option:
    """Set the migrations file tree and the directory within it.

    ``files`` is either an ``importlib.resources`` traversable (migrations
    shipped as package data) or a filesystem path.
    """

    def apply(c: Config) -> None:
        c.migrations = Path(files) if isinstance(files, str) else files
        c.migrations_path = path

    return apply


def with_migration_driver(
    sql_driver_name: str,
    migrate_name: str,
    create: Callable[[Engine], MigrationDriver],
) -> Option:
    """Register a migration driver for ``sql_driver_name``.

    ``create`` receives the opened engine and returns the driver; the
    option attaches ``migrate_name`` as the driver's logical engine name.
    """

    def factory(engine: Engine) -> tuple[MigrationDriver, str]:
        return create(engine), migrate_name

    return with_migration_driver_factory(sql_driver_name, factory)


def with_migration_driver_factory(sql_driver_name: str, factory: MigrationDriverFactory) -> Option:
    """Register a factory that returns ``(driver, logical_name)`` itself."""

    def apply(c: Config) -> None:
        c.migration_drivers.register(sql_driver_name, factory)

    return apply


__all__ = [
    "DEFAULT_DRIVER",
    "Config",
    "Option",
    "default_config",
    "build_config",
    "with_dsn",
    "with_driver",
    "with_pragmas",
    "with_migrations",
    "with_migration_driver",
    "with_migration_driver_factory",
]
