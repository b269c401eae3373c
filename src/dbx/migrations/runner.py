"""SQL migration runner.

Reads numbered ``.sql`` files from a :class:`FileSource`, tracks the
applied version and a dirty flag through a migration driver, and applies
pending migrations in version order.

Every migration is bracketed by two version writes: ``(v, dirty=True)``
before the script runs and ``(v, dirty=False)`` after it succeeded.  A run
that dies in between leaves the database dirty, and nothing is applied on
top of a dirty database until someone forces the version.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from importlib.resources.abc import Traversable
from pathlib import Path

from sqlalchemy.engine import Engine

from dbx.errors import (
    DatabaseTooNewError,
    DbxError,
    DirtyMigrationError,
    MigrationDriverError,
    MigrationError,
)
from dbx.logging import get_logger
from dbx.migrations.registry import MigrationDriverRegistry
from dbx.migrations.source import FileSource, Migration
from dbx.protocols import MigrationDriver

logger = get_logger(__name__)


class NoChange(Exception):
    """``up()`` found nothing to apply.  Not a failure."""

    def __init__(self) -> None:
        super().__init__("no change")


class NilVersion(Exception):
    """No version is recorded in the database."""

    def __init__(self) -> None:
        super().__init__("no migration")


class MigrationState(str, Enum):
    """Progress of one migration run."""

    NOT_STARTED = "not_started"
    APPLYING = "applying"
    CLEAN = "clean"
    DIRTY = "dirty"
    FAILED = "failed"


@dataclass
class MigrationOutcome:
    """Result of a clean migration run."""

    state: MigrationState = MigrationState.NOT_STARTED
    version: int = 0
    dirty: bool = False
    applied: list[int] = field(default_factory=list)
    engine_name: str = ""

    @property
    def success(self) -> bool:
        return self.state is MigrationState.CLEAN


class Migrator:
    """Applies migrations from a source through a migration driver.

    Parameters
    ----------
    source
        Where the migration scripts come from.
    driver
        Database-side bookkeeping and script execution.
    name
        Logical engine name reported by the driver factory (for logs).

    Example::

        driver = SQLiteMigrationDriver(engine)
        migrator = Migrator(FileSource(Path("sql")), driver, name="sqlite3")
        try:
            migrator.up()
        except NoChange:
            pass
        version, dirty = migrator.version()
    """

    def __init__(self, source: FileSource, driver: MigrationDriver, *, name: str = "") -> None:
        self._source = source
        self._driver = driver
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def up(self) -> list[int]:
        """Apply every pending migration in version order.

        Returns the applied versions.

        Raises:
            NoChange: If the database is already at the newest version
            DirtyMigrationError: If a previous run left the database dirty
            FileNotFoundError: If the recorded version is not in the source
            MigrationError: If a script fails (the version stays dirty)
        """
        applied: list[int] = []
        self._driver.lock()
        try:
            pending = self._pending()
            if not pending:
                raise NoChange()
            for migration in pending:
                self._apply(migration)
                applied.append(migration.version)
        finally:
            self._driver.unlock()
        return applied

    def down(self) -> int | None:
        """Revert the newest applied migration.

        Returns the version the database is at afterwards (``None`` when
        nothing is left applied).

        Raises:
            NilVersion: If nothing is applied
            DirtyMigrationError: If the database is dirty
            FileNotFoundError: If the version or its down script is missing
        """
        self._driver.lock()
        try:
            current = self._clean_version()
            if current is None:
                raise NilVersion()
            migration = self._source.get(current)
            script = migration.read_down()
            target = self._source.previous(current)

            self._driver.set_version(current, True)
            self._run(migration, script)
            self._driver.set_version(target, False)
            logger.info("migration_reverted", version=current, now=target)
            return target
        finally:
            self._driver.unlock()

    def version(self) -> tuple[int, bool]:
        """The recorded ``(version, dirty)``.

        Raises:
            NilVersion: If no version is recorded
        """
        version, dirty = self._driver.version()
        if version is None:
            raise NilVersion()
        return version, dirty

    def force(self, version: int | None) -> None:
        """Record ``version`` as clean without running anything.

        The out-of-band fix for a dirty database once the schema has been
        repaired by hand.  ``None`` clears the version.
        """
        self._driver.lock()
        try:
            self._driver.set_version(version, False)
        finally:
            self._driver.unlock()
        logger.warning("migration_forced", version=version)

    def pending(self) -> list[Migration]:
        """Migrations ``up()`` would apply, without applying them."""
        return self._pending()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _clean_version(self) -> int | None:
        version, dirty = self._driver.version()
        if dirty:
            raise DirtyMigrationError(version)
        return version

    def _pending(self) -> list[Migration]:
        current = self._clean_version()
        if current is not None:
            # The binary must know the version the database is at.
            self._source.get(current)
        return self._source.after(current)

    def _apply(self, migration: Migration) -> None:
        script = migration.read_up()
        self._driver.set_version(migration.version, True)
        self._run(migration, script)
        self._driver.set_version(migration.version, False)
        logger.info(
            "migration_applied",
            version=migration.version,
            title=migration.title,
            engine=self._name,
        )

    def _run(self, migration: Migration, script: str) -> None:
        try:
            self._driver.run(script)
        except Exception as exc:
            logger.error(
                "migration_failed",
                version=migration.version,
                title=migration.title,
                error=str(exc),
            )
            raise MigrationError(
                f"migration {migration.version} ({migration.title}) failed: {exc}",
                cause=exc,
            ).with_context(migration_version=migration.version) from exc


def run_migrations(
    engine: Engine,
    *,
    source_root: Traversable | Path,
    source_path: str,
    driver_name: str,
    registry: MigrationDriverRegistry,
) -> MigrationOutcome:
    """Bring the database behind ``engine`` to the newest migration.

    Resolves the driver factory for ``driver_name`` (once, uncached), runs
    ``up()``, then reads back the version and dirty flag whatever ``up()``
    did.  A database with no recorded version counts as version 0.

    Raises:
        DriverNotRegisteredError: If no factory is registered for the driver
        MigrationDriverError: If the factory fails
        MigrationSourceError: If the source directory cannot be read
        DirtyMigrationError: If the database is dirty after the run
        DatabaseTooNewError: If the database is at a version the source lacks
        MigrationError: Any other failure while migrating
    """
    outcome = MigrationOutcome()

    factory = registry.get(driver_name)
    source = FileSource(source_root, source_path)

    try:
        driver, engine_name = factory(engine)
    except DbxError:
        raise
    except Exception as exc:
        raise MigrationDriverError(driver_name, cause=exc) from exc

    outcome.engine_name = engine_name
    migrator = Migrator(source, driver, name=engine_name)

    try:
        outcome.state = MigrationState.APPLYING
        advance_error: Exception | None = None
        try:
            outcome.applied = migrator.up()
        except NoChange:
            pass
        except Exception as exc:
            advance_error = exc

        try:
            outcome.version, outcome.dirty = migrator.version()
        except NilVersion:
            # Empty source on a fresh database.
            outcome.version, outcome.dirty = 0, False
        except Exception as exc:
            if advance_error is None:
                outcome.state = MigrationState.FAILED
                raise MigrationError(f"running migrations: {exc}", cause=exc) from exc

        if outcome.dirty:
            outcome.state = MigrationState.DIRTY
            if isinstance(advance_error, DirtyMigrationError):
                raise advance_error
            raise DirtyMigrationError(outcome.version, cause=advance_error)

        if advance_error is not None:
            outcome.state = MigrationState.FAILED
            if isinstance(advance_error, FileNotFoundError):
                raise DatabaseTooNewError(cause=advance_error) from advance_error
            raise MigrationError(
                f"running migrations: {advance_error}", cause=advance_error
            ) from advance_error

        outcome.state = MigrationState.CLEAN
        return outcome
    finally:
        driver.close()


__all__ = [
    "NoChange",
    "NilVersion",
    "MigrationState",
    "MigrationOutcome",
    "Migrator",
    "run_migrations",
]
