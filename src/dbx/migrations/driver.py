"""Migration drivers: version bookkeeping inside the target database.

Each driver keeps a single-row ``schema_migrations`` table::

    version BIGINT NOT NULL PRIMARY KEY
    dirty   BOOLEAN NOT NULL

and runs migration scripts against the engine it was built with.
Register one per SQL driver::

    with_migration_driver("sqlite", "sqlite3", SQLiteMigrationDriver.with_instance)
    with_migration_driver("postgresql", "postgres", SQLAlchemyMigrationDriver.with_instance)
"""

from __future__ import annotations

import re
import threading
from typing import Self

from sqlalchemy import text
from sqlalchemy.engine import Engine

from dbx.errors import MigrationLockError
from dbx.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TABLE = "schema_migrations"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SQLAlchemyMigrationDriver:
    """
    Migration driver for any SQLAlchemy engine.

    Scripts are passed to the DBAPI verbatim through ``exec_driver_sql``
    inside one transaction, so multi-statement scripts need a driver that
    accepts them (psycopg does).  Use :class:`SQLiteMigrationDriver` for
    SQLite.

    Parameters
    ----------
    engine
        Engine returned by ``open_db``.  Not disposed by the driver.
    table
        Name of the version table.
    """

    def __init__(self, engine: Engine, table: str = DEFAULT_TABLE) -> None:
        if not _IDENTIFIER_RE.match(table):
            raise ValueError(f"invalid migrations table name: {table!r}")
        self._engine = engine
        self._table = table
        self._lock = threading.Lock()
        self._ensure_version_table()

    @classmethod
    def with_instance(cls, engine: Engine) -> Self:
        """Build a driver with the default table; usable as a registry ``create``."""
        return cls(engine)

    @property
    def table(self) -> str:
        return self._table

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def lock(self) -> None:
        if not self._lock.acquire(blocking=False):
            raise MigrationLockError()

    def unlock(self) -> None:
        if self._lock.locked():
            self._lock.release()

    # ------------------------------------------------------------------
    # Version bookkeeping
    # ------------------------------------------------------------------

    def version(self) -> tuple[int | None, bool]:
        with self._engine.connect() as conn:
            row = conn.execute(
                text(f"SELECT version, dirty FROM {self._table} LIMIT 1")
            ).first()
        if row is None:
            return None, False
        return int(row[0]), bool(row[1])

    def set_version(self, version: int | None, dirty: bool) -> None:
        with self._engine.begin() as conn:
            conn.execute(text(f"DELETE FROM {self._table}"))
            if version is not None:
                conn.execute(
                    text(f"INSERT INTO {self._table} (version, dirty) VALUES (:version, :dirty)"),
                    {"version": version, "dirty": dirty},
                )
        logger.debug("migration_version_set", version=version, dirty=dirty)

    # ------------------------------------------------------------------
    # Scripts
    # ------------------------------------------------------------------

    def run(self, script: str) -> None:
        if not script.strip():
            return
        with self._engine.begin() as conn:
            conn.exec_driver_sql(script)

    def close(self) -> None:
        self.unlock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_version_table(self) -> None:
        """Create the version table if it doesn't exist."""
        with self._engine.begin() as conn:
            conn.execute(
                text(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self._table} (
                        version BIGINT NOT NULL PRIMARY KEY,
                        dirty BOOLEAN NOT NULL
                    )
                    """
                )
            )


class SQLiteMigrationDriver(SQLAlchemyMigrationDriver):
    """
    Migration driver for SQLite.

    The sqlite3 module executes one statement per ``execute`` call, so
    scripts go through the driver connection's ``executescript`` wrapped in
    an explicit transaction.  A failing script is rolled back; the version
    stays marked dirty.

    Scripts must not open or end transactions themselves: a file with its
    own ``BEGIN`` / ``COMMIT`` fails with "cannot start a transaction within
    a transaction".
    """

    def run(self, script: str) -> None:
        if not script.strip():
            return
        with self._engine.connect() as conn:
            dbapi_conn = conn.connection.driver_connection
            try:
                dbapi_conn.executescript(f"BEGIN;\n{script}\n;COMMIT;")
            except Exception:
                if dbapi_conn.in_transaction:
                    dbapi_conn.rollback()
                raise


__all__ = [
    "DEFAULT_TABLE",
    "SQLAlchemyMigrationDriver",
    "SQLiteMigrationDriver",
]
