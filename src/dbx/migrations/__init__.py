"""Schema migrations for dbx.

Manifesto:
    Database schemas must evolve safely across deployments.  Migrations
    are numbered ``.sql`` files applied in order; the database records the
    version it is at and whether a run was interrupted (dirty).

Modules
-------
source     FileSource: numbered migration files from a Path or package data
driver     Migration drivers keeping (version, dirty) in schema_migrations
registry   MigrationDriverRegistry: SQL driver name -> driver factory
runner     Migrator (up/down/version/force) and run_migrations()

Tags:
    dbx, migrations, schema, database, dirty-state

Doc-Types:
    package-overview
"""

from dbx.migrations.driver import SQLAlchemyMigrationDriver, SQLiteMigrationDriver
from dbx.migrations.registry import MigrationDriverFactory, MigrationDriverRegistry
from dbx.migrations.runner import (
    MigrationOutcome,
    MigrationState,
    Migrator,
    NilVersion,
    NoChange,
    run_migrations,
)
from dbx.migrations.source import FileSource, Migration

__all__ = [
    "FileSource",
    "Migration",
    "MigrationDriverFactory",
    "MigrationDriverRegistry",
    "MigrationOutcome",
    "MigrationState",
    "Migrator",
    "NilVersion",
    "NoChange",
    "SQLAlchemyMigrationDriver",
    "SQLiteMigrationDriver",
    "run_migrations",
]
