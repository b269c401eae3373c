"""
Shared pytest fixtures and configuration for dbx tests.

This module provides:
- Marker auto-tagging by test location
- Temporary migration directories with numbered SQL files
- In-memory and file-backed SQLite engines
- Option lists wiring the SQLite migration driver

Usage:
    Fixtures are auto-discovered by pytest.  Use them as function arguments:

    def test_open(migrations_dir, sqlite_migration_driver):
        engine = open_db(with_dsn(":memory:"), with_migrations(migrations_dir),
                         sqlite_migration_driver)
"""

import textwrap
from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from dbx.migrations import SQLiteMigrationDriver
from dbx.options import Option, with_migration_driver


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        # Mark all tests without explicit markers as unit tests
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Migration Fixtures
# =============================================================================


FOO_UP = textwrap.dedent("""\
    CREATE TABLE foo (
        name TEXT NOT NULL,
        ts INTEGER NOT NULL
    );
""")

FOO_DOWN = "DROP TABLE foo;\n"

BAR_UP = textwrap.dedent("""\
    CREATE TABLE bar (
        id INTEGER PRIMARY KEY,
        foo_name TEXT
    );
    CREATE INDEX bar_foo_name ON bar (foo_name);
""")

BAR_DOWN = "DROP TABLE bar;\n"


def write_migration(directory: Path, name: str, sql: str) -> Path:
    """Write one migration file and return its path."""
    path = directory / name
    path.write_text(sql, encoding="utf-8")
    return path


@pytest.fixture()
def migrations_dir(tmp_path: Path) -> Path:
    """Two migrations: 1 creates ``foo``, 2 creates ``bar``."""
    d = tmp_path / "migrations"
    d.mkdir()
    write_migration(d, "0001_create_foo.up.sql", FOO_UP)
    write_migration(d, "0001_create_foo.down.sql", FOO_DOWN)
    write_migration(d, "0002_create_bar.up.sql", BAR_UP)
    write_migration(d, "0002_create_bar.down.sql", BAR_DOWN)
    write_migration(d, "README.md", "not a migration\n")
    return d


@pytest.fixture()
def empty_migrations_dir(tmp_path: Path) -> Path:
    d = tmp_path / "empty"
    d.mkdir()
    return d


@pytest.fixture()
def sqlite_migration_driver() -> Option:
    """Option registering the SQLite migration driver for ``sqlite``."""
    return with_migration_driver("sqlite", "sqlite3", SQLiteMigrationDriver.with_instance)


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture()
def memory_engine() -> Generator[Engine, None, None]:
    """Plain in-memory SQLite engine (one shared connection per thread)."""
    engine = create_engine("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture()
def foo_engine(memory_engine: Engine) -> Engine:
    """In-memory engine with ``foo`` holding three rows."""
    with memory_engine.begin() as conn:
        conn.execute(text(FOO_UP))
        conn.execute(
            text("INSERT INTO foo (name, ts) VALUES (:name, :ts)"),
            [
                {"name": "a", "ts": 1},
                {"name": "b", "ts": 2},
                {"name": "c", "ts": 3},
            ],
        )
    return memory_engine
