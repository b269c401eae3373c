"""Open a configured, migrated database.

``open_db()`` is the single entry point: options in, a ready SQLAlchemy
``Engine`` out, or a typed :class:`~dbx.errors.DbxError`.

Manifesto:
    Every service that talks to SQL repeats the same boot sequence: pick a
    driver, set pragmas, bring the schema up to date, and refuse to start on
    a half-migrated database.  Doing it in one place means one set of
    failure modes, each with its own error type.

Architecture:
    ::

        options ──► Config ──► validate ──► create_engine
                                  │               │
                         NoDataSourceName    pragmas (in order)
                         NoMigrationDrivers       │
                                             migrations? ──► run_migrations
                                                  │               │
                                                  ▼          Dirty / TooNew /
                                               Engine        MigrationError

        any failure after create_engine ──► engine.dispose() ──► raise

Supported DSNs
--------------
==========================  ==============================================
DSN                         Engine URL
==========================  ==============================================
``":memory:"``              ``sqlite:///:memory:`` (with driver ``sqlite``)
``"data/app.db"``           ``sqlite:///data/app.db``
``"postgresql://u:p@h/db"`` used as given (any DSN containing ``://``)
==========================  ==============================================

Examples:
    >>> engine = open_db(
    ...     with_dsn(":memory:"),
    ...     with_pragmas(["PRAGMA foreign_keys = ON"]),
    ...     with_migrations(Path("sql")),
    ...     with_migration_driver("sqlite", "sqlite3", SQLiteMigrationDriver.with_instance),
    ... )
    >>> engine.dispose()

Tags:
    dbx, connection, engine, pragmas, migrations, sqlalchemy

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from dbx.errors import DatabaseConnectionError, PragmaError
from dbx.logging import get_logger
from dbx.migrations.runner import run_migrations
from dbx.options import Config, Option, build_config
from dbx.session import DbxSession, session_factory
from dbx.settings import DbxSettings

logger = get_logger(__name__)

# Common alternative driver names mapped to SQLAlchemy dialects.  Registry
# lookups keep using the name as given.
_DIALECT_ALIASES = {
    "sqlite3": "sqlite",
    "postgres": "postgresql",
    "pgx": "postgresql",
}


def _build_url(config: Config) -> URL:
    if "://" in config.dsn:
        return make_url(config.dsn)
    dialect = _DIALECT_ALIASES.get(config.driver_name.lower(), config.driver_name)
    return URL.create(dialect, database=config.dsn)


def _create_engine(config: Config) -> Engine:
    try:
        url = _build_url(config)
        kwargs: dict[str, Any] = {}
        if url.get_backend_name() == "sqlite":
            kwargs["connect_args"] = {"check_same_thread": False}
        return create_engine(url, **kwargs)
    except (SQLAlchemyError, ImportError) as exc:
        raise DatabaseConnectionError(
            f"creating engine for driver {config.driver_name!r}: {exc}", cause=exc
        ).with_context(driver=config.driver_name) from exc


def _apply_pragmas(engine: Engine, pragmas: list[str]) -> None:
    """Run ``pragmas`` on one connection, then on every new pool connection."""
    try:
        with engine.begin() as conn:
            for statement in pragmas:
                try:
                    conn.exec_driver_sql(statement)
                except DBAPIError as exc:
                    logger.error("pragma_failed", statement=statement, error=str(exc.orig))
                    raise PragmaError(statement, cause=exc.orig) from exc
                logger.debug("pragma_applied", statement=statement)
    except SQLAlchemyError as exc:
        raise DatabaseConnectionError(f"connecting: {exc}", cause=exc) from exc

    @event.listens_for(engine, "connect")
    def _reapply_pragmas(dbapi_connection: Any, _rec: Any) -> None:
        cursor = dbapi_connection.cursor()
        try:
            for statement in pragmas:
                cursor.execute(statement)
        finally:
            cursor.close()


def open_db(*opts: Option) -> Engine:
    """Open the database described by ``opts``.

    Options are applied in order to a fresh default config, which is
    validated before any I/O.  Pragmas run in order; migrations run when a
    migration source is configured.  The caller owns the returned engine and
    must ``dispose()`` it.

    Raises:
        InvalidOptionError: If an option rejects its argument
        NoDataSourceNameError: If no DSN was given
        NoMigrationDriversError: If migrations are configured without drivers
        DatabaseConnectionError: If the engine cannot be created or connected
        PragmaError: If a pragma statement fails
        DriverNotRegisteredError: If no migration driver matches the driver name
        DirtyMigrationError: If the database is left in a dirty migration state
        DatabaseTooNewError: If the database is newer than the migrations
        MigrationError: Any other migration failure
    """
    config = build_config(*opts)
    config.validate()

    engine = _create_engine(config)
    try:
        logger.info(
            "database_opened",
            driver=config.driver_name,
            url=engine.url.render_as_string(hide_password=True),
        )

        if config.pragmas:
            _apply_pragmas(engine, list(config.pragmas))

        if config.has_migrations:
            outcome = run_migrations(
                engine,
                source_root=config.migrations,
                source_path=config.migrations_path,
                driver_name=config.driver_name,
                registry=config.migration_drivers,
            )
            logger.info(
                "database_migration",
                version=outcome.version,
                dirty=outcome.dirty,
                applied=outcome.applied,
                engine=outcome.engine_name,
            )
    except BaseException:
        engine.dispose()
        raise

    return engine


def open_session(*opts: Option) -> DbxSession:
    """Open the database like :func:`open_db` and return a bound session.

    Dispose of ``session.get_bind()`` when finished with the database.
    """
    return session_factory(open_db(*opts))()


def open_db_from_settings(settings: DbxSettings | None = None, *extra: Option) -> Engine:
    """Open with options derived from ``DBX_*`` settings, then ``extra``.

    Logging is left alone; call ``settings.configure_logging()`` for that.
    """
    settings = settings or DbxSettings()
    return open_db(*settings.options(), *extra)


__all__ = ["open_db", "open_session", "open_db_from_settings"]
