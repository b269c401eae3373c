"""Environment-driven settings for opening a database.

``DbxSettings`` reads ``DBX_*`` environment variables (and ``.env``) and
turns them into the same ordered option list that code would pass to
:func:`dbx.connection.open_db`.

Manifesto:
    Deployments configure the database through the environment; code
    configures it through options.  Both must end up on the same path so
    validation and pragma ordering behave identically.

    - **Pydantic validation:** Type-checked at startup
    - **Environment-driven:** ``DBX_DSN``, ``DBX_DRIVER``, ``DBX_PRAGMAS`` (JSON list), ...
    - **Logging too:** ``DBX_LOG_LEVEL`` and ``DBX_JSON_LOGS`` feed ``configure_logging()``
    - **Extra ignore:** Unknown env vars don't cause startup failures

Examples:
    >>> # DBX_DSN=app.db DBX_PRAGMAS='["PRAGMA foreign_keys = ON"]'
    >>> settings = DbxSettings()
    >>> settings.configure_logging()
    >>> engine = open_db(*settings.options())

Tags:
    settings, configuration, pydantic, environment, dbx

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from dbx.logging import configure_logging
from dbx.options import (
    DEFAULT_DRIVER,
    Option,
    with_driver,
    with_dsn,
    with_migrations,
    with_pragmas,
)


class DbxSettings(BaseSettings):
    """Database settings read from ``DBX_``-prefixed environment variables.

    Fields
    ──────
    dsn             : Data source name (file path, ``:memory:`` or URL)
    driver          : SQL driver name, also the migration registry key
    pragmas         : Statements run in order right after opening
    migrations_dir  : Directory of numbered ``.sql`` migrations
    log_level       : Level for ``configure_logging()``
    json_logs       : JSON output; ``None`` auto-detects from the tty
    """

    model_config = SettingsConfigDict(
        env_prefix="DBX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    dsn: str = ""
    driver: str = DEFAULT_DRIVER
    pragmas: list[str] = Field(default_factory=list)
    migrations_dir: Path | None = None

    log_level: str = "INFO"
    json_logs: bool | None = None

    def options(self) -> list[Option]:
        """The settings as an ordered option list.

        Migration drivers are not configurable from the environment; add
        them with :func:`dbx.options.with_migration_driver`.
        """
        opts: list[Option] = [with_dsn(self.dsn), with_driver(self.driver)]
        if self.pragmas:
            opts.append(with_pragmas(self.pragmas))
        if self.migrations_dir is not None:
            opts.append(with_migrations(self.migrations_dir, "."))
        return opts

    def configure_logging(self, service: str = "dbx") -> None:
        """Configure structlog from ``log_level`` and ``json_logs``.

        Opening a database never does this; call it once at startup.
        """
        configure_logging(level=self.log_level, json_format=self.json_logs, service=service)


__all__ = ["DbxSettings"]
