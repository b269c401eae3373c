"""dbx -- open, configure, migrate and stream a SQL database.

Manifesto:
    Every service that owns a SQL database repeats the same boot sequence
    and the same result-set loop.  ``dbx`` does both once: ``open_db``
    turns an ordered list of options into a ready engine (pragmas applied,
    schema migrated, dirty or too-new databases refused), and ``iter_rows``
    streams a query into typed records while honouring cancellation.

Architecture::

    Layer 1 -- Types & Errors
        errors.py        DbxError hierarchy with a closed ErrorKind
        result.py        Result[T] envelope (Ok / Err / try_result)
        context.py       Cooperative cancellation (with_cancel, with_timeout)
        protocols.py     Rows cursor and MigrationDriver protocols

    Layer 2 -- Configuration
        options.py       Config + with_* option builders
        settings.py      DbxSettings (DBX_* environment variables)
        logging.py       structlog configuration

    Layer 3 -- Database
        migrations/      Numbered .sql migrations with version + dirty flag
        connection.py    open_db / open_session / open_db_from_settings
        session.py       DbxSession (expire_on_commit=False)
        rows.py          iter_rows / collect_rows / zero-rows helper

Tags:
    dbx, sqlalchemy, migrations, streaming, cancellation

Doc-Types:
    package-overview
"""

__version__ = "0.1.0"

from dbx.connection import open_db, open_db_from_settings, open_session
from dbx.context import (
    CancelContext,
    background,
    with_cancel,
    with_deadline,
    with_timeout,
)
from dbx.errors import (
    CancelledError,
    ConfigError,
    CursorError,
    DatabaseConnectionError,
    DatabaseError,
    DatabaseTooNewError,
    DbxError,
    DeadlineExceededError,
    DecodeError,
    DirtyMigrationError,
    DriverNotRegisteredError,
    ErrorCategory,
    ErrorKind,
    InvalidOptionError,
    IterationError,
    MigrationDriverError,
    MigrationError,
    MigrationLockError,
    MigrationSourceError,
    NoDataSourceNameError,
    NoMigrationDriversError,
    PragmaError,
    QueryError,
    ZeroRowsAffectedError,
    error_kind,
    is_cancellation,
)
from dbx.migrations import (
    FileSource,
    MigrationDriverRegistry,
    Migrator,
    SQLAlchemyMigrationDriver,
    SQLiteMigrationDriver,
)
from dbx.options import (
    Config,
    Option,
    with_driver,
    with_dsn,
    with_migration_driver,
    with_migration_driver_factory,
    with_migrations,
    with_pragmas,
)
from dbx.result import Err, Ok, Result, collect_results, try_result
from dbx.rows import (
    RowIterator,
    check_for_zero_rows_affected,
    collect_rows,
    ensure_rows_affected,
    iter_rows,
)
from dbx.settings import DbxSettings

__all__ = [
    "__version__",
    # Opening
    "open_db",
    "open_session",
    "open_db_from_settings",
    "Config",
    "Option",
    "with_dsn",
    "with_driver",
    "with_pragmas",
    "with_migrations",
    "with_migration_driver",
    "with_migration_driver_factory",
    "DbxSettings",
    # Migrations
    "FileSource",
    "MigrationDriverRegistry",
    "Migrator",
    "SQLAlchemyMigrationDriver",
    "SQLiteMigrationDriver",
    # Rows
    "RowIterator",
    "iter_rows",
    "collect_rows",
    "check_for_zero_rows_affected",
    "ensure_rows_affected",
    # Cancellation
    "CancelContext",
    "background",
    "with_cancel",
    "with_deadline",
    "with_timeout",
    # Result
    "Ok",
    "Err",
    "Result",
    "try_result",
    "collect_results",
    # Errors
    "DbxError",
    "ErrorKind",
    "ErrorCategory",
    "ConfigError",
    "NoDataSourceNameError",
    "NoMigrationDriversError",
    "DriverNotRegisteredError",
    "InvalidOptionError",
    "DatabaseError",
    "DatabaseConnectionError",
    "PragmaError",
    "QueryError",
    "ZeroRowsAffectedError",
    "MigrationError",
    "MigrationDriverError",
    "MigrationSourceError",
    "MigrationLockError",
    "DirtyMigrationError",
    "DatabaseTooNewError",
    "IterationError",
    "CancelledError",
    "DeadlineExceededError",
    "DecodeError",
    "CursorError",
    "error_kind",
    "is_cancellation",
]
