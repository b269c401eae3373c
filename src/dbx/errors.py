"""
Structured error types for dbx.

Every failure dbx can report is a ``DbxError`` subclass carrying a
closed ``ErrorKind`` discriminant, so callers branch on ``error.kind`` (or
``isinstance``) instead of comparing messages.

Manifesto:
    - **Identifiable failures:** Each condition a caller may want to handle
      differently has its own class and kind
    - **Fail before I/O:** Configuration errors are raised before anything
      touches a database
    - **Error chaining:** The driver's original exception is kept as ``cause``
    - **No retries:** Errors say what happened; deciding to retry is the
      caller's business

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                          DbxError                                │
        │              (kind, category, context, cause)                    │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConfigError           DatabaseConnectionError   MigrationError  │
        │  (CONFIG)              PragmaError (DATABASE)    (MIGRATION)     │
        │      │                                               │           │
        │  NoDataSourceName      QueryError                DirtyMigration  │
        │  NoMigrationDrivers    ZeroRowsAffected          DatabaseTooNew  │
        │  DriverNotRegistered                             MigrationDriver │
        │  InvalidOption         IterationError            MigrationSource │
        │                        (ITERATION)               MigrationLock   │
        │                            │                                     │
        │                        CancelledError  DeadlineExceededError     │
        │                        DecodeError     CursorError               │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    Deciding whether to proceed with an outdated binary:

    >>> try:
    ...     engine = open_db(with_dsn("app.db"), with_migrations(files, "sql"))
    ... except DatabaseTooNewError:
    ...     engine = open_db(with_dsn("app.db"))  # run without migrating

    Branching on the discriminant:

    >>> err = NoDataSourceNameError()
    >>> err.kind is ErrorKind.NO_DSN
    True

Tags:
    error-handling, exception-hierarchy, sentinel-errors, dbx

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Broad grouping of errors for logging and alert routing."""

    CONFIG = "CONFIG"             # Options, missing DSN, unregistered drivers
    DATABASE = "DATABASE"         # Connect, pragma, query, affected rows
    MIGRATION = "MIGRATION"       # Schema migration engine and drivers
    ITERATION = "ITERATION"       # Row streaming: cancellation, decoding, cursor
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


class ErrorKind(str, Enum):
    """
    Closed set of error discriminants.

    One value per condition callers can tell apart.  ``DbxError.kind`` is
    always one of these, so ``match error.kind:`` is exhaustive over
    everything dbx raises or yields.
    """

    # Configuration (detected before any I/O)
    CONFIG = "config"
    NO_DSN = "no_dsn"
    NO_MIGRATION_DRIVERS = "no_migration_drivers"
    DRIVER_NOT_REGISTERED = "driver_not_registered"
    INVALID_OPTION = "invalid_option"

    # Connectivity
    CONNECT_FAILED = "connect_failed"
    PRAGMA_FAILED = "pragma_failed"

    # Migrations
    MIGRATION_FAILED = "migration_failed"
    MIGRATION_DRIVER = "migration_driver"
    MIGRATION_SOURCE = "migration_source"
    MIGRATION_LOCKED = "migration_locked"
    DIRTY_MIGRATION = "dirty_migration"
    DATABASE_TOO_NEW = "database_too_new"

    # Iteration
    CANCELLED = "cancelled"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    DECODE_FAILED = "decode_failed"
    CURSOR_FAILED = "cursor_failed"

    # Write results
    QUERY_FAILED = "query_failed"
    ZERO_ROWS_AFFECTED = "zero_rows_affected"

    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only non-None fields end up in ``to_dict()``.  Anything that does not
    fit a named field goes into ``metadata``.

    Attributes:
        driver: SQL driver name the error relates to (``"sqlite"``, ...)
        dsn: Data source name, when it is safe to log
        statement: SQL statement being executed
        migration_version: Migration version involved
        metadata: Additional key-value pairs
    """

    driver: str | None = None
    dsn: str | None = None
    statement: str | None = None
    migration_version: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["driver", "dsn", "statement", "migration_version"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class DbxError(Exception):
    """
    Base exception for every error dbx raises or yields.

    Subclasses set ``default_kind`` and ``default_category``.  The cause,
    when given, is also chained as ``__cause__`` so tracebacks show the
    driver exception.

    Examples:
        >>> error = DbxError("Something went wrong")
        >>> error.kind
        <ErrorKind.INTERNAL: 'internal'>

        >>> error = QueryError("insert failed").with_context(statement="INSERT ...")
        >>> error.context.statement
        'INSERT ...'
    """

    default_kind: ErrorKind = ErrorKind.INTERNAL
    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> DbxError:
        """
        Add context to this error (fluent API).

        Usage:
            raise PragmaError(stmt, cause=exc).with_context(driver="sqlite")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "kind": self.kind.value,
            "category": self.category.value,
        }

        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict

        if self.cause is not None:
            result["cause"] = str(self.cause)

        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, kind={self.kind.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(DbxError):
    """
    Configuration error.

    Raised before any connection is attempted.  Never resolved by retrying.
    """

    default_kind = ErrorKind.CONFIG
    default_category = ErrorCategory.CONFIG


class NoDataSourceNameError(ConfigError):
    """No data source name was given."""

    default_kind = ErrorKind.NO_DSN

    def __init__(self, message: str = "no data source name given", **kwargs: Any):
        super().__init__(message, **kwargs)


class NoMigrationDriversError(ConfigError):
    """A migration source was configured but no migration driver is registered."""

    default_kind = ErrorKind.NO_MIGRATION_DRIVERS

    def __init__(self, message: str = "no migration drivers registered", **kwargs: Any):
        super().__init__(message, **kwargs)


class DriverNotRegisteredError(ConfigError):
    """No migration driver factory is registered for the SQL driver in use."""

    default_kind = ErrorKind.DRIVER_NOT_REGISTERED

    def __init__(self, driver_name: str, **kwargs: Any):
        self.driver_name = driver_name
        super().__init__(
            f"no migrate driver function registered for sql driver {driver_name!r}",
            **kwargs,
        )
        self.context.driver = driver_name


class InvalidOptionError(ConfigError):
    """An option rejected its argument."""

    default_kind = ErrorKind.INVALID_OPTION

    def __init__(self, option: str, value: Any, message: str | None = None):
        self.option = option
        self.value = value
        super().__init__(message or f"invalid value for {option}: {value!r}")


# =============================================================================
# CONNECTIVITY / QUERY ERRORS
# =============================================================================


class DatabaseError(DbxError):
    """Database-side failure."""

    default_kind = ErrorKind.QUERY_FAILED
    default_category = ErrorCategory.DATABASE


class DatabaseConnectionError(DatabaseError):
    """The underlying engine could not be created or connected."""

    default_kind = ErrorKind.CONNECT_FAILED


class PragmaError(DatabaseError):
    """A configured pragma statement failed; the connection was closed."""

    default_kind = ErrorKind.PRAGMA_FAILED

    def __init__(self, statement: str, *, cause: BaseException | None = None):
        self.statement = statement
        message = f"pragma {statement!r}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message, cause=cause)
        self.context.statement = statement


class QueryError(DatabaseError):
    """SQL execution error, or a result that cannot report affected rows."""

    default_kind = ErrorKind.QUERY_FAILED


class ZeroRowsAffectedError(DatabaseError):
    """A write that should have had side effects matched nothing."""

    default_kind = ErrorKind.ZERO_ROWS_AFFECTED

    def __init__(self, message: str = "no rows affected by operation", **kwargs: Any):
        super().__init__(message, **kwargs)


# =============================================================================
# MIGRATION ERRORS
# =============================================================================


class MigrationError(DbxError):
    """Schema migration failed."""

    default_kind = ErrorKind.MIGRATION_FAILED
    default_category = ErrorCategory.MIGRATION


class MigrationDriverError(MigrationError):
    """The registered migration driver factory failed."""

    default_kind = ErrorKind.MIGRATION_DRIVER

    def __init__(self, driver_name: str, *, cause: BaseException | None = None):
        self.driver_name = driver_name
        message = f"{driver_name} driver"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message, cause=cause)
        self.context.driver = driver_name


class MigrationSourceError(MigrationError):
    """The migration source could not be read or is malformed."""

    default_kind = ErrorKind.MIGRATION_SOURCE


class MigrationLockError(MigrationError):
    """Another migration run holds the lock."""

    default_kind = ErrorKind.MIGRATION_LOCKED

    def __init__(self, message: str = "migration lock already held", **kwargs: Any):
        super().__init__(message, **kwargs)


class DirtyMigrationError(MigrationError):
    """
    A previous migration run was interrupted.

    The schema is in an unknown intermediate state.  Fix the schema by hand
    and force the version (``Migrator.force``) before opening again.
    """

    default_kind = ErrorKind.DIRTY_MIGRATION

    def __init__(self, version: int | None = None, *, cause: BaseException | None = None):
        self.version = version
        message = "database is in a dirty migration state; fix or force version before continuing"
        if version is not None:
            message += f" (version {version})"
        super().__init__(message, cause=cause)
        self.context.migration_version = version


class DatabaseTooNewError(MigrationError):
    """
    The database is at a version this binary has no migration for.

    Usually means a newer build already migrated the database.  Callers may
    choose to proceed without migrating at their own risk.
    """

    default_kind = ErrorKind.DATABASE_TOO_NEW

    def __init__(
        self,
        message: str = "database may be newer than migrations available in this binary",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)


# =============================================================================
# ITERATION ERRORS
# =============================================================================


class IterationError(DbxError):
    """Terminal error of a row iteration."""

    default_category = ErrorCategory.ITERATION


class CancelledError(IterationError):
    """The cancellation context was explicitly cancelled."""

    default_kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "context canceled", **kwargs: Any):
        super().__init__(message, **kwargs)


class DeadlineExceededError(IterationError):
    """The cancellation context's deadline passed."""

    default_kind = ErrorKind.DEADLINE_EXCEEDED

    def __init__(self, message: str = "context deadline exceeded", **kwargs: Any):
        super().__init__(message, **kwargs)


class DecodeError(IterationError):
    """A row could not be decoded into the record type."""

    default_kind = ErrorKind.DECODE_FAILED


class CursorError(IterationError):
    """The cursor failed while fetching; surfaced at the end of the stream."""

    default_kind = ErrorKind.CURSOR_FAILED


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def error_kind(error: BaseException) -> ErrorKind:
    """Get the kind of an error; foreign exceptions are ``INTERNAL``."""
    if isinstance(error, DbxError):
        return error.kind
    return ErrorKind.INTERNAL


def is_cancellation(error: BaseException) -> bool:
    """True for explicit cancellation and deadline expiry."""
    return error_kind(error) in (ErrorKind.CANCELLED, ErrorKind.DEADLINE_EXCEEDED)


__all__ = [
    "ErrorCategory",
    "ErrorKind",
    "ErrorContext",
    "DbxError",
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
