"""
Result[T] envelope: explicit success/failure values.

The row iterator hands out one ``Result`` per step: ``Ok(record)`` while rows
are flowing, and at most one terminal ``Err(error)``.  The zero-rows-affected
helper takes and returns ``Result`` so a failed execution and a write that
matched nothing are never conflated.

Manifesto:
    - **Explicit failure:** An ``Err`` is a value the caller has to look at
    - **No phantom values:** ``Err`` carries no record; there is nothing to
      use by accident
    - **Pattern matching:** ``match`` on ``Ok(v)`` / ``Err(e)``

Usage:
    from dbx.result import Ok, Err

    for item in iter_rows(ctx, rows, Person):
        match item:
            case Ok(person):
                handle(person)
            case Err(error):
                log.warning("stream_failed", error=str(error))

Tags:
    result-pattern, error-handling, dbx

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from dbx.errors import DbxError


T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    @property
    def error(self) -> None:
        """Always ``None`` for Ok."""
        return None

    def unwrap(self) -> T:
        """Get the value. Safe for Ok."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """Transform the value if Ok."""
        return Ok(f(self.value))

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        """Chain to another Result-returning function."""
        return f(self.value)

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "value": self.value}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """
    Failed result containing an error.

    ``unwrap()`` raises the error, which is how exception-style callers get
    back onto the usual ``try``/``except`` path.
    """

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the error. Use only when you're sure it's Ok."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        """Get default since this is Err."""
        return default

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """No-op for Err."""
        return Err(self.error)

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        """No-op for Err."""
        return Err(self.error)

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.error, DbxError):
            return {"ok": False, "error": self.error.to_dict()}
        return {
            "ok": False,
            "error": {
                "error_type": type(self.error).__name__,
                "message": str(self.error),
            },
        }

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Type alias for Result
Result = Ok[T] | Err[T]


def try_result(f: Callable[[], T]) -> Result[T]:
    """
    Execute a function and wrap its outcome in a Result.

    This is the bridge from SQLAlchemy's exception-raising calls into the
    Result world, e.g. for :func:`dbx.rows.check_for_zero_rows_affected`::

        res = try_result(lambda: conn.execute(text("DELETE FROM t WHERE id = 1")))
        res = check_for_zero_rows_affected(res)
    """
    try:
        return Ok(f())
    except Exception as e:
        return Err(e)


def collect_results(results: Iterable[Result[T]]) -> Result[list[T]]:
    """
    Collect values until the first Err.

    Returns ``Ok(values)`` when every item is Ok, otherwise the first Err.
    Stops consuming ``results`` at the first Err.
    """
    values: list[T] = []
    for result in results:
        if isinstance(result, Err):
            return Err(result.error)
        values.append(result.value)
    return Ok(values)


__all__ = [
    "Ok",
    "Err",
    "Result",
    "try_result",
    "collect_results",
]
