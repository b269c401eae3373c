"""Cancellation-aware row streaming into typed records.

Manifesto:
    Large result sets should stream to the client instead of being slurped
    into memory first.  ``iter_rows`` turns an open cursor into a lazy
    sequence of records that:

    - **Pulls one row at a time:** nothing is buffered beyond the current row
    - **Polls cancellation before every fetch:** which is also the first
      thing that runs once the consumer has handled the previous record
    - **Ends with at most one error:** every failure is the last item
    - **Always releases the cursor:** exactly once, on every exit path

Architecture:
    ::

        next() ──► ctx.err()? ───────────────────────────► Err(cancel)  ■
                          │ live
                          ▼
                     fetchone() ── raises ───────────────► Err(cursor)  ■
                          │ None ────────────────────────► StopIteration ■
                          ▼
                       decode ─── fails ─────────────────► Err(decode)  ■
                          │
                          ▼
                      Ok(record)

        ■ = cursor released, iterator done

Examples:
    >>> result = conn.execute(text("SELECT id, name FROM person"))
    >>> with iter_rows(ctx, result, Person) as people:
    ...     for item in people:
    ...         match item:
    ...             case Ok(person):
    ...                 send(person)
    ...             case Err(error):
    ...                 log.warning("stream_failed", error=str(error))

    Breaking out of the loop early is fine; the cursor is released when the
    ``with`` block exits (or when the iterator is dropped).

Guardrails:
    ❌ DON'T: Share one cursor between two iterators
    ✅ DO: Run one query per iterator

    ❌ DON'T: Use ``Err.unwrap_or(...)`` values as data
    ✅ DO: Check ``is_err()`` before using an item

Tags:
    streaming, cursor, cancellation, iterator, result-pattern, dbx

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from dbx.context import CancelContext
from dbx.errors import (
    CursorError,
    DbxError,
    DecodeError,
    QueryError,
    ZeroRowsAffectedError,
    is_cancellation,
)
from dbx.logging import get_logger
from dbx.protocols import Rows
from dbx.result import Err, Ok, Result, collect_results

logger = get_logger(__name__)

T = TypeVar("T")

Decoder = Callable[[Mapping[str, Any]], T]


# =============================================================================
# DECODING
# =============================================================================


def _dataclass_decoder(record_type: type[T]) -> Decoder[T]:
    columns: dict[str, str] = {}
    for f in dataclasses.fields(record_type):  # type: ignore[arg-type]
        if not f.init:
            continue
        columns[f.metadata.get("db", f.name)] = f.name

    def decode(row: Mapping[str, Any]) -> T:
        kwargs = {}
        for column, value in row.items():
            try:
                kwargs[columns[column]] = value
            except KeyError:
                raise DecodeError(
                    f"missing destination name {column!r} in {record_type.__name__}"
                ) from None
        return record_type(**kwargs)

    return decode


def record_decoder(record_type: type[T]) -> Decoder[T]:
    """Build the row-to-record function for ``record_type``.

    - pydantic models are validated with ``model_validate`` (aliases and
      type coercion apply)
    - dataclass columns map to fields by name, or by ``metadata={"db": col}``;
      a column with no matching field is a decode error
    - ``dict`` gets the plain column mapping
    - anything else is called with the columns as keyword arguments
    """
    if isinstance(record_type, type) and issubclass(record_type, BaseModel):
        return lambda row: record_type.model_validate(dict(row))
    if dataclasses.is_dataclass(record_type):
        return _dataclass_decoder(record_type)
    if record_type is dict:
        return lambda row: dict(row)  # type: ignore[return-value]
    return lambda row: record_type(**row)


def _column_names(rows: Any) -> list[str]:
    keys = getattr(rows, "keys", None)
    if callable(keys):
        return [str(k) for k in keys()]
    description = getattr(rows, "description", None)
    if description is None:
        raise CursorError("cursor does not describe its columns")
    return [d[0] for d in description]


# =============================================================================
# ITERATOR
# =============================================================================


class _Step(str, Enum):
    READY = "ready"        # cursor open, next fetch allowed
    DONE = "done"          # cursor released, nothing more to produce


class RowIterator(Generic[T]):
    """
    Lazy sequence of ``Result[T]`` over an open cursor.

    Owns the cursor from construction on.  The cursor is closed exactly
    once: when the rows run out, when an error is produced, on ``close()``
    or ``__exit__``, or when the iterator is garbage collected unused.

    Attributes:
        rows_read: Records handed out so far
    """

    def __init__(
        self,
        ctx: CancelContext,
        rows: Rows,
        record_type: type[T],
        *,
        decoder: Decoder[T] | None = None,
    ) -> None:
        self._ctx = ctx
        self._rows = rows
        self._record_type = record_type
        self._decode = decoder or record_decoder(record_type)
        self._columns: list[str] | None = None
        self._step = _Step.READY
        self._released = False
        self.rows_read = 0

    @property
    def done(self) -> bool:
        return self._step is _Step.DONE

    def __iter__(self) -> RowIterator[T]:
        return self

    def __next__(self) -> Result[T]:
        if self._step is _Step.DONE:
            raise StopIteration

        # Polled before every fetch, so after the first record this also
        # catches a cancel that arrived while the consumer held that record.
        err = self._ctx.err()
        if err is not None:
            return self._fail(err)

        try:
            row = self._rows.fetchone()
        except Exception as exc:
            return self._fail(CursorError(f"fetching row: {exc}", cause=exc))

        if row is None:
            self._finish()
            raise StopIteration

        try:
            record = self._decode(self._as_mapping(row))
        except DbxError as exc:
            return self._fail(exc)
        except Exception as exc:
            return self._fail(
                DecodeError(
                    f"decoding row {self.rows_read + 1} into {self._record_type.__name__}: {exc}",
                    cause=exc,
                )
            )

        self.rows_read += 1
        return Ok(record)

    def close(self) -> None:
        """Stop early and release the cursor; safe to call repeatedly."""
        self._finish()

    def __enter__(self) -> RowIterator[T]:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __del__(self) -> None:
        if not getattr(self, "_released", True):
            self._release()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _as_mapping(self, row: Any) -> Mapping[str, Any]:
        mapping = getattr(row, "_mapping", None)
        if mapping is not None:
            return mapping
        if isinstance(row, Mapping):
            return row
        if self._columns is None:
            self._columns = _column_names(self._rows)
        return dict(zip(self._columns, row, strict=True))

    def _fail(self, error: DbxError) -> Err[T]:
        if isinstance(error, DecodeError):
            logger.warning("rows_decode_failed", rows_read=self.rows_read, error=str(error))
        elif is_cancellation(error):
            logger.debug("rows_cancelled", kind=error.kind.value, rows_read=self.rows_read)
        else:
            logger.warning("rows_cursor_failed", rows_read=self.rows_read, error=str(error))
        self._finish()
        return Err(error)

    def _finish(self) -> None:
        self._step = _Step.DONE
        self._release()

    def _release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            self._rows.close()
        except Exception as exc:
            logger.warning("rows_close_failed", error=str(exc))


def iter_rows(
    ctx: CancelContext,
    rows: Rows,
    record_type: type[T],
    *,
    decoder: Decoder[T] | None = None,
) -> RowIterator[T]:
    """Stream ``rows`` as ``Result[record_type]`` items.

    ``record_type`` is a dataclass, a pydantic model, ``dict``, or any
    callable taking the columns as keyword arguments.  Pass ``decoder`` to
    take over the row-to-record step entirely.

    Example::

        result = conn.execute(text("SELECT name, ts FROM foo"))
        for item in iter_rows(ctx, result, Record):
            if item.is_err():
                break  # or handle item.error
            handle(item.value)
    """
    return RowIterator(ctx, rows, record_type, decoder=decoder)


def collect_rows(
    ctx: CancelContext,
    rows: Rows,
    record_type: type[T],
    *,
    decoder: Decoder[T] | None = None,
) -> Result[list[T]]:
    """All records as a list, or the terminal error instead of a partial list."""
    with iter_rows(ctx, rows, record_type, decoder=decoder) as it:
        return collect_results(it)


# =============================================================================
# WRITE RESULTS
# =============================================================================


def check_for_zero_rows_affected(result: Result[Any]) -> Result[Any]:
    """Turn a write that matched nothing into an error.

    - ``Err`` is returned unchanged, whatever the affected row count
    - ``Ok(r)`` with ``r.rowcount == 0`` becomes ``Err(ZeroRowsAffectedError)``
    - ``Ok(r)`` whose driver cannot report a row count becomes ``Err(QueryError)``
    - ``Ok(None)`` and everything else is returned unchanged

    Usage::

        res = try_result(lambda: conn.execute(stmt))
        match check_for_zero_rows_affected(res):
            case Err(ZeroRowsAffectedError()):
                raise NotFound(key)
    """
    if isinstance(result, Err) or result.value is None:
        return result

    affected = getattr(result.value, "rowcount", None)
    if affected is None or affected < 0:
        return Err(QueryError("result does not report affected rows"))
    if affected == 0:
        return Err(ZeroRowsAffectedError())
    return result


def ensure_rows_affected(result: Any) -> Any:
    """Exception-style form of :func:`check_for_zero_rows_affected`.

    Returns ``result`` when it affected at least one row.

    Raises:
        ZeroRowsAffectedError: If no rows were affected
        QueryError: If the driver cannot report a row count
    """
    return check_for_zero_rows_affected(Ok(result)).unwrap()


__all__ = [
    "Decoder",
    "RowIterator",
    "record_decoder",
    "iter_rows",
    "collect_rows",
    "check_for_zero_rows_affected",
    "ensure_rows_affected",
]
