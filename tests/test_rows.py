"""Tests for iter_rows / collect_rows and the zero-rows-affected helper."""

from __future__ import annotations

import gc
import time
from dataclasses import dataclass, field
from types import SimpleNamespace

import pytest
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.engine import Engine
from structlog.testing import capture_logs

from dbx.context import background, with_cancel, with_timeout
from dbx.errors import (
    CancelledError,
    CursorError,
    DeadlineExceededError,
    DecodeError,
    ErrorKind,
    QueryError,
    ZeroRowsAffectedError,
)
from dbx.result import Err, Ok, try_result
from dbx.rows import (
    RowIterator,
    check_for_zero_rows_affected,
    collect_rows,
    ensure_rows_affected,
    iter_rows,
)


# ── Records and fakes ─────────────────────────────────────────────────


@dataclass
class Foo:
    name: str
    ts: int


@dataclass
class TaggedFoo:
    label: str = field(metadata={"db": "name"})
    ts: int = 0


class FooModel(BaseModel):
    name: str
    stamp: int = Field(alias="ts")


class FakeRows:
    """DB-API style cursor that counts fetches and closes."""

    def __init__(self, rows, columns=("name", "ts"), fail_at: int | None = None, close_error=None):
        self._rows = list(rows)
        self._columns = columns
        self._fail_at = fail_at
        self._close_error = close_error
        self.fetches = 0
        self.closes = 0

    @property
    def description(self):
        return [(c, None, None, None, None, None, None) for c in self._columns]

    def fetchone(self):
        self.fetches += 1
        if self._fail_at is not None and self.fetches >= self._fail_at:
            raise RuntimeError("connection reset by peer")
        return self._rows.pop(0) if self._rows else None

    def close(self):
        self.closes += 1
        if self._close_error is not None:
            raise self._close_error


THREE_ROWS = [("a", 1), ("b", 2), ("c", 3)]


def select_foo(engine: Engine):
    conn = engine.connect()
    return conn, conn.execute(text("SELECT name, ts FROM foo ORDER BY ts"))


# ── Streaming ─────────────────────────────────────────────────────────


class TestStreaming:
    def test_yields_records_in_cursor_order(self, foo_engine: Engine):
        conn, result = select_foo(foo_engine)
        try:
            items = list(iter_rows(background(), result, Foo))
        finally:
            conn.close()

        assert all(isinstance(item, Ok) for item in items)
        assert [item.value for item in items] == [Foo("a", 1), Foo("b", 2), Foo("c", 3)]
        assert result.closed

    def test_exhaustion_releases_cursor_once(self):
        rows = FakeRows(THREE_ROWS)
        it = iter_rows(background(), rows, Foo)

        assert len(list(it)) == 3
        assert rows.closes == 1
        with pytest.raises(StopIteration):
            next(it)
        it.close()
        assert rows.closes == 1
        assert it.done

    def test_empty_cursor_yields_nothing(self):
        rows = FakeRows([])
        assert list(iter_rows(background(), rows, Foo)) == []
        assert rows.closes == 1

    def test_one_row_buffered_at_a_time(self):
        rows = FakeRows(THREE_ROWS)
        it = iter_rows(background(), rows, Foo)
        assert rows.fetches == 0

        next(it)
        assert rows.fetches == 1
        assert it.rows_read == 1
        it.close()

    def test_db_metadata_renames_columns(self):
        items = list(iter_rows(background(), FakeRows(THREE_ROWS), TaggedFoo))
        assert items[0].value == TaggedFoo(label="a", ts=1)

    def test_pydantic_model_uses_aliases(self, foo_engine: Engine):
        conn, result = select_foo(foo_engine)
        try:
            items = list(iter_rows(background(), result, FooModel))
        finally:
            conn.close()
        assert [(m.value.name, m.value.stamp) for m in items] == [("a", 1), ("b", 2), ("c", 3)]

    def test_dict_records(self):
        items = list(iter_rows(background(), FakeRows(THREE_ROWS[:1]), dict))
        assert items == [Ok({"name": "a", "ts": 1})]

    def test_custom_decoder(self):
        items = list(
            iter_rows(
                background(),
                FakeRows(THREE_ROWS),
                str,
                decoder=lambda row: f"{row['name']}@{row['ts']}",
            )
        )
        assert [i.value for i in items] == ["a@1", "b@2", "c@3"]


# ── Cancellation ──────────────────────────────────────────────────────


class TestCancellation:
    def test_cancelled_before_first_pull_fetches_nothing(self):
        ctx, cancel = with_cancel(background())
        cancel()
        rows = FakeRows(THREE_ROWS)

        items = list(iter_rows(ctx, rows, Foo))

        assert len(items) == 1
        assert isinstance(items[0].error, CancelledError)
        assert rows.fetches == 0
        assert rows.closes == 1

    def test_cancel_after_first_record(self, foo_engine: Engine):
        ctx, cancel = with_cancel(background())
        conn, result = select_foo(foo_engine)
        try:
            it = iter_rows(ctx, result, Foo)
            first = next(it)
            cancel()
            second = next(it)
            with pytest.raises(StopIteration):
                next(it)
        finally:
            conn.close()

        assert first == Ok(Foo("a", 1))
        assert second.is_err()
        assert second.error.kind is ErrorKind.CANCELLED
        assert str(second.error) == "context canceled"
        assert result.closed

    def test_cancel_after_record_stops_further_fetches(self):
        ctx, cancel = with_cancel(background())
        rows = FakeRows(THREE_ROWS)
        it = iter_rows(ctx, rows, Foo)

        next(it)
        cancel()
        assert next(it).is_err()
        assert rows.fetches == 1
        assert rows.closes == 1

    def test_one_cancellation_poll_per_pull(self):
        ctx, cancel = with_cancel(background())
        polls = 0
        original_err = ctx.err

        def counting_err():
            nonlocal polls
            polls += 1
            return original_err()

        ctx.err = counting_err
        rows = FakeRows(THREE_ROWS)

        items = list(iter_rows(ctx, rows, Foo))

        # Three records plus the pull that finds the cursor exhausted.
        assert len(items) == 3
        assert polls == 4
        assert rows.fetches == 4
        cancel()

    def test_expired_deadline(self):
        ctx, cancel = with_timeout(background(), 0.0)
        rows = FakeRows(THREE_ROWS)

        items = list(iter_rows(ctx, rows, Foo))
        cancel()

        assert len(items) == 1
        assert isinstance(items[0].error, DeadlineExceededError)
        assert rows.fetches == 0

    @pytest.mark.slow
    def test_deadline_passing_mid_stream(self):
        ctx, cancel = with_timeout(background(), 0.05)
        rows = FakeRows(THREE_ROWS)
        it = iter_rows(ctx, rows, Foo)

        assert next(it).is_ok()
        time.sleep(0.1)
        second = next(it)
        cancel()

        assert second.error.kind is ErrorKind.DEADLINE_EXCEEDED
        assert rows.closes == 1

    def test_parent_cancellation_reaches_child(self):
        parent, cancel_parent = with_cancel(background())
        child, cancel_child = with_timeout(parent, 60)
        cancel_parent()

        items = list(iter_rows(child, FakeRows(THREE_ROWS), Foo))
        cancel_child()

        assert isinstance(items[0].error, CancelledError)

    def test_cancellation_is_logged(self):
        ctx, cancel = with_cancel(background())
        cancel()
        with capture_logs() as logs:
            list(iter_rows(ctx, FakeRows(THREE_ROWS), Foo))
        assert any(entry["event"] == "rows_cancelled" for entry in logs)


# ── Errors ────────────────────────────────────────────────────────────


class TestErrors:
    def test_fetch_error_is_the_last_item(self):
        rows = FakeRows(THREE_ROWS, fail_at=3)

        items = list(iter_rows(background(), rows, Foo))

        assert [i.is_ok() for i in items] == [True, True, False]
        error = items[-1].error
        assert isinstance(error, CursorError)
        assert isinstance(error.cause, RuntimeError)
        assert rows.closes == 1

    def test_unknown_column_is_decode_error(self):
        rows = FakeRows([("a", 1, "x")], columns=("name", "ts", "extra"))

        with capture_logs() as logs:
            items = list(iter_rows(background(), rows, Foo))

        assert len(items) == 1
        assert isinstance(items[0].error, DecodeError)
        assert "missing destination name" in str(items[0].error)
        assert rows.closes == 1
        assert logs[0]["event"] == "rows_decode_failed"

    def test_validation_failure_is_decode_error(self):
        rows = FakeRows([("a", "not-a-number"), ("b", 2)])

        items = list(iter_rows(background(), rows, FooModel))

        assert len(items) == 1
        assert items[0].error.kind is ErrorKind.DECODE_FAILED
        assert items[0].error.cause is not None
        assert rows.fetches == 1

    def test_decode_failure_mid_stream(self):
        rows = FakeRows([("a", 1), ("b", "bad"), ("c", 3)])

        items = list(iter_rows(background(), rows, FooModel))

        assert [i.is_ok() for i in items] == [True, False]
        assert items[0].value.name == "a"
        assert isinstance(items[1].error, DecodeError)
        assert rows.fetches == 2
        assert rows.closes == 1

    def test_error_item_has_no_value(self):
        ctx, cancel = with_cancel(background())
        cancel()
        item = next(iter_rows(ctx, FakeRows(THREE_ROWS), Foo))
        assert item.unwrap_or(None) is None
        with pytest.raises(CancelledError):
            item.unwrap()


# ── Release on early exit ─────────────────────────────────────────────


class TestRelease:
    def test_close_before_first_pull(self):
        rows = FakeRows(THREE_ROWS)
        it = iter_rows(background(), rows, Foo)

        it.close()
        it.close()

        assert rows.closes == 1
        assert rows.fetches == 0
        assert list(it) == []

    def test_break_inside_with_block(self):
        rows = FakeRows(THREE_ROWS)
        with iter_rows(background(), rows, Foo) as it:
            for item in it:
                if item.value.name == "a":
                    break

        assert rows.closes == 1
        assert rows.fetches == 1

    def test_dropped_iterator_releases_cursor(self):
        rows = FakeRows(THREE_ROWS)
        it = iter_rows(background(), rows, Foo)
        next(it)

        del it
        gc.collect()

        assert rows.closes == 1

    def test_close_failure_is_logged(self):
        rows = FakeRows([], close_error=RuntimeError("close failed"))
        it = RowIterator(background(), rows, Foo)

        with capture_logs() as logs:
            assert list(it) == []

        assert rows.closes == 1
        assert logs[-1]["event"] == "rows_close_failed"


# ── collect_rows ──────────────────────────────────────────────────────


class TestCollectRows:
    def test_collects_all_records(self):
        rows = FakeRows(THREE_ROWS)
        result = collect_rows(background(), rows, Foo)
        assert result.unwrap() == [Foo("a", 1), Foo("b", 2), Foo("c", 3)]
        assert rows.closes == 1

    def test_returns_error_instead_of_partial_list(self):
        rows = FakeRows(THREE_ROWS, fail_at=2)
        result = collect_rows(background(), rows, Foo)
        assert isinstance(result, Err)
        assert isinstance(result.error, CursorError)
        assert rows.closes == 1


# ── Zero rows affected ────────────────────────────────────────────────


class TestCheckForZeroRowsAffected:
    def test_error_passes_through_unchanged(self):
        original = Err(QueryError("insert failed"))
        assert check_for_zero_rows_affected(original) is original

    def test_error_wins_even_with_zero_rows(self):
        original = Err(QueryError("boom"))
        result = check_for_zero_rows_affected(original)
        assert not isinstance(result.error, ZeroRowsAffectedError)

    def test_update_matching_nothing(self, foo_engine: Engine):
        with foo_engine.begin() as conn:
            res = try_result(lambda: conn.execute(text("UPDATE foo SET ts = 9 WHERE name = 'zzz'")))
            checked = check_for_zero_rows_affected(res)

        assert isinstance(checked.error, ZeroRowsAffectedError)
        assert str(checked.error) == "no rows affected by operation"

    def test_update_matching_rows(self, foo_engine: Engine):
        with foo_engine.begin() as conn:
            res = try_result(lambda: conn.execute(text("UPDATE foo SET ts = 9 WHERE name = 'a'")))
            checked = check_for_zero_rows_affected(res)

        assert checked is res
        assert checked.value.rowcount == 1

    def test_unknown_row_count_is_query_error(self):
        checked = check_for_zero_rows_affected(Ok(SimpleNamespace(rowcount=-1)))
        assert isinstance(checked.error, QueryError)

    def test_ensure_rows_affected_raises(self):
        with pytest.raises(ZeroRowsAffectedError):
            ensure_rows_affected(SimpleNamespace(rowcount=0))

    def test_ensure_rows_affected_returns_result(self):
        res = SimpleNamespace(rowcount=2)
        assert ensure_rows_affected(res) is res
