"""
Tests for the logging module.

Tests verify:
- JSON output carries event, level, service and timestamp
- DEBUG logs are suppressed at INFO level
- Context binding is scoped by LogContext
"""

import json
import logging

import pytest
import structlog

from dbx.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()
    clear_context()


class TestConfigureLogging:
    def test_json_output(self, caplog: pytest.LogCaptureFixture):
        caplog.set_level(logging.INFO)
        configure_logging(level="INFO", json_format=True, service="orders")

        get_logger("dbx.tests.json").info("database_opened", driver="sqlite")

        payload = json.loads(caplog.records[-1].getMessage())
        assert payload["event"] == "database_opened"
        assert payload["driver"] == "sqlite"
        assert payload["service"] == "orders"
        assert payload["level"] == "info"
        assert "timestamp" in payload

    def test_debug_suppressed_at_info(self, caplog: pytest.LogCaptureFixture):
        caplog.set_level(logging.DEBUG)
        configure_logging(level="INFO", json_format=True)

        get_logger("dbx.tests.debug").debug("pragma_applied", statement="PRAGMA x")

        assert caplog.records == []

    def test_without_timestamp(self, caplog: pytest.LogCaptureFixture):
        caplog.set_level(logging.INFO)
        configure_logging(json_format=True, add_timestamp=False)

        get_logger("dbx.tests.ts").info("database_migration", version=2)

        payload = json.loads(caplog.records[-1].getMessage())
        assert "timestamp" not in payload
        assert payload["version"] == 2


class TestContext:
    def test_bind_and_unbind(self):
        bind_context(dsn="app.db", driver="sqlite")
        unbind_context("dsn")
        assert structlog.contextvars.get_contextvars() == {"driver": "sqlite"}

    def test_log_context_is_scoped(self):
        with LogContext(migration_version=3):
            assert structlog.contextvars.get_contextvars()["migration_version"] == 3
        assert "migration_version" not in structlog.contextvars.get_contextvars()
