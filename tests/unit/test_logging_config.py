"""
Tests for structured JSON logging configuration.

This module tests:
- JSONFormatter (JSON log output)
- setup_logging() (logging configuration)
- log_with_context() (context field promotion)

Tests follow AAA (Arrange, Act, Assert) pattern.
"""

import io
import json
import logging

import pytest

from repokit.core.logging_config import (
    JSONFormatter,
    get_logger,
    log_with_context,
    setup_logging,
)


@pytest.fixture
def json_logger():
    """Logger writing JSON lines into a string buffer."""
    logger = logging.getLogger("repokit.tests.json")
    logger.setLevel(logging.DEBUG)
    logger.handlers = []
    logger.propagate = False

    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)

    yield logger, stream

    logger.handlers = []
    logger.propagate = True


class TestJSONFormatter:
    """Tests for JSON log formatter."""

    def test_basic_message(self, json_logger):
        """
        Test JSONFormatter outputs valid JSON.

        Arrange: Logger with JSONFormatter
        Act: Log a message
        Assert: Output is valid JSON with required fields
        """
        # Arrange
        logger, stream = json_logger

        # Act
        logger.info("Scope committed")

        # Assert
        log_data = json.loads(stream.getvalue().strip())
        assert log_data["level"] == "INFO"
        assert log_data["message"] == "Scope committed"
        assert log_data["logger"] == "repokit.tests.json"
        assert "timestamp" in log_data

    def test_extra_fields_included(self, json_logger):
        logger, stream = json_logger

        logger.debug("Lookup pattern parsed", extra={"pattern": "find_by_name", "arity": 1})

        log_data = json.loads(stream.getvalue().strip())
        assert log_data["pattern"] == "find_by_name"
        assert log_data["arity"] == 1

    def test_exception_serialized(self, json_logger):
        logger, stream = json_logger

        try:
            raise ValueError("boom")
        except ValueError:
            logger.exception("Statement failed")

        log_data = json.loads(stream.getvalue().strip())
        assert "ValueError: boom" in log_data["exception"]


class TestLogWithContext:
    """Tests for log_with_context()."""

    def test_context_fields_promoted(self, json_logger):
        """
        Test the data-access context fields appear as top-level keys.

        Arrange: JSON logger
        Act: Log with scope, entity, strategy, rows and elapsed time
        Assert: Every field is present; unset ones are omitted
        """
        logger, stream = json_logger

        log_with_context(
            logger, "debug", "Query executed",
            scope_id="abc123", entity="Player", strategy="derived",
            rows=2, elapsed_ms=1.5,
        )

        log_data = json.loads(stream.getvalue().strip())
        assert log_data["scope_id"] == "abc123"
        assert log_data["entity"] == "Player"
        assert log_data["strategy"] == "derived"
        assert log_data["rows"] == 2
        assert log_data["elapsed_ms"] == 1.5
        assert "affected" not in log_data

    def test_extra_keyword_fields(self, json_logger):
        logger, stream = json_logger

        log_with_context(logger, "info", "Bulk statement executed", affected=4, auditor="tester")

        log_data = json.loads(stream.getvalue().strip())
        assert log_data["level"] == "INFO"
        assert log_data["affected"] == 4
        assert log_data["auditor"] == "tester"


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_configures_root_logger(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(level="WARNING", json_format=True)

            assert root.level == logging.WARNING
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
        finally:
            root.handlers = saved_handlers
            root.setLevel(saved_level)

    def test_get_logger(self):
        assert get_logger("repokit.query") is logging.getLogger("repokit.query")
