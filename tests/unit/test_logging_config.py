"""Tests for structured logging configuration."""

import json
import logging
import re
from collections.abc import Iterator
from io import StringIO

import pytest
import structlog

from academic_gateway.logging_config import configure_logging


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    """Reset structlog state after each test."""
    yield
    structlog.reset_defaults()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)


def _capture_log_output(environment: str, **event: object) -> str:
    """Configure logging, emit a message, return captured output."""
    configure_logging(environment=environment, log_level="DEBUG")

    stream = StringIO()
    root = logging.getLogger()
    if not root.handlers or not isinstance(root.handlers[0], logging.StreamHandler):
        raise RuntimeError("Expected configure_logging to set up a StreamHandler")

    original_stream = root.handlers[0].stream
    root.handlers[0].stream = stream

    logger = structlog.get_logger()
    logger.info("test_event", **(event or {"key": "value"}))

    root.handlers[0].stream = original_stream
    return stream.getvalue()


class TestConfigureLogging:
    def test_configure_production_json(self) -> None:
        """Production environment produces valid JSON output."""
        parsed = json.loads(_capture_log_output("production"))
        assert parsed["event"] == "test_event"
        assert parsed["key"] == "value"
        assert parsed["level"] == "info"
        assert parsed["service"] == "academic_gateway"

    def test_configure_development_console(self) -> None:
        output = _capture_log_output("development")
        plain = re.sub(r"\x1b\[[0-9;]*m", "", output)
        assert "test_event" in plain
        assert "key=value" in plain

    def test_configure_sets_log_level(self) -> None:
        configure_logging(log_level="WARNING")
        assert logging.getLogger().level == logging.WARNING

    def test_settings_used_when_no_arguments(self, settings_factory) -> None:
        configure_logging(settings_factory(log_level="ERROR"))
        assert logging.getLogger().level == logging.ERROR

    def test_explicit_level_wins_over_settings(self, settings_factory) -> None:
        configure_logging(settings_factory(log_level="ERROR"), log_level="INFO")
        assert logging.getLogger().level == logging.INFO

    def test_sdk_loggers_quieted(self) -> None:
        configure_logging(log_level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_includes_timestamp(self) -> None:
        parsed = json.loads(_capture_log_output("production"))
        assert "T" in parsed["timestamp"]


class TestRedaction:
    def test_sensitive_keys_redacted(self) -> None:
        parsed = json.loads(
            _capture_log_output("production", api_key="sk-live", token="t0k")
        )
        assert parsed["api_key"] == "***REDACTED***"
        assert parsed["token"] == "***REDACTED***"

    def test_provider_key_fields_redacted(self) -> None:
        parsed = json.loads(_capture_log_output("production", groq_api_key="gsk-1"))
        assert parsed["groq_api_key"] == "***REDACTED***"

    def test_masked_key_field_kept(self) -> None:
        """Retry logs carry an already masked ``key`` field."""
        parsed = json.loads(_capture_log_output("production", key="...abcd"))
        assert parsed["key"] == "...abcd"
