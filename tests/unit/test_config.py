"""
Unit tests for configuration and logging setup.

Tests cover:
- Defaults
- SCHEMASYNC_* environment overrides
- validate_config() errors
- setup_logging formatter selection
"""

import logging

import json_log_formatter
import pytest

from schemasync.config import Settings
from schemasync.main import setup_logging


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch):
        """Every setting has a local-development default."""
        for name in ("SCHEMASYNC_TARGET", "SCHEMASYNC_LEDGER_PATH", "SCHEMASYNC_REDEFINITION_THRESHOLD"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None)

        assert settings.target == "default"
        assert settings.ledger_path == "./schemasync-ledger.db"
        assert settings.redefinition_threshold == 4
        assert settings.retry_max_attempts == 5
        assert settings.stale_pending_seconds == 3600
        assert settings.retryable_errors == ["ConnectivityError", "ConnectionError", "TimeoutError"]
        settings.validate_config()

    def test_env_overrides(self, monkeypatch):
        """Environment variables use the SCHEMASYNC_ prefix."""
        monkeypatch.setenv("SCHEMASYNC_TARGET", "staging")
        monkeypatch.setenv("SCHEMASYNC_REDEFINITION_THRESHOLD", "2")
        monkeypatch.setenv("SCHEMASYNC_RETRYABLE_ERRORS", '["OSError"]')
        monkeypatch.setenv("SCHEMASYNC_LOG_FORMAT", "text")

        settings = Settings(_env_file=None)

        assert settings.target == "staging"
        assert settings.redefinition_threshold == 2
        assert settings.retryable_errors == ["OSError"]
        assert settings.log_format == "text"

    @pytest.mark.parametrize(
        "kwargs,message",
        [
            ({"redefinition_threshold": 0}, "REDEFINITION_THRESHOLD"),
            ({"retry_max_attempts": 0}, "RETRY_MAX_ATTEMPTS"),
            ({"retry_base_delay_ms": 500, "retry_max_delay_ms": 100}, "Retry delays"),
            ({"retry_multiplier": 0.5}, "RETRY_MULTIPLIER"),
            ({"stale_pending_seconds": -1}, "STALE_PENDING_SECONDS"),
            ({"log_level": "LOUD"}, "LOG_LEVEL"),
            ({"log_format": "xml"}, "LOG_FORMAT"),
            ({"target": ""}, "TARGET"),
        ],
    )
    def test_validate_config(self, kwargs, message):
        """Inconsistent settings are rejected."""
        with pytest.raises(ValueError, match=message):
            Settings(_env_file=None, **kwargs).validate_config()


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        """Keep the root logger untouched between tests."""
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        """JSON logging uses json_log_formatter."""
        setup_logging(Settings(_env_file=None, log_format="json", log_level="DEBUG"))

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert root.level == logging.DEBUG

    def test_text_format(self):
        """Text logging uses a plain formatter."""
        setup_logging(Settings(_env_file=None, log_format="text", log_level="warning"))

        root = logging.getLogger()
        assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert root.level == logging.WARNING
