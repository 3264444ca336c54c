"""
Test cases for settings loading and validation
"""

import logging

import pytest
from pydantic import ValidationError

from tenant_sync.core.config import Settings
from tenant_sync.core.logging import configure_logging


class TestSettings:
    """Test environment-driven settings"""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SYNC_MAX_RETRY_ATTEMPTS", raising=False)
        settings = Settings(_env_file=None)

        assert settings.SYNC_MAX_RETRY_ATTEMPTS == 3
        assert settings.SYNC_LOCK_TTL_SECONDS == 3600
        assert settings.SYNC_RETENTION_DAYS == 90
        assert settings.SYNC_STATUS_WINDOW_HOURS == 24
        assert settings.SYNC_RETRY_LIMIT == 50

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("SYNC_LOCK_TTL_SECONDS", "900")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = Settings(_env_file=None)

        assert settings.SYNC_LOCK_TTL_SECONDS == 900
        assert settings.LOG_LEVEL == "DEBUG"

    def test_non_positive_values_rejected(self, monkeypatch):
        monkeypatch.setenv("SYNC_MAX_RETRY_ATTEMPTS", "0")

        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_empty_database_url_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, DATABASE_URL="")


class TestLogging:
    """Test logging configuration"""

    def test_configure_logging_quiets_engine(self):
        configure_logging("warning")

        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
