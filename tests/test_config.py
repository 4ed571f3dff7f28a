"""
Tests for configuration loading.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from envelope_ledger.config import AppSettings, LedgerSettings, validate_all_settings


class TestLedgerSettings:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LEDGER_DATABASE_URL", raising=False)
        settings = LedgerSettings()
        assert settings.database_url.startswith("sqlite+aiosqlite")
        assert settings.integrity_epsilon == Decimal("0.005")
        assert settings.block_overspend is False
        assert settings.activity_sink == "database"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("LEDGER_BLOCK_OVERSPEND", "true")
        monkeypatch.setenv("LEDGER_MAX_CATCH_UP_OCCURRENCES", "12")
        settings = LedgerSettings()
        assert settings.block_overspend is True
        assert settings.max_catch_up_occurrences == 12

    def test_sync_driver_is_rejected(self):
        with pytest.raises(ValidationError):
            LedgerSettings(database_url="postgresql://localhost/ledger")

    def test_unknown_sink_is_rejected(self):
        with pytest.raises(ValidationError):
            LedgerSettings(activity_sink="email")


class TestAppSettings:

    def test_log_level_is_normalised(self):
        assert AppSettings(log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level(self):
        with pytest.raises(ValidationError):
            AppSettings(log_level="chatty")


class TestValidateAllSettings:

    def test_sheets_only_checked_when_enabled(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)

        monkeypatch.setenv("LEDGER_ACTIVITY_SINK", "database")
        assert validate_all_settings()["google_sheets"] is True

        monkeypatch.setenv("LEDGER_ACTIVITY_SINK", "google_sheets")
        results = validate_all_settings()
        assert results["ledger"] is True
        assert results["google_sheets"] is False
        assert "google_sheets_error" in results
