"""
Tests for configuration loading.
"""

import pytest

from vittas.config import get_settings, validate_all_settings


ENV_KEYS = (
    "APP_ENVIRONMENT",
    "GOOGLE_SHEETS_CREDENTIALS_PATH",
    "GOOGLE_SHEETS_SPREADSHEET_ID",
    "LEDGER_CURRENCY_CODE",
    "LEDGER_INVITATION_EXPIRY_DAYS",
    "RECONCILER_MAX_RETRIES",
    "RECONCILER_MIN_REFRESH_INTERVAL_SECONDS",
)


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """An empty working directory with none of our variables exported."""
    monkeypatch.chdir(tmp_path)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


class TestSettings:
    """Tests for the settings classes."""

    def test_defaults(self, workdir):
        settings = get_settings()

        assert settings.ledger.currency_code == "INR"
        assert settings.ledger.invitation_expiry_days == 7
        assert settings.reconciler.max_retries == 3
        assert settings.reconciler.min_refresh_interval_seconds == 10.0

    def test_sub_settings_read_dotenv(self, workdir):
        credentials = workdir / "service-account.json"
        credentials.write_text("{}")
        (workdir / ".env").write_text(
            "APP_ENVIRONMENT=staging\n"
            "LEDGER_INVITATION_EXPIRY_DAYS=14\n"
            "RECONCILER_MAX_RETRIES=5\n"
            f"GOOGLE_SHEETS_CREDENTIALS_PATH={credentials}\n"
            "GOOGLE_SHEETS_SPREADSHEET_ID=sheet-123\n"
        )

        settings = get_settings()

        assert settings.app_environment == "staging"
        assert settings.ledger.invitation_expiry_days == 14
        assert settings.reconciler.max_retries == 5
        assert settings.google_sheets.spreadsheet_id == "sheet-123"

    def test_environment_wins_over_dotenv(self, workdir, monkeypatch):
        (workdir / ".env").write_text("RECONCILER_MAX_RETRIES=5\n")
        monkeypatch.setenv("RECONCILER_MAX_RETRIES", "2")

        assert get_settings().reconciler.max_retries == 2


class TestValidateAllSettings:
    """Tests for the startup check."""

    def test_missing_google_sheets(self, workdir):
        results = validate_all_settings()

        assert results["google_sheets"] is False
        assert "google_sheets_error" in results
        assert results["ledger"] is True
        assert results["reconciler"] is True

    def test_invalid_value_reported(self, workdir):
        (workdir / ".env").write_text("LEDGER_INVITATION_EXPIRY_DAYS=0\n")

        results = validate_all_settings()

        assert results["ledger"] is False
        assert "invitation_expiry_days" in results["ledger_error"]
