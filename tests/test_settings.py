"""
Unit tests for settings.
"""
import pytest
from pydantic import ValidationError

from steam_billing.config import Settings

REQUIRED = {"steam_webkey": "key", "database_url": "sqlite+aiosqlite:///:memory:"}


class TestSettings:
    """Test suite for Settings."""

    @pytest.mark.unit
    def test_defaults(self) -> None:
        """Test defaults for optional fields."""
        settings = Settings(**REQUIRED)

        assert settings.steam_app_id == "480"
        assert settings.default_currency == "USD"
        assert settings.report_update_frequency == 5
        assert settings.report_max_results == 10000
        assert settings.report_type == "SUBSCRIPTION"

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "app_env,steam_sandbox,interface",
        [
            ("development", False, "ISteamMicroTxnSandbox"),
            ("test", False, "ISteamMicroTxnSandbox"),
            ("production", False, "ISteamMicroTxn"),
            ("production", True, "ISteamMicroTxnSandbox"),
        ],
    )
    def test_microtxn_interface(self, app_env: str, steam_sandbox: bool, interface: str) -> None:
        """Test sandbox selection."""
        settings = Settings(**REQUIRED, app_env=app_env, steam_sandbox=steam_sandbox)

        assert settings.microtxn_interface == interface

    @pytest.mark.unit
    def test_default_currency_upper_cased(self) -> None:
        """Test currency normalization."""
        assert Settings(**REQUIRED, default_currency="eur").default_currency == "EUR"

    @pytest.mark.unit
    def test_invalid_default_currency(self) -> None:
        """Test currency validation."""
        with pytest.raises(ValidationError, match="3-letter code"):
            Settings(**REQUIRED, default_currency="EURO")

    @pytest.mark.unit
    def test_invalid_app_id(self) -> None:
        """Test app id validation."""
        with pytest.raises(ValidationError, match="Must be numeric"):
            Settings(**REQUIRED, steam_app_id="abc")

    @pytest.mark.unit
    def test_invalid_log_level(self) -> None:
        """Test log level validation."""
        with pytest.raises(ValidationError, match="Invalid log level"):
            Settings(**REQUIRED, log_level="VERBOSE")
