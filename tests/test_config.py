"""
Tests for configuration validation and the formatting helpers.
"""

from datetime import timedelta

import pytest

from conftest import REALM_CONFIG
from realms_notis.config import Config
from realms_notis.exceptions import ConfigurationError
from realms_notis.utils.formatters import (
    format_hours_left,
    format_number,
    format_proposal_link,
    to_ui_amount,
    truncate_description,
)


@pytest.fixture
def settings():
    settings = Config()
    settings.REALM_KEY = REALM_CONFIG.realm_key
    settings.COUNCIL_MINT_KEY = REALM_CONFIG.council_mint_key
    settings.COMMUNITY_MINT_KEY = REALM_CONFIG.community_mint_key
    settings.GOVERNANCE_KEY = REALM_CONFIG.governance_key
    settings.RPC_URL = "https://rpc.example.org"
    settings.POLL_INTERVAL = 600
    settings.NOTIFICATION_FREQUENCY_HOURS = 6
    return settings


class TestConfig:

    def test_valid_settings(self, settings):
        assert settings.validate() == []
        assert settings.realm_config() == REALM_CONFIG

    def test_missing_realm_keys(self, settings):
        settings.REALM_KEY = ""
        settings.GOVERNANCE_KEY = ""

        problems = settings.validate()

        assert "REALM_KEY is not set" in problems
        assert "GOVERNANCE_KEY is not set" in problems
        with pytest.raises(ConfigurationError):
            settings.realm_config()

    def test_rejects_non_http_rpc(self, settings):
        settings.RPC_URL = "ws://rpc.example.org"

        assert any("RPC_URL" in problem for problem in settings.validate())

    def test_rejects_non_positive_interval(self, settings):
        settings.POLL_INTERVAL = 0

        assert "POLL_INTERVAL must be positive" in settings.validate()

    def test_notification_frequency(self, settings):
        assert settings.notification_frequency == timedelta(hours=6)

    def test_describe_redacts_channel(self, settings):
        settings.NOTIFICATION_URL = "slack://tokenA/tokenB/tokenC"

        described = settings.describe()

        assert described["NOTIFICATION_URL"] == "slack://***"
        assert described["REALM_KEY"] == REALM_CONFIG.realm_key


class TestFormatters:

    def test_format_number(self):
        assert format_number(1234567) == "1,234,567"
        assert format_number(12.5) == "12.50"
        assert format_number("bad") == "0"

    def test_format_hours_left(self):
        assert format_hours_left(timedelta(hours=5, minutes=59)) == "5 hours"
        assert format_hours_left(timedelta(hours=-3)) == "0 hours"
        assert format_hours_left(None) == "unknown"

    def test_to_ui_amount(self):
        assert to_ui_amount(2_500_000, 6) == 2.5
        assert to_ui_amount(0, 9) == 0.0
        assert to_ui_amount(42, 0) == 42

    def test_truncate_description(self):
        assert truncate_description("   ") == "no description provided"
        assert truncate_description("abc", limit=2) == "ab"

    def test_format_proposal_link(self):
        assert format_proposal_link("P1", "https://app.realms.today/dao/R/") == "[P1](https://app.realms.today/dao/R/proposal/P1)"
        assert format_proposal_link("P1", "") == "P1"
