"""Tests for configuration loading."""

from decimal import Decimal
from pathlib import Path

import pytest

from circulation.config import Config, get_config, reset_config
from circulation.errors import InvalidInputError


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    for name in (
        "CIRCULATION_DB_PATH",
        "CIRCULATION_DAILY_FINE_RATE",
        "CIRCULATION_MAX_RENEWALS",
        "CIRCULATION_DEFAULT_LOAN_DAYS",
        "CIRCULATION_SWEEP_INTERVAL_HOURS",
        "CIRCULATION_RESERVATION_EXPIRY_DAYS",
        "CIRCULATION_CONFLICT_RETRIES",
        "CIRCULATION_RETRY_BACKOFF",
        "CIRCULATION_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


class TestFromEnv:
    """Tests for environment configuration."""

    def test_defaults(self):
        config = Config.from_env()

        assert config.daily_fine_rate == Decimal("0.50")
        assert config.max_renewals == 2
        assert config.default_loan_days == 14
        assert config.sweep_interval_hours == 24
        assert config.reservation_expiry_days == 7
        assert config.db_path.name == "circulation.db"
        assert config.validate() == []

    def test_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CIRCULATION_DB_PATH", str(tmp_path / "desk.db"))
        monkeypatch.setenv("CIRCULATION_DAILY_FINE_RATE", "0.25")
        monkeypatch.setenv("CIRCULATION_MAX_RENEWALS", "5")
        monkeypatch.setenv("CIRCULATION_LOG_LEVEL", "debug")

        config = Config.from_env()

        assert config.db_path == tmp_path / "desk.db"
        assert config.daily_fine_rate == Decimal("0.25")
        assert config.max_renewals == 5
        assert config.log_level == "DEBUG"

    @pytest.mark.parametrize(
        "name,value",
        [
            ("CIRCULATION_MAX_RENEWALS", "lots"),
            ("CIRCULATION_SWEEP_INTERVAL_HOURS", "1.5"),
            ("CIRCULATION_RETRY_BACKOFF", "soon"),
            ("CIRCULATION_DAILY_FINE_RATE", "free"),
        ],
    )
    def test_unparseable_value_rejected(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(InvalidInputError, match=name):
            Config.from_env()

    def test_invalid_value_rejected(self, monkeypatch):
        monkeypatch.setenv("CIRCULATION_DEFAULT_LOAN_DAYS", "0")
        with pytest.raises(InvalidInputError, match="defaultLoanDays must be positive"):
            Config.from_env()

    def test_get_config_surfaces_bad_environment(self, monkeypatch):
        monkeypatch.setenv("CIRCULATION_CONFLICT_RETRIES", "0")
        with pytest.raises(InvalidInputError):
            get_config()

    def test_get_config_is_cached(self, monkeypatch):
        first = get_config()
        monkeypatch.setenv("CIRCULATION_MAX_RENEWALS", "9")
        assert get_config() is first

        reset_config()
        assert get_config().max_renewals == 9


class TestFromMapping:
    """Tests for the deployment configuration structure."""

    def test_recognized_keys(self):
        config = Config.from_mapping(
            {
                "dailyFineRate": "0.75",
                "maxRenewals": 1,
                "defaultLoanDays": 21,
                "sweepIntervalHours": 6,
            },
            db_path=":memory:",
        )

        assert config.daily_fine_rate == Decimal("0.75")
        assert config.max_renewals == 1
        assert config.default_loan_days == 21
        assert config.sweep_interval_hours == 6
        assert config.db_path == Path(":memory:")

    def test_missing_keys_use_defaults(self):
        config = Config.from_mapping({"maxRenewals": 0})
        assert config.max_renewals == 0
        assert config.daily_fine_rate == Decimal("0.50")

    def test_unknown_key_rejected(self):
        with pytest.raises(InvalidInputError, match="maxRenewal"):
            Config.from_mapping({"maxRenewal": 3})

    @pytest.mark.parametrize(
        "values",
        [
            {"dailyFineRate": "-0.10"},
            {"dailyFineRate": "cheap"},
            {"defaultLoanDays": 0},
            {"sweepIntervalHours": "often"},
            {"maxRenewals": -1},
        ],
    )
    def test_invalid_values_rejected(self, values):
        with pytest.raises(InvalidInputError):
            Config.from_mapping(values)
