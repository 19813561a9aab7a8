"""Configuration management for the lending engine.

Loads configuration from environment variables and provides defaults.
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from .errors import InvalidInputError

# Load .env file if present
load_dotenv()

DEFAULT_DB_PATH = str(Path.home() / ".circulation" / "circulation.db")

# Static configuration keys and the attribute each one sets
MAPPING_KEYS = {
    "dailyFineRate": "daily_fine_rate",
    "maxRenewals": "max_renewals",
    "defaultLoanDays": "default_loan_days",
    "sweepIntervalHours": "sweep_interval_hours",
}


@dataclass
class Config:
    """Application configuration."""

    # Database
    db_path: Path

    # Fines and loans
    daily_fine_rate: Decimal = Decimal("0.50")  # currency units per day
    max_renewals: int = 2
    default_loan_days: int = 14
    reservation_expiry_days: int = 7

    # Sweeper
    sweep_interval_hours: int = 24

    # Conflict retry
    conflict_retries: int = 3
    retry_backoff_seconds: float = 0.05

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables.

        Raises:
            InvalidInputError: a variable does not parse or the result is invalid
        """
        db_path_str = os.environ.get("CIRCULATION_DB_PATH", DEFAULT_DB_PATH)

        config = cls(
            db_path=Path(db_path_str).expanduser(),
            daily_fine_rate=_decimal(
                os.environ.get("CIRCULATION_DAILY_FINE_RATE", "0.50"),
                "CIRCULATION_DAILY_FINE_RATE",
            ),
            max_renewals=_env_int("CIRCULATION_MAX_RENEWALS", 2),
            default_loan_days=_env_int("CIRCULATION_DEFAULT_LOAN_DAYS", 14),
            reservation_expiry_days=_env_int("CIRCULATION_RESERVATION_EXPIRY_DAYS", 7),
            sweep_interval_hours=_env_int("CIRCULATION_SWEEP_INTERVAL_HOURS", 24),
            conflict_retries=_env_int("CIRCULATION_CONFLICT_RETRIES", 3),
            retry_backoff_seconds=_env_float("CIRCULATION_RETRY_BACKOFF", 0.05),
            log_level=os.environ.get("CIRCULATION_LOG_LEVEL", "INFO").upper(),
        )

        errors = config.validate()
        if errors:
            raise InvalidInputError("; ".join(errors))
        return config

    @classmethod
    def from_mapping(
        cls, values: Mapping[str, Any], db_path: Optional[str] = None
    ) -> "Config":
        """Build a config from the static structure used by deployments.

        Recognized keys are ``dailyFineRate``, ``maxRenewals``,
        ``defaultLoanDays`` and ``sweepIntervalHours``. Anything else is
        rejected so typos do not silently fall back to defaults.
        """
        unknown = sorted(set(values) - set(MAPPING_KEYS))
        if unknown:
            raise InvalidInputError(f"Unknown configuration keys: {', '.join(unknown)}")

        config = cls(db_path=Path(db_path or DEFAULT_DB_PATH).expanduser())
        for key, value in values.items():
            attr = MAPPING_KEYS[key]
            if attr == "daily_fine_rate":
                value = _decimal(value, key)
            else:
                try:
                    value = int(value)
                except (TypeError, ValueError):
                    raise InvalidInputError(f"{key} must be an integer, got {value!r}")
            setattr(config, attr, value)

        errors = config.validate()
        if errors:
            raise InvalidInputError("; ".join(errors))
        return config

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.daily_fine_rate < 0:
            errors.append("dailyFineRate must not be negative")
        if self.max_renewals < 0:
            errors.append("maxRenewals must not be negative")
        if self.default_loan_days <= 0:
            errors.append("defaultLoanDays must be positive")
        if self.sweep_interval_hours <= 0:
            errors.append("sweepIntervalHours must be positive")
        if self.reservation_expiry_days <= 0:
            errors.append("reservation expiry days must be positive")
        if self.conflict_retries < 1:
            errors.append("conflict retries must be at least 1")
        if self.retry_backoff_seconds < 0:
            errors.append("retry backoff must not be negative")

        return errors


def _decimal(value: Any, key: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise InvalidInputError(f"{key} must be a decimal, got {value!r}")


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise InvalidInputError(f"{name} must be an integer, got {value!r}")


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise InvalidInputError(f"{name} must be a number, got {value!r}")


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global config instance. Used for testing."""
    global _config
    _config = None
