"""
Application configuration.

All configuration is loaded from environment variables.
Never hardcode secrets or connection strings in code.

Two objects live here: Settings (process-level: database,
SMS gateway, logging) and FinanceSettings (the finance policy
that the settlement engine and the approval state machine
receive at construction).
"""

import os
from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load .env file into environment variables
load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Coffee Finance Service"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "postgresql://localhost:5432/coffee_finance"
    )

    # SMS gateway
    SMS_API_URL: str = os.getenv(
        "SMS_API_URL",
        "https://sms.sunshineuganda.com/api/v1/sms/send"
    )
    SMS_API_KEY: str | None = os.getenv("SMS_API_KEY") or None
    SMS_SENDER_ID: str = os.getenv("SMS_SENDER_ID", "GPCF")
    SMS_TIMEOUT_SECONDS: float = float(os.getenv("SMS_TIMEOUT_SECONDS", "10"))

    # Where bank-transfer disbursement notices go
    FINANCE_NOTIFY_PHONE: str | None = os.getenv("FINANCE_NOTIFY_PHONE") or None

    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")


class FinanceSettings(BaseModel):
    """
    Finance policy knobs.

    Services never read these from a global — they get an
    instance passed in, so tests can pin the policy they need.
    """

    currency: str = "UGX"
    three_approval_threshold: int = Field(default=100000, ge=0)
    allow_negative_balance: bool = True
    cash_warning_threshold: int = Field(default=10000, ge=0)
    payment_rounding: Literal["exact", "nearest_100", "down_100"] = "exact"
    auto_recover_advances: bool = True
    minimum_advance_amount: int = Field(default=50000, ge=0)
    allow_advance_with_arrears: bool = False
    max_bulk_lots: int = Field(default=10, ge=1)
    sms_approval_template: str = (
        "Dear {name}, your {type} of {currency} {amount} has been approved. "
        "Ref: {ref}. Great Pearl Coffee."
    )
    sms_rejection_template: str = (
        "Dear {name}, your {type} request of {currency} {amount} was rejected. "
        "Reason: {reason}. Great Pearl Coffee."
    )

    def requires_three_approvals(self, amount: int) -> bool:
        return amount > self.three_approval_threshold

    def round_payment(self, amount: int) -> int:
        """Apply the configured payment rounding to an amount."""
        if self.payment_rounding == "nearest_100":
            # Half-up, the way the finance team rounds on paper
            return ((amount + 50) // 100) * 100
        if self.payment_rounding == "down_100":
            return (amount // 100) * 100
        return amount


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


@lru_cache()
def get_settings() -> Settings:
    """
    Return cached settings instance.

    Using lru_cache means the Settings object is created once
    and reused for all subsequent calls. This avoids reading
    environment variables repeatedly.
    """
    return Settings()


@lru_cache()
def get_finance_settings() -> FinanceSettings:
    """
    Build the finance policy from FINANCE_* environment variables.

    Only the API layer calls this; services receive the result.
    """
    defaults = FinanceSettings()
    return FinanceSettings(
        currency=os.getenv("FINANCE_CURRENCY", defaults.currency),
        three_approval_threshold=int(os.getenv(
            "FINANCE_THREE_APPROVAL_THRESHOLD",
            str(defaults.three_approval_threshold),
        )),
        allow_negative_balance=_env_bool(
            "FINANCE_ALLOW_NEGATIVE_BALANCE", defaults.allow_negative_balance
        ),
        cash_warning_threshold=int(os.getenv(
            "FINANCE_CASH_WARNING_THRESHOLD",
            str(defaults.cash_warning_threshold),
        )),
        payment_rounding=os.getenv(
            "FINANCE_PAYMENT_ROUNDING", defaults.payment_rounding
        ),
        auto_recover_advances=_env_bool(
            "FINANCE_AUTO_RECOVER_ADVANCES", defaults.auto_recover_advances
        ),
        minimum_advance_amount=int(os.getenv(
            "FINANCE_MINIMUM_ADVANCE_AMOUNT",
            str(defaults.minimum_advance_amount),
        )),
        allow_advance_with_arrears=_env_bool(
            "FINANCE_ALLOW_ADVANCE_WITH_ARREARS",
            defaults.allow_advance_with_arrears,
        ),
        max_bulk_lots=int(os.getenv(
            "FINANCE_MAX_BULK_LOTS", str(defaults.max_bulk_lots)
        )),
    )
