"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from typing import List, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict

from .rates import RateTable


class BankConfig(BaseSettings):
    """Retail banking core configuration"""

    model_config = SettingsConfigDict(
        env_prefix="RETAIL_BANK_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "retail_banking.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    logger_name: str = "retail_banking"

    # Savings account defaults
    savings_minimum_balance: Decimal = Decimal("1000")
    savings_interest_rate: Decimal = Decimal("4.0")
    savings_daily_limit: Decimal = Decimal("50000")
    savings_monthly_limit: Decimal = Decimal("500000")
    max_savings_accounts: int = 2

    # Current account defaults
    current_overdraft_limit: Decimal = Decimal("50000")
    current_daily_limit: Decimal = Decimal("100000")
    current_monthly_limit: Decimal = Decimal("1000000")
    max_current_accounts: int = 1

    # Transaction fee schedule
    transfer_fee_threshold: Decimal = Decimal("25000")
    transfer_fee: Decimal = Decimal("5")
    gst_rate: Decimal = Decimal("0.18")

    # Fixed deposit rules
    fd_min_principal: Decimal = Decimal("1000")
    fd_max_principal: Decimal = Decimal("10000000")
    fd_max_tenure: int = 120
    fd_premature_rate_reduction: Decimal = Decimal("1")  # percentage points
    fd_premature_penalty_rate: Decimal = Decimal("1")    # percent of current value
    fd_min_days_before_closure: int = 180
    fd_rate_bands: List[Tuple[int, Decimal]] = [
        (6, Decimal("6.5")),
        (12, Decimal("7.0")),
        (18, Decimal("7.25")),
        (24, Decimal("7.5")),
        (36, Decimal("7.75")),
        (60, Decimal("8.0")),
        (120, Decimal("8.25")),
    ]

    # Recurring deposit rules
    rd_min_installment: Decimal = Decimal("500")
    rd_max_installment: Decimal = Decimal("100000")
    rd_max_tenure: int = 120
    rd_penalty_per_day: Decimal = Decimal("10")
    rd_penalty_cap_rate: Decimal = Decimal("0.10")
    rd_premature_penalty_rate: Decimal = Decimal("1")  # percent of deposited
    rd_min_installments_for_closure: int = 12
    rd_max_auto_debit_failures: int = 3
    rd_rate_bands: List[Tuple[int, Decimal]] = [
        (12, Decimal("6.8")),
        (18, Decimal("7.0")),
        (24, Decimal("7.25")),
        (36, Decimal("7.5")),
        (60, Decimal("7.75")),
        (120, Decimal("8.0")),
    ]

    # Concurrency and identifiers
    identifier_max_attempts: int = 10
    lock_timeout_seconds: float = 5.0
    unit_of_work_timeout_seconds: float = 30.0

    # Feature flags
    enable_audit_logging: bool = True

    def fd_rate_table(self) -> RateTable:
        return RateTable.from_pairs("fixed_deposit", self.fd_rate_bands)

    def rd_rate_table(self) -> RateTable:
        return RateTable.from_pairs("recurring_deposit", self.rd_rate_bands)


# Global configuration instance
config = BankConfig()


def get_config() -> BankConfig:
    """Get global configuration instance"""
    return config


def reload_config(**overrides) -> BankConfig:
    """Reload configuration from environment"""
    global config
    config = BankConfig(**overrides)
    return config
