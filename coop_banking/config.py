"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict


class CoopBankingConfig(BaseSettings):
    """Cooperative banking engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="COOP_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage configuration
    database_url: str = "sqlite:///coop_banking.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Issuing bank for dividend declarations
    bank_id: str = "default"

    # Business rules
    fd_default_penalty_rate: Decimal = Decimal("1.00")  # percentage points
    rd_missed_installment_penalty_rate: Decimal = Decimal("0.01")
    rd_early_closure_penalty_rate: Decimal = Decimal("0.02")
    enforce_maturity_date: bool = True
    loan_approval_required: bool = False

    # Feature flags
    enable_audit_logging: bool = True


# Global configuration instance
config = CoopBankingConfig()


def get_config() -> CoopBankingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> CoopBankingConfig:
    """Reload configuration from environment"""
    global config
    config = CoopBankingConfig()
    return config
