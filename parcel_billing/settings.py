# ==== APPLICATION SETTINGS CONFIGURATION ==== #

"""
Application settings configuration for the parcel billing engine.

Centralized configuration management using Pydantic Settings with
environment variable loading and validation.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


# ==== MAIN SETTINGS CLASS ==== #


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Pricing rules themselves live in the YAML policies under
    ``parcel_billing/business/policies``; these settings cover the
    runtime, persistence, and invoice defaults.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra='ignore'
    )

    # --► CORE APPLICATION SETTINGS
    APP_ENV: str = "dev"
    SERVICE_NAME: str = "parcel-billing"
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str | None = "logs"

    # --► DATABASE CONFIGURATION
    DATABASE_URL: str

    # --► INVOICE DEFAULTS
    DEFAULT_CURRENCY: str = "JMD"
    DEFAULT_PAYMENT_TERMS_DAYS: int = 30
    INVOICE_NUMBER_PREFIX: str = "INV"
    INVOICE_NUMBER_MAX_ATTEMPTS: int = 5

    # --► POLICY FILES (OPTIONAL OVERRIDES)
    RATES_POLICY_PATH: str | None = None
    CURRENCIES_POLICY_PATH: str | None = None


# ==== GLOBAL SETTINGS INSTANCE ==== #


# Global settings instance for application-wide access
settings = Settings()


def get_settings() -> Settings:
    """
    Get global settings instance.

    Returns:
        Settings: Global application settings instance
    """
    return settings
