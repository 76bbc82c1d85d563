from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Wallet Ledger API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    # Used to build shareable referral links: <base>/?ref=<code>
    PUBLIC_BASE_URL: str = "http://localhost:3000"

    # Fallbacks for fields missing from the settings/app document
    DEFAULT_COMMISSION_ENABLED: bool = True
    DEFAULT_COMMISSION_RATE: int = 10  # percent
    DEFAULT_MAX_COMMISSION_PURCHASES: int = 1  # 0 = unlimited
    DEFAULT_MIN_WITHDRAWAL: int = 100
    DEFAULT_WITHDRAWAL_COOLDOWN_DAYS: int = 7
    DEFAULT_MAX_WALLET_USAGE_PERCENT: int = 40

    # Ledger
    LEDGER_MAX_RETRIES: int = 3
    REFERRAL_CODE_MAX_ATTEMPTS: int = 10

    # Invoices
    SELLER_NAME: str = "Innovative Archive"
    SELLER_ADDRESS: str = "Imphal, Manipur, India"
    SELLER_STATE: str = "Manipur"
    SELLER_GSTIN: str = ""
    INVOICE_PREFIX: str = "IA"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
